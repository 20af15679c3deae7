from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from article_ingest.config import DEFAULT_FETCHING_ERROR_MESSAGE, AppSettings, load_settings
from article_ingest.dependencies import (
    build_content_proxy_service,
    build_entry_pipeline_service,
    get_image_download_service,
    get_settings,
)
from article_ingest.logging_config import (
    LOG_FILE_NAME,
    TELEMETRY_LOG_FILE_NAME,
    configure_application_logging,
    resolve_log_level,
)


@pytest.fixture
def _restore_loggers() -> Iterator[None]:
    yield
    for name in ("article_ingest", "article_ingest.telemetry"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
    structlog.reset_defaults()


def test_load_settings_defaults_follow_data_dir(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ARTICLE_INGEST_DATA_DIR", str(tmp_path / "data"))

    settings = load_settings()

    assert settings.data_dir == (tmp_path / "data").resolve()
    assert settings.base_image_folder == (tmp_path / "data" / "assets" / "images").resolve()
    assert settings.log_dir == (tmp_path / "data" / "logs").resolve()
    assert settings.images_enabled is False
    assert settings.fetching_error_message == DEFAULT_FETCHING_ERROR_MESSAGE
    assert settings.redirect_ignore_hosts == ("feedproxy.google.com", "feeds.reuters.com")
    assert settings.redirect_ignore_patterns == (r"https?://www\.lemonde\.fr/tiny.*",)


def test_load_settings_parses_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ARTICLE_INGEST_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("ARTICLE_INGEST_BASE_IMAGE_FOLDER", str(tmp_path / "public" / "img"))
    monkeypatch.setenv("ARTICLE_INGEST_IMAGES_ENABLED", "yes")
    monkeypatch.setenv("ARTICLE_INGEST_PUBLIC_BASE_URL", " https://read.example.org/ ")
    monkeypatch.setenv("ARTICLE_INGEST_IMAGE_FETCH_TIMEOUT_SECONDS", "4.5")
    monkeypatch.setenv("ARTICLE_INGEST_IMAGE_USER_AGENT", " ingest-tests/1.0 ")
    monkeypatch.setenv("ARTICLE_INGEST_REDIRECT_IGNORE_HOSTS", " Bit.ly, t.co ,,bit.ly ")
    monkeypatch.setenv("ARTICLE_INGEST_REDIRECT_IGNORE_PATTERNS", r"https?://x\.com/r/.*")
    monkeypatch.setenv("ARTICLE_INGEST_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("ARTICLE_INGEST_LOG_CONSOLE_FORMAT", " JSON ")
    monkeypatch.setenv("ARTICLE_INGEST_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("ARTICLE_INGEST_TELEMETRY_SINK", " NONE ")

    settings = load_settings()

    assert settings.base_image_folder == (tmp_path / "public" / "img").resolve()
    assert settings.log_dir == (tmp_path / "data" / "logs").resolve()
    assert settings.images_enabled is True
    assert settings.public_base_url == "https://read.example.org"
    assert settings.image_fetch_timeout_seconds == 4.5
    assert settings.image_user_agent == "ingest-tests/1.0"
    assert settings.redirect_ignore_hosts == ("bit.ly", "t.co")
    assert settings.redirect_ignore_patterns == (r"https?://x\.com/r/.*",)
    assert settings.log_level == "DEBUG"
    assert settings.log_console_format == "json"
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "none"


def test_unrecognized_boolean_falls_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ARTICLE_INGEST_IMAGES_ENABLED", "maybe")
    monkeypatch.setenv("ARTICLE_INGEST_TELEMETRY_ENABLED", "sometimes")

    settings = load_settings()

    assert settings.images_enabled is False
    assert settings.telemetry_enabled is True


def test_load_settings_rejects_invalid_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ARTICLE_INGEST_TELEMETRY_SINK", "otlp")
    with pytest.raises(ValueError, match="ARTICLE_INGEST_TELEMETRY_SINK"):
        load_settings()

    monkeypatch.delenv("ARTICLE_INGEST_TELEMETRY_SINK")
    monkeypatch.setenv("ARTICLE_INGEST_LOG_CONSOLE_FORMAT", "xml")
    with pytest.raises(ValueError, match="ARTICLE_INGEST_LOG_CONSOLE_FORMAT"):
        load_settings()

    monkeypatch.delenv("ARTICLE_INGEST_LOG_CONSOLE_FORMAT")
    monkeypatch.setenv("ARTICLE_INGEST_PUBLIC_BASE_URL", " / ")
    with pytest.raises(ValueError, match="ARTICLE_INGEST_PUBLIC_BASE_URL"):
        load_settings()


def test_dependencies_are_wired_from_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ARTICLE_INGEST_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("ARTICLE_INGEST_IMAGES_ENABLED", "true")
    monkeypatch.setenv("ARTICLE_INGEST_REDIRECT_IGNORE_HOSTS", "bit.ly")

    assert get_settings() is get_settings()
    assert get_image_download_service() is get_image_download_service()
    assert (tmp_path / "assets" / "images").is_dir()

    proxy = build_content_proxy_service()
    assert proxy.is_ignored_url("http://bit.ly/abc")
    assert not proxy.is_ignored_url("http://feedproxy.google.com/abc")

    pipeline = build_entry_pipeline_service()
    assert pipeline.images_enabled is True


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("debug", logging.DEBUG),
        (" WARNING ", logging.WARNING),
        ("verbose", logging.INFO),
        ("", logging.INFO),
    ],
)
def test_resolve_log_level(raw: str, expected: int) -> None:
    assert resolve_log_level(raw) == expected


@pytest.mark.usefixtures("_restore_loggers")
def test_configure_application_logging_creates_files(tmp_path: Path) -> None:
    settings = AppSettings(data_dir=tmp_path, log_dir=tmp_path / "logs", log_level="INFO")

    log_file = configure_application_logging(settings)
    logging.getLogger("article_ingest.test").info("runtime-log-test entry_id=%s", 7)
    structlog.get_logger("article_ingest.telemetry").info(
        "telemetry",
        telemetry_event="test.event",
    )

    app_logger = logging.getLogger("article_ingest")
    assert app_logger.propagate is False
    assert {handler.level for handler in app_logger.handlers} == {logging.INFO, logging.DEBUG}
    telemetry_logger = logging.getLogger("article_ingest.telemetry")
    assert telemetry_logger.propagate is False
    assert len(telemetry_logger.handlers) == 1
    for handler in [*app_logger.handlers, *telemetry_logger.handlers]:
        handler.flush()

    assert log_file == tmp_path / "logs" / LOG_FILE_NAME
    parsed_events = [
        json.loads(line)
        for line in log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    runtime_event = next(
        event for event in parsed_events if event.get("event") == "runtime-log-test entry_id=7"
    )
    assert runtime_event["logger"] == "article_ingest.test"
    assert runtime_event["level"] == "info"
    assert runtime_event["lineno"]
    assert all(event.get("telemetry_event") != "test.event" for event in parsed_events)

    telemetry_lines = (tmp_path / "logs" / TELEMETRY_LOG_FILE_NAME).read_text(encoding="utf-8")
    telemetry_events = [json.loads(line) for line in telemetry_lines.splitlines() if line.strip()]
    assert any(event.get("telemetry_event") == "test.event" for event in telemetry_events)


@pytest.mark.usefixtures("_restore_loggers")
def test_json_console_format_and_bound_context(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    settings = AppSettings(
        data_dir=tmp_path,
        log_dir=tmp_path / "logs",
        log_level="WARNING",
        log_console_format="json",
    )
    configure_application_logging(settings)
    capsys.readouterr()

    tokens = structlog.contextvars.bind_contextvars(entry_id=42)
    try:
        logging.getLogger("article_ingest.images").warning("cannot retrieve image, skipping")
        logging.getLogger("article_ingest.images").info("below console level")
    finally:
        structlog.contextvars.reset_contextvars(**tokens)

    console_lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert len(console_lines) == 1
    event = json.loads(console_lines[0])
    assert event["event"] == "cannot retrieve image, skipping"
    assert event["entry_id"] == 42
    assert event["level"] == "warning"
    assert "timestamp" in event
