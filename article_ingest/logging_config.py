from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from article_ingest.config import AppSettings

ROOT_LOGGER_NAME = "article_ingest"
TELEMETRY_LOGGER_NAME = "article_ingest.telemetry"
LOG_FILE_NAME = "article-ingest.log"
TELEMETRY_LOG_FILE_NAME = "article-ingest-telemetry.log"


def configure_application_logging(settings: AppSettings) -> Path:
    """Send `article_ingest.*` records to stdout and to JSON-lines files.

    Telemetry gets its own file and stays out of the main log. Calling this
    again replaces the handlers installed by the previous call. Returns the
    path of the main log file.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    _configure_structlog()

    log_file = settings.log_dir / LOG_FILE_NAME
    app_logger = _isolated_logger(ROOT_LOGGER_NAME, level=logging.DEBUG)
    app_logger.addHandler(
        _console_handler(
            level=resolve_log_level(settings.log_level),
            render_json=settings.log_console_format == "json",
        )
    )
    app_logger.addHandler(_json_file_handler(log_file, level=logging.DEBUG))

    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME
    telemetry_logger = _isolated_logger(TELEMETRY_LOGGER_NAME, level=logging.INFO)
    telemetry_logger.addHandler(_json_file_handler(telemetry_log_file, level=logging.INFO))

    app_logger.info(
        "logging configured console_level=%s console_format=%s path=%s telemetry_path=%s",
        settings.log_level.upper(),
        settings.log_console_format,
        log_file,
        telemetry_log_file,
    )
    return log_file


def resolve_log_level(raw_level: str) -> int:
    """Numeric level for a name such as `debug`; unknown names mean INFO."""
    resolved = getattr(logging, raw_level.strip().upper(), None)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _isolated_logger(name: str, *, level: int) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    return logger


def _console_handler(*, level: int, render_json: bool) -> logging.Handler:
    stream = sys.stdout
    processors: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if render_json:
        processors.extend(
            [
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ]
        )
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=_stream_supports_color(stream)))

    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_foreign_pre_chain(),
            processors=processors,
        )
    )
    return handler


def _json_file_handler(path: Path, *, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_foreign_pre_chain(),
            processors=[
                _add_source_location,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _foreign_pre_chain() -> list[Processor]:
    # Applied to records from plain `logging` calls only.
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["module"] = record.module
        event_dict["func_name"] = record.funcName
        event_dict["lineno"] = record.lineno
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except (OSError, ValueError):
        return False
