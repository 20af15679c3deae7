from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_DATA_DIR = ".article-ingest"
DEFAULT_FETCHING_ERROR_MESSAGE = "The content of this article could not be retrieved."
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("base_image_folder", Path("assets") / "images"),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "images_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{ARTICLE_INGEST_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_string_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        raw_items: list[object] = list(value.split(","))
    elif isinstance(value, list | tuple | set | frozenset):
        raw_items = list(value)
    else:
        raise ValueError("expected a comma-separated string or a list of strings")

    items: list[str] = []
    for raw_item in raw_items:
        if not isinstance(raw_item, str):
            raise ValueError("list items must be strings")
        normalized = raw_item.strip()
        if normalized and normalized not in items:
            items.append(normalized)
    return tuple(items)


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `ARTICLE_INGEST_*` environment variables (or a
    `.env` file) and documents its own default below.
    """

    model_config = SettingsConfigDict(
        env_prefix="ARTICLE_INGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for stored images and logs.",
    )

    # Image localization.
    images_enabled: bool = Field(
        default=False,
        description="Master switch for downloading and localizing entry images.",
    )
    base_image_folder: Path = Field(
        default=_default_in_data_dir(Path("assets") / "images"),
        description=(
            "Folder holding per-entry image directories. "
            f"{_data_dir_default_note(Path('assets') / 'images')}"
        ),
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL used to build local image links.",
    )
    image_fetch_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="HTTP timeout applied to every single image download.",
    )
    image_user_agent: str = Field(
        default="article-ingest/0.1",
        description="User-Agent sent when downloading images.",
    )

    # Content normalization.
    fetching_error_message: str = Field(
        default=DEFAULT_FETCHING_ERROR_MESSAGE,
        description=(
            "Sentinel HTML body returned by the content fetcher when an article "
            "could not be retrieved."
        ),
    )
    redirect_ignore_hosts: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("feedproxy.google.com", "feeds.reuters.com"),
        description=(
            "Redirector hosts whose URLs are replaced silently instead of being "
            "recorded as origin URL. Comma-separated in the environment."
        ),
    )
    redirect_ignore_patterns: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(r"https?://www\.lemonde\.fr/tiny.*",),
        description="Case-insensitive regex patterns matched against the whole entry URL.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )
    log_console_format: Literal["console", "json"] = Field(
        default="console",
        description="Console rendering: human readable `console` or JSON lines `json`.",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("ARTICLE_INGEST_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("ARTICLE_INGEST_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("log_console_format", mode="before")
    @classmethod
    def _normalize_log_console_format(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("ARTICLE_INGEST_LOG_CONSOLE_FORMAT must be a string.")
        normalized = value.strip().lower()
        if normalized in {"console", "json"}:
            return normalized
        raise ValueError("ARTICLE_INGEST_LOG_CONSOLE_FORMAT must be set to: console, json.")

    @field_validator("public_base_url", mode="before")
    @classmethod
    def _normalize_public_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("ARTICLE_INGEST_PUBLIC_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("ARTICLE_INGEST_PUBLIC_BASE_URL must not be empty.")
        return normalized

    @field_validator("image_user_agent", mode="before")
    @classmethod
    def _normalize_user_agent(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("ARTICLE_INGEST_IMAGE_USER_AGENT must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("ARTICLE_INGEST_IMAGE_USER_AGENT must not be empty.")
        return normalized

    @field_validator("redirect_ignore_hosts", mode="before")
    @classmethod
    def _normalize_ignore_hosts(cls, value: Any) -> tuple[str, ...]:
        return tuple(dict.fromkeys(host.lower() for host in _parse_string_list(value)))

    @field_validator("redirect_ignore_patterns", mode="before")
    @classmethod
    def _normalize_ignore_patterns(cls, value: Any) -> tuple[str, ...]:
        return _parse_string_list(value)

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
