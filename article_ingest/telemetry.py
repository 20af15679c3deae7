from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Literal, Protocol
from urllib.parse import urlsplit

import structlog

from article_ingest.logging_config import TELEMETRY_LOGGER_NAME

# Attribute names containing any of these never carry their value.
_SENSITIVE_ATTRIBUTE_TOKENS: frozenset[str] = frozenset(
    {
        "authorization",
        "body",
        "content",
        "cookie",
        "html",
        "password",
        "secret",
        "title",
        "token",
    }
)
_REDACTED = "[redacted]"
_MAX_STRING_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes each event as one structured record on the telemetry logger."""

    def __init__(self, *, logger_name: str = TELEMETRY_LOGGER_NAME) -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **attributes)


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=sanitize_attributes(attributes))

    @contextmanager
    def timed(self, event_name: str, **attributes: Any) -> Iterator[dict[str, Any]]:
        """Emit `event_name` once the block exits, successfully or not.

        The event carries `duration_ms` and `outcome` (`ok` or `error`). The
        yielded dict collects attributes only known inside the block.
        """
        extra: dict[str, Any] = {}
        started_at = time.perf_counter()
        outcome = "error"
        try:
            yield extra
            outcome = "ok"
        finally:
            payload = {
                **attributes,
                **extra,
                "outcome": outcome,
                "duration_ms": int((time.perf_counter() - started_at) * 1000),
            }
            self.emit(event_name, **payload)


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "unsupported telemetry sink requested; disabling telemetry sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    """Make event attributes safe to persist.

    Article text never leaves the process, URLs are cut down to their origin
    and every other value is reduced to a short scalar.
    """
    sanitized: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(token in key for token in _SENSITIVE_ATTRIBUTE_TOKENS):
            sanitized[key] = _REDACTED
        elif key == "url" or key.endswith("_url"):
            sanitized[key] = _url_origin(raw_value)
        else:
            sanitized[key] = _compact_value(raw_value)
    return sanitized


def _url_origin(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = urlsplit(value.strip())
    except ValueError:
        return _REDACTED
    if not parsed.scheme or not parsed.netloc:
        return _REDACTED
    return f"{parsed.scheme}://{parsed.hostname or ''}"


def _compact_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if not isinstance(value, str):
        return type(value).__name__
    compact = " ".join(value.split())
    if len(compact) > _MAX_STRING_LENGTH:
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    return compact
