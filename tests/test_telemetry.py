from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from article_ingest.telemetry import TelemetryClient, build_telemetry_client, sanitize_attributes


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_telemetry_client_redacts_article_data() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "entry.images.localized",
        entry_id=12,
        html="<p>article body</p>",
        content_length=4096,
        title="Private draft",
        auth_token="secret",
        preview_localized=True,
    )

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "entry.images.localized"
    assert attributes["entry_id"] == 12
    assert attributes["preview_localized"] is True
    assert attributes["html"] == "[redacted]"
    assert attributes["content_length"] == "[redacted]"
    assert attributes["title"] == "[redacted]"
    assert attributes["auth_token"] == "[redacted]"


def test_url_attributes_are_reduced_to_their_origin() -> None:
    attributes = sanitize_attributes(
        {
            "url": "https://news.example.org/2024/05/private-slug?utm=1",
            "Page_URL": "http://a.com:8080/x",
            "image_url": "not a url",
            "origin_url": None,
        }
    )

    assert attributes == {
        "url": "https://news.example.org",
        "page_url": "http://a.com",
        "image_url": "[redacted]",
        "origin_url": None,
    }


def test_telemetry_client_compacts_values() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit("entry.images.removed", reason="x" * 300, folders=["a", "b"], note="  a \n b ")

    attributes = sink.events[0][1]
    assert attributes["reason"].endswith("...")
    assert len(attributes["reason"]) == 163
    assert attributes["folders"] == "list"
    assert attributes["note"] == "a b"


def test_timed_block_reports_duration_and_outcome() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    with client.timed("entry.images.localized", entry_id=3) as event:
        event["preview_localized"] = True

    with pytest.raises(RuntimeError):
        with client.timed("entry.images.localized", entry_id=4):
            raise RuntimeError("boom")

    (_, first), (_, second) = sink.events
    assert first["entry_id"] == 3
    assert first["preview_localized"] is True
    assert first["outcome"] == "ok"
    assert isinstance(first["duration_ms"], int)
    assert second["entry_id"] == 4
    assert second["outcome"] == "error"


def test_disabled_telemetry_client_does_not_emit() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=False, sink=sink)

    client.emit("entry.images.removed", entry_id=1)
    with client.timed("entry.images.localized", entry_id=1):
        pass
    assert sink.events == []


def test_build_telemetry_client_none_sink_is_disabled() -> None:
    client = build_telemetry_client(enabled=True, sink="none")
    assert client.enabled is False
    assert build_telemetry_client(enabled=False, sink="log").enabled is False
    assert build_telemetry_client(enabled=True, sink="log").enabled is True
