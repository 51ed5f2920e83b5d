from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from backend.app.telemetry import (
    RenderMetrics,
    StructlogTelemetrySink,
    TelemetryClient,
    UnresolvedAnchor,
    build_telemetry_client,
    scrub_attributes,
)


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_author_text_is_reduced_to_its_length() -> None:
    scrubbed = scrub_attributes(
        {
            "document_id": "blog_123",
            "raw_content": "# private draft",
            "Title": "Secret launch",
            "rendered_content": None,
        }
    )

    assert scrubbed == {
        "document_id": "blog_123",
        "raw_content": 15,
        "title": 13,
        "rendered_content": None,
    }


def test_credentials_are_redacted() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(sink=sink)

    client.emit("http.request.start", api_token="abc", Authorization="Bearer x", path="/blogs")

    _, attributes = sink.events[0]
    assert attributes["api_token"] == "[redacted]"
    assert attributes["authorization"] == "[redacted]"
    assert attributes["path"] == "/blogs"


def test_values_are_compacted() -> None:
    scrubbed = scrub_attributes(
        {
            "asset_ids": ["a", "b"],
            "note": "  spaced\n   out  ",
            "long_value": "x" * 500,
            "stored_version": None,
            "": "dropped",
        }
    )

    assert scrubbed["asset_ids"] == 2
    assert scrubbed["note"] == "spaced out"
    assert scrubbed["long_value"].endswith("...")
    assert len(scrubbed["long_value"]) == 163
    assert scrubbed["stored_version"] is None
    assert "" not in scrubbed


def test_render_completed_reports_every_metric() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(sink=sink)

    client.render_completed(
        RenderMetrics(
            converter_version=2,
            raw_length=40,
            html_length=120,
            image_count=2,
            bound_images=1,
            unbound_anchors=1,
            read_time_minutes=1,
            document_id="blog_1",
        )
    )

    assert sink.events == [
        (
            "content.render.complete",
            {
                "converter_version": 2,
                "raw_length": 40,
                "html_length": 120,
                "image_count": 2,
                "bound_images": 1,
                "unbound_anchors": 1,
                "read_time_minutes": 1,
                "document_id": "blog_1",
            },
        )
    ]


def test_read_path_and_persist_events() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(sink=sink)

    client.rendered_on_read(
        document_id="blog_1", policy="stale", stored_version=None, converter_version=2
    )
    client.rendering_persisted(document_id="blog_1", converter_version=2)
    client.anchor_unresolved(UnresolvedAnchor(asset_id="cld_1", temporary_id=None))

    assert [name for name, _ in sink.events] == [
        "content.render.on_read",
        "content.render.persisted",
        "content.resolve.unresolved",
    ]
    assert sink.events[0][1]["stored_version"] is None
    assert sink.events[2][1] == {"asset_id": "cld_1", "temporary_id": None, "document_id": None}


def test_client_without_sink_is_silent() -> None:
    client = TelemetryClient.disabled()

    client.emit("content.render.complete", document_id="blog_1")
    client.rendering_persisted(document_id="blog_1", converter_version=2)

    assert client.enabled is False


def test_build_telemetry_client_selects_sink() -> None:
    assert build_telemetry_client(enabled=True, sink="none").enabled is False
    assert build_telemetry_client(enabled=False, sink="log").enabled is False

    client = build_telemetry_client(enabled=True, sink="log")
    assert client.enabled is True
    assert isinstance(client.sink, StructlogTelemetrySink)
