"""Structured pipeline events.

Rendering and resolution report typed events (`RenderMetrics`,
`UnresolvedAnchor`) so every sink sees the same attribute names. The HTTP
middleware uses the free-form `TelemetryClient.emit`.

Author text never leaves the process: attributes named in
`AUTHOR_TEXT_FIELDS` are replaced by their character count.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "blog_content.telemetry"

AUTHOR_TEXT_FIELDS: frozenset[str] = frozenset(
    {"excerpt", "html", "markup", "raw_content", "rendered_content", "title"}
)
_CREDENTIAL_MARKERS: tuple[str, ...] = ("authorization", "cookie", "password", "secret", "token")
_MAX_TEXT_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class StructlogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class RenderMetrics:
    converter_version: int
    raw_length: int
    html_length: int
    image_count: int
    bound_images: int
    unbound_anchors: int
    read_time_minutes: int
    document_id: str | None = None


@dataclass(frozen=True)
class UnresolvedAnchor:
    asset_id: str
    temporary_id: str | None
    document_id: str | None = None


@dataclass(frozen=True)
class TelemetryClient:
    sink: TelemetrySink | None = None

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls()

    @property
    def enabled(self) -> bool:
        return self.sink is not None

    def emit(self, event_name: str, **attributes: Any) -> None:
        if self.sink is None:
            return
        self.sink.emit(event_name=event_name, attributes=scrub_attributes(attributes))

    def render_completed(self, metrics: RenderMetrics) -> None:
        self.emit("content.render.complete", **asdict(metrics))

    def rendered_on_read(
        self,
        *,
        document_id: str,
        policy: str,
        stored_version: int | None,
        converter_version: int,
    ) -> None:
        self.emit(
            "content.render.on_read",
            document_id=document_id,
            policy=policy,
            stored_version=stored_version,
            converter_version=converter_version,
        )

    def rendering_persisted(self, *, document_id: str, converter_version: int) -> None:
        self.emit(
            "content.render.persisted",
            document_id=document_id,
            converter_version=converter_version,
        )

    def anchor_unresolved(self, anchor: UnresolvedAnchor) -> None:
        self.emit("content.resolve.unresolved", **asdict(anchor))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if enabled and sink == "log":
        return TelemetryClient(sink=StructlogTelemetrySink())
    return TelemetryClient.disabled()


def scrub_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    scrubbed: dict[str, TelemetryValue] = {}
    for raw_key, value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if key in AUTHOR_TEXT_FIELDS:
            scrubbed[key] = len(value) if isinstance(value, str) else None
        elif any(marker in key for marker in _CREDENTIAL_MARKERS):
            scrubbed[key] = "[redacted]"
        else:
            scrubbed[key] = _to_scalar(value)
    return scrubbed


def _to_scalar(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) > _MAX_TEXT_LENGTH:
            return f"{compact[:_MAX_TEXT_LENGTH]}..."
        return compact
    if isinstance(value, list | tuple | set | frozenset):
        return len(value)
    logging.getLogger(TELEMETRY_LOGGER_NAME).debug(
        "telemetry attribute coerced to type name type=%s", type(value).__name__
    )
    return type(value).__name__
