"""Process-wide logging for the content service and its scripts.

Everything under the ``blog_content`` logger goes to a human console stream
and to a JSON-lines file. Both outputs mask author text and the file lines
are stamped with the running converter version, so a stale rendering can be
traced back to the code that produced it.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from backend.app.config import AppSettings
from backend.app.services.markup_renderer import CONVERTER_VERSION
from backend.app.telemetry import AUTHOR_TEXT_FIELDS

ROOT_LOGGER_NAME = "blog_content"
LOG_FILE_NAME = "blog-content.log"


def configure_application_logging(
    settings: AppSettings,
    *,
    console_stream: TextIO | None = None,
) -> Path:
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(logging.DEBUG)
    root.propagate = False
    for stale in list(root.handlers):
        root.removeHandler(stale)
        stale.close()

    stream = console_stream if console_stream is not None else sys.stdout
    root.addHandler(_console_handler(stream, resolve_log_level(settings.log_level)))
    root.addHandler(_json_file_handler(log_file))

    root.info(
        "logging configured console_level=%s path=%s converter_version=%s",
        settings.log_level.upper(),
        log_file,
        CONVERTER_VERSION,
    )
    return log_file


def resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def mask_author_text(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    for field in AUTHOR_TEXT_FIELDS.intersection(event_dict):
        value = event_dict[field]
        if isinstance(value, str):
            event_dict[field] = f"<{len(value)} chars>"
    return event_dict


def _stamp_converter_version(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict.setdefault("converter_version", CONVERTER_VERSION)
    return event_dict


def _source_location(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["module"] = record.module
        event_dict["lineno"] = record.lineno
    return event_dict


def _console_handler(stream: TextIO, level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(level)
    handler.setFormatter(
        _formatter(
            mask_author_text,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=_stream_supports_color(stream)),
        )
    )
    return handler


def _json_file_handler(path: Path) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        _formatter(
            mask_author_text,
            _stamp_converter_version,
            _source_location,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        )
    )
    return handler


def _formatter(*processors: Processor) -> structlog.stdlib.ProcessorFormatter:
    # Plain ``logging`` records miss the request context bound by the middleware.
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.contextvars.merge_contextvars],
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            *processors,
        ],
    )


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except (OSError, ValueError):
        return False
