from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest
import structlog
from pydantic import ValidationError

from backend.app.config import AppSettings, load_settings
from backend.app.logging_config import (
    LOG_FILE_NAME,
    _stream_supports_color,
    configure_application_logging,
    mask_author_text,
    resolve_log_level,
)
from backend.app.repositories.content_repository import ContentRepository
from backend.app.repositories.database import Database
from backend.app.scripts import regenerate_content
from backend.app.services.markup_renderer import CONVERTER_VERSION


def test_load_settings_defaults_paths_under_data_dir(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BLOG_CONTENT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("BLOG_CONTENT_DB_PATH", raising=False)
    monkeypatch.delenv("BLOG_CONTENT_LOG_DIR", raising=False)

    settings = load_settings()

    assert settings.data_dir == (tmp_path / "data").resolve()
    assert settings.db_path == (tmp_path / "data" / "content.db").resolve()
    assert settings.log_dir == (tmp_path / "data" / "logs").resolve()
    assert settings.words_per_minute == 200
    assert settings.render_on_read == "stale"


def test_load_settings_parses_env_overrides(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BLOG_CONTENT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("BLOG_CONTENT_DB_PATH", str(tmp_path / "elsewhere.db"))
    monkeypatch.setenv("BLOG_CONTENT_RENDER_ON_READ", " Always ")
    monkeypatch.setenv("BLOG_CONTENT_WORDS_PER_MINUTE", "250")
    monkeypatch.setenv("BLOG_CONTENT_TELEMETRY_ENABLED", "off")

    settings = load_settings()

    assert settings.db_path == (tmp_path / "elsewhere.db").resolve()
    assert settings.render_on_read == "always"
    assert settings.words_per_minute == 250
    assert settings.telemetry_enabled is False


def test_config_env_bool_falls_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLOG_CONTENT_TELEMETRY_ENABLED", "maybe")

    assert load_settings().telemetry_enabled is True


def test_load_settings_rejects_unknown_render_policy(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLOG_CONTENT_RENDER_ON_READ", "sometimes")

    with pytest.raises(ValidationError):
        load_settings()


def test_configure_application_logging_writes_json_file(tmp_path: Path) -> None:
    settings = AppSettings(data_dir=tmp_path, log_dir=tmp_path / "logs", log_level="WARNING")
    console = io.StringIO()

    log_file = configure_application_logging(settings, console_stream=console)
    logging.getLogger("blog_content.test").info("runtime-log-test")
    structlog.get_logger("blog_content.telemetry").info(
        "telemetry",
        telemetry_event="test.event",
    )
    structlog.get_logger("blog_content.pipeline").warning(
        "render diverged",
        raw_content="# a private draft",
        document_id="blog_1",
    )

    app_logger = logging.getLogger("blog_content")
    assert app_logger.propagate is False
    assert len(app_logger.handlers) == 2
    assert {handler.level for handler in app_logger.handlers} == {logging.DEBUG, logging.WARNING}
    for handler in app_logger.handlers:
        handler.flush()

    assert log_file == settings.log_dir / LOG_FILE_NAME
    parsed_events = [
        json.loads(line)
        for line in log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    runtime_event = next(
        event for event in parsed_events if event.get("event") == "runtime-log-test"
    )
    assert runtime_event["logger"] == "blog_content.test"
    assert runtime_event["level"] == "info"
    assert runtime_event["lineno"]
    assert runtime_event["converter_version"] == CONVERTER_VERSION
    assert any(event.get("telemetry_event") == "test.event" for event in parsed_events)

    diverged = next(event for event in parsed_events if event.get("event") == "render diverged")
    assert diverged["raw_content"] == "<17 chars>"
    assert diverged["document_id"] == "blog_1"
    assert "runtime-log-test" not in console.getvalue()
    assert "render diverged" in console.getvalue()
    assert "private draft" not in console.getvalue()
    assert "private draft" not in log_file.read_text(encoding="utf-8")


def test_mask_author_text_leaves_other_fields() -> None:
    event = mask_author_text(
        None, "info", {"event": "saved", "title": "Hello", "excerpt": None, "slug": "hello"}
    )

    assert event == {"event": "saved", "title": "<5 chars>", "excerpt": None, "slug": "hello"}


def test_resolve_log_level_defaults_to_info() -> None:
    assert resolve_log_level(" debug ") == logging.DEBUG
    assert resolve_log_level("nonsense") == logging.INFO


def test_stream_supports_color_detects_tty() -> None:
    class _TTY:
        def isatty(self) -> bool:
            return True

    class _Pipe:
        def isatty(self) -> bool:
            return False

    class _Closed:
        def isatty(self) -> bool:
            raise ValueError("I/O operation on closed file")

    assert _stream_supports_color(_TTY()) is True
    assert _stream_supports_color(_Pipe()) is False
    assert _stream_supports_color(_Closed()) is False
    assert _stream_supports_color(object()) is False


def test_regenerate_content_script_updates_stale_documents(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("BLOG_CONTENT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("BLOG_CONTENT_TELEMETRY_ENABLED", "0")
    database = Database(tmp_path / "content.db")
    database.initialize()
    repository = ContentRepository(database)
    created = repository.create_document(
        slug="legacy",
        title="Legacy",
        excerpt="",
        status="published",
        tags=(),
        raw_content="**bold**",
        rendered_content="<p>**bold**</p>",
        rendered_version=None,
        read_time_minutes=0,
        images=(),
    )

    regenerate_content.main(["--dry-run"])
    assert "1 document(s) would be regenerated" in capsys.readouterr().out
    unchanged = repository.get_document(created.document_id)
    assert unchanged is not None
    assert unchanged.rendered_version is None

    regenerate_content.main([])
    assert "Regenerated 1 of 1 document(s)" in capsys.readouterr().out
    regenerated = repository.get_document(created.document_id)
    assert regenerated is not None
    assert regenerated.rendered_version == CONVERTER_VERSION
    assert regenerated.read_time_minutes == 1
    assert regenerated.rendered_content is not None
    assert "<strong" in regenerated.rendered_content
