from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.content_repository import ContentRepository
from backend.app.repositories.database import Database
from backend.app.services.content_pipeline_service import ContentPipelineService
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    settings = get_settings()
    database = Database(settings.db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_content_service() -> ContentPipelineService:
    settings = get_settings()
    return ContentPipelineService(
        repository=ContentRepository(get_database()),
        telemetry=get_telemetry(),
        words_per_minute=settings.words_per_minute,
        render_on_read=settings.render_on_read,
        default_page_size=settings.default_page_size,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_content_service.cache_clear()
    get_database.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
