from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app
from backend.app.repositories.content_repository import ContentRepository
from backend.app.repositories.database import Database


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "content.db")
    db.initialize()
    return db


@pytest.fixture
def repository(database: Database) -> ContentRepository:
    return ContentRepository(database)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("BLOG_CONTENT_DATA_DIR", str(data_dir))
    monkeypatch.setenv("BLOG_CONTENT_TELEMETRY_ENABLED", "0")
    monkeypatch.delenv("BLOG_CONTENT_RENDER_ON_READ", raising=False)
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
