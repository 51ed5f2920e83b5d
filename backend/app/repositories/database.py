from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS content_documents (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    excerpt TEXT NOT NULL,
    status TEXT NOT NULL,
    tags_json TEXT NOT NULL,
    raw_content TEXT NOT NULL,
    rendered_content TEXT NULL,
    rendered_version INTEGER NULL,
    read_time_minutes INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_content_documents_status_created
ON content_documents(status, created_at DESC);

CREATE TABLE IF NOT EXISTS content_images (
    document_id TEXT NOT NULL,
    asset_id TEXT NOT NULL,
    url TEXT NOT NULL,
    alt_text TEXT NOT NULL,
    anchor TEXT NULL,
    position INTEGER NOT NULL,
    PRIMARY KEY (document_id, asset_id),
    FOREIGN KEY(document_id) REFERENCES content_documents(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_content_images_document_position
ON content_images(document_id, position);
"""


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            _maybe_add_rendered_version_column(conn)


def _maybe_add_rendered_version_column(conn: sqlite3.Connection) -> None:
    # Databases created before converter versioning carry no version column;
    # their rows read back as NULL and are treated as stale renderings.
    columns = _table_columns(conn, "content_documents")
    if "rendered_version" not in columns:
        conn.execute("ALTER TABLE content_documents ADD COLUMN rendered_version INTEGER NULL")


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row["name"]) for row in rows}
