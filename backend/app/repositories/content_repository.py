from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from sqlite3 import Connection, Row
from typing import cast
from uuid import uuid4

from backend.app.repositories.database import Database

CONTENT_STATUS_DRAFT = "draft"
CONTENT_STATUS_PUBLISHED = "published"
CONTENT_STATUS_ARCHIVED = "archived"
CONTENT_STATUSES: frozenset[str] = frozenset(
    {CONTENT_STATUS_DRAFT, CONTENT_STATUS_PUBLISHED, CONTENT_STATUS_ARCHIVED}
)


@dataclass(frozen=True)
class ContentImage:
    asset_id: str
    url: str
    alt_text: str
    anchor: str | None
    position: int


@dataclass(frozen=True)
class ContentDocument:
    document_id: str
    slug: str
    title: str
    excerpt: str
    status: str
    tags: tuple[str, ...]
    raw_content: str
    rendered_content: str | None
    rendered_version: int | None
    read_time_minutes: int
    images: tuple[ContentImage, ...]
    created_at: datetime
    updated_at: datetime


class ContentRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create_document(
        self,
        *,
        slug: str,
        title: str,
        excerpt: str,
        status: str,
        tags: Sequence[str],
        raw_content: str,
        rendered_content: str | None,
        rendered_version: int | None,
        read_time_minutes: int,
        images: Sequence[ContentImage],
    ) -> ContentDocument:
        now_iso = _utc_now_iso()
        document_id = f"blog_{uuid4().hex}"
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO content_documents (
                    id,
                    slug,
                    title,
                    excerpt,
                    status,
                    tags_json,
                    raw_content,
                    rendered_content,
                    rendered_version,
                    read_time_minutes,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document_id,
                    slug,
                    title,
                    excerpt,
                    status,
                    _dump_tags(tags),
                    raw_content,
                    rendered_content,
                    rendered_version,
                    read_time_minutes,
                    now_iso,
                    now_iso,
                ),
            )
            _replace_images_with_conn(conn, document_id, images)
            created = _get_document_with_conn(conn, document_id)
        if created is None:
            raise RuntimeError("Content document was not found after insert")
        return created

    def save_document(self, document: ContentDocument) -> ContentDocument:
        """Persist every field of ``document`` and replace its image rows."""
        with self._db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE content_documents
                SET slug = ?,
                    title = ?,
                    excerpt = ?,
                    status = ?,
                    tags_json = ?,
                    raw_content = ?,
                    rendered_content = ?,
                    rendered_version = ?,
                    read_time_minutes = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    document.slug,
                    document.title,
                    document.excerpt,
                    document.status,
                    _dump_tags(document.tags),
                    document.raw_content,
                    document.rendered_content,
                    document.rendered_version,
                    document.read_time_minutes,
                    _utc_now_iso(),
                    document.document_id,
                ),
            )
            if cursor.rowcount == 0:
                raise KeyError(document.document_id)
            _replace_images_with_conn(conn, document.document_id, document.images)
            saved = _get_document_with_conn(conn, document.document_id)
        if saved is None:
            raise RuntimeError("Content document was not found after update")
        return saved

    def get_document(self, document_id: str) -> ContentDocument | None:
        with self._db.connection() as conn:
            return _get_document_with_conn(conn, document_id)

    def get_document_by_slug(self, slug: str) -> ContentDocument | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM content_documents WHERE slug = ? LIMIT 1",
                (slug,),
            ).fetchone()
            if row is None:
                return None
            return _row_to_document(row, _load_images_with_conn(conn, str(row["id"])))

    def slug_exists(self, slug: str, *, exclude_document_id: str | None = None) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id
                FROM content_documents
                WHERE slug = ? AND id != ?
                LIMIT 1
                """,
                (slug, exclude_document_id or ""),
            ).fetchone()
        return row is not None

    def list_documents(
        self,
        *,
        status: str | None = None,
        tag: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ContentDocument]:
        where_sql, params = _build_filters(status=status, tag=tag)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT *
                FROM content_documents
                {where_sql}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (*params, max(1, limit), max(0, offset)),
            ).fetchall()
            return [
                _row_to_document(row, _load_images_with_conn(conn, str(row["id"])))
                for row in rows
            ]

    def count_documents(self, *, status: str | None = None, tag: str | None = None) -> int:
        where_sql, params = _build_filters(status=status, tag=tag)
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS total FROM content_documents {where_sql}",
                params,
            ).fetchone()
        if row is None:
            return 0
        return int(row["total"])

    def list_documents_needing_render(self, *, converter_version: int) -> list[ContentDocument]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM content_documents
                WHERE rendered_content IS NULL
                   OR rendered_version IS NULL
                   OR rendered_version != ?
                ORDER BY created_at ASC, id ASC
                """,
                (converter_version,),
            ).fetchall()
            return [
                _row_to_document(row, _load_images_with_conn(conn, str(row["id"])))
                for row in rows
            ]

    def list_all_document_ids(self) -> list[str]:
        with self._db.connection() as conn:
            rows = conn.execute(
                "SELECT id FROM content_documents ORDER BY created_at ASC, id ASC"
            ).fetchall()
        return [str(row["id"]) for row in rows]

    def delete_document(self, document_id: str) -> bool:
        with self._db.connection() as conn:
            conn.execute("DELETE FROM content_images WHERE document_id = ?", (document_id,))
            cursor = conn.execute("DELETE FROM content_documents WHERE id = ?", (document_id,))
            return cursor.rowcount > 0


def _build_filters(*, status: str | None, tag: str | None) -> tuple[str, tuple[str, ...]]:
    clauses: list[str] = []
    params: list[str] = []
    if status is not None:
        clauses.append("status = ?")
        params.append(status)
    if tag is not None:
        clauses.append("EXISTS (SELECT 1 FROM json_each(content_documents.tags_json) WHERE value = ?)")
        params.append(tag)
    if not clauses:
        return "", ()
    return "WHERE " + " AND ".join(clauses), tuple(params)


def _replace_images_with_conn(
    conn: Connection,
    document_id: str,
    images: Sequence[ContentImage],
) -> None:
    conn.execute("DELETE FROM content_images WHERE document_id = ?", (document_id,))
    conn.executemany(
        """
        INSERT INTO content_images (document_id, asset_id, url, alt_text, anchor, position)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [
            (document_id, image.asset_id, image.url, image.alt_text, image.anchor, image.position)
            for image in images
        ],
    )


def _get_document_with_conn(conn: Connection, document_id: str) -> ContentDocument | None:
    row = conn.execute(
        "SELECT * FROM content_documents WHERE id = ? LIMIT 1",
        (document_id,),
    ).fetchone()
    if row is None:
        return None
    return _row_to_document(row, _load_images_with_conn(conn, document_id))


def _load_images_with_conn(conn: Connection, document_id: str) -> tuple[ContentImage, ...]:
    rows = conn.execute(
        """
        SELECT *
        FROM content_images
        WHERE document_id = ?
        ORDER BY position ASC, rowid ASC
        """,
        (document_id,),
    ).fetchall()
    return tuple(_row_to_image(row) for row in rows)


def _row_to_image(row: Row) -> ContentImage:
    anchor = row["anchor"]
    return ContentImage(
        asset_id=str(row["asset_id"]),
        url=str(row["url"]),
        alt_text=str(row["alt_text"]),
        # Anchors are matched literally, so they are never trimmed.
        anchor=anchor if isinstance(anchor, str) and anchor else None,
        position=_to_optional_int(row["position"]) or 0,
    )


def _row_to_document(row: Row, images: tuple[ContentImage, ...]) -> ContentDocument:
    rendered = row["rendered_content"]
    return ContentDocument(
        document_id=str(row["id"]),
        slug=str(row["slug"]),
        title=str(row["title"]),
        excerpt=str(row["excerpt"]),
        status=str(row["status"]),
        tags=tuple(_load_tags(row["tags_json"])),
        raw_content=str(row["raw_content"]),
        rendered_content=rendered if isinstance(rendered, str) else None,
        rendered_version=_to_optional_int(row["rendered_version"]),
        read_time_minutes=max(0, _to_optional_int(row["read_time_minutes"]) or 0),
        images=images,
        created_at=_parse_iso_datetime(str(row["created_at"])),
        updated_at=_parse_iso_datetime(str(row["updated_at"])),
    )


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _parse_iso_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _to_optional_int(value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            return None
    return None


def _dump_tags(tags: Sequence[str]) -> str:
    return json.dumps(list(tags), ensure_ascii=True)


def _load_tags(value: object) -> list[str]:
    if not isinstance(value, str):
        return []
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    raw_items = cast(list[object], parsed)
    tags: list[str] = []
    for item in raw_items:
        if isinstance(item, str):
            stripped = item.strip()
            if stripped:
                tags.append(stripped)
    return tags
