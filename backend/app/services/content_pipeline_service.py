from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Literal
from uuid import uuid4

from backend.app.repositories.content_repository import (
    CONTENT_STATUS_DRAFT,
    CONTENT_STATUSES,
    ContentDocument,
    ContentImage,
    ContentRepository,
)
from backend.app.services.markup_renderer import CONVERTER_VERSION, render_markup
from backend.app.services.placeholder_resolver import (
    ResolutionResult,
    UploadedAsset,
    resolve_placeholders,
)
from backend.app.services.read_time import DEFAULT_WORDS_PER_MINUTE, estimate_read_time_minutes
from backend.app.telemetry import RenderMetrics, TelemetryClient, UnresolvedAnchor

LOGGER = logging.getLogger("blog_content.pipeline")

RenderOnReadPolicy = Literal["never", "stale", "always"]

MAX_SLUG_LENGTH = 100
MAX_EXCERPT_LENGTH = 150
MAX_SLUG_SUFFIX_ATTEMPTS = 1000

_SLUG_DISALLOWED_PATTERN = re.compile(r"[^a-z0-9 -]")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_DASH_RUN_PATTERN = re.compile(r"-+")
_TAG_PATTERN = re.compile(r"<[^>]*>")


class ContentNotFoundError(Exception):
    pass


class ContentValidationError(ValueError):
    pass


@dataclass(frozen=True)
class PipelineOutput:
    """Derived fields computed from one ``raw_content`` and image set."""

    raw_content: str
    rendered_content: str
    rendered_version: int
    read_time_minutes: int
    images: tuple[ContentImage, ...]
    unresolved_asset_ids: tuple[str, ...]


@dataclass(frozen=True)
class ContentPage:
    items: list[ContentDocument]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class ImageRemoval:
    document: ContentDocument
    removed: ContentImage


@dataclass(frozen=True)
class RegenerationStats:
    examined: int
    regenerated: int


class ContentPipelineService:
    def __init__(
        self,
        *,
        repository: ContentRepository,
        telemetry: TelemetryClient | None = None,
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
        render_on_read: RenderOnReadPolicy = "stale",
        default_page_size: int = 9,
    ) -> None:
        self._repository = repository
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._words_per_minute = max(1, words_per_minute)
        self._render_on_read: RenderOnReadPolicy = render_on_read
        self._default_page_size = max(1, default_page_size)

    @property
    def render_on_read(self) -> RenderOnReadPolicy:
        return self._render_on_read

    def run_pipeline(
        self,
        raw_content: str,
        *,
        uploads: Sequence[UploadedAsset] = (),
        existing_images: Sequence[ContentImage] = (),
        document_id: str | None = None,
    ) -> PipelineOutput:
        """Resolve upload anchors, then render and time the resolved text."""
        if raw_content is None:
            raise TypeError("raw_content must be a string")

        resolution = resolve_placeholders(raw_content, uploads, existing_images=existing_images)
        self._report_unresolved(resolution, uploads, document_id)
        return self._render(
            resolution.content,
            resolution.images,
            resolution.unresolved_asset_ids,
            document_id=document_id,
        )

    def render_document(
        self,
        raw_content: str,
        images: Sequence[ContentImage],
        *,
        document_id: str | None = None,
    ) -> PipelineOutput:
        """Recompute derived fields without touching anchors."""
        if raw_content is None:
            raise TypeError("raw_content must be a string")
        return self._render(raw_content, tuple(images), (), document_id=document_id)

    def preview(
        self,
        raw_content: str,
        *,
        images: Sequence[ContentImage] = (),
        uploads: Sequence[UploadedAsset] = (),
    ) -> PipelineOutput:
        return self.run_pipeline(raw_content, uploads=uploads, existing_images=images)

    def create_document(
        self,
        *,
        title: str,
        raw_content: str,
        excerpt: str | None = None,
        status: str = CONTENT_STATUS_DRAFT,
        tags: Sequence[str] = (),
        uploads: Sequence[UploadedAsset] = (),
    ) -> ContentDocument:
        normalized_title = _require_text(title, field_name="title")
        if raw_content is None:
            raise TypeError("raw_content must be a string")
        if not raw_content.strip():
            raise ContentValidationError("raw_content must not be empty")
        normalized_status = _normalize_status(status)

        output = self.run_pipeline(raw_content, uploads=uploads)
        document = self._repository.create_document(
            slug=self._unique_slug(normalized_title),
            title=normalized_title,
            excerpt=_resolve_excerpt(excerpt, output.raw_content),
            status=normalized_status,
            tags=_normalize_tags(tags),
            raw_content=output.raw_content,
            rendered_content=output.rendered_content,
            rendered_version=output.rendered_version,
            read_time_minutes=output.read_time_minutes,
            images=output.images,
        )
        LOGGER.info(
            "content document created document_id=%s slug=%s images=%s",
            document.document_id,
            document.slug,
            len(document.images),
        )
        return document

    def update_document(
        self,
        document_id: str,
        *,
        title: str | None = None,
        raw_content: str | None = None,
        excerpt: str | None = None,
        status: str | None = None,
        tags: Sequence[str] | None = None,
        uploads: Sequence[UploadedAsset] = (),
        deleted_asset_ids: Sequence[str] = (),
        replace_all_images: bool = False,
    ) -> ContentDocument:
        """Apply a partial update and recompute every derived field.

        Removed images are dropped before new uploads are resolved. With
        ``replace_all_images`` the new uploads become the full image set, as
        long as at least one upload was provided.
        """
        current = self._require_document(document_id)

        images = current.images
        if deleted_asset_ids:
            removed = set(deleted_asset_ids)
            images = tuple(image for image in images if image.asset_id not in removed)
        if replace_all_images and uploads:
            images = ()

        next_title = current.title
        next_slug = current.slug
        if title is not None:
            next_title = _require_text(title, field_name="title")
            if next_title != current.title:
                next_slug = self._unique_slug(next_title, exclude_document_id=document_id)

        next_raw = current.raw_content
        if raw_content is not None:
            if not raw_content.strip():
                raise ContentValidationError("raw_content must not be empty")
            next_raw = raw_content

        output = self.run_pipeline(
            next_raw, uploads=uploads, existing_images=images, document_id=document_id
        )
        updated = replace(
            current,
            slug=next_slug,
            title=next_title,
            excerpt=excerpt.strip() if excerpt is not None and excerpt.strip() else current.excerpt,
            status=_normalize_status(status) if status is not None else current.status,
            tags=_normalize_tags(tags) if tags is not None else current.tags,
            raw_content=output.raw_content,
            rendered_content=output.rendered_content,
            rendered_version=output.rendered_version,
            read_time_minutes=output.read_time_minutes,
            images=output.images,
        )
        saved = self._save(updated)
        LOGGER.info(
            "content document updated document_id=%s images=%s deleted=%s",
            saved.document_id,
            len(saved.images),
            len(deleted_asset_ids),
        )
        return saved

    def get_document(self, document_id: str) -> ContentDocument:
        return self._apply_read_policy(self._require_document(document_id))

    def get_document_by_slug(self, slug: str) -> ContentDocument:
        document = self._repository.get_document_by_slug(slug.strip())
        if document is None:
            raise ContentNotFoundError(f"Blog not found: {slug}")
        return self._apply_read_policy(document)

    def list_documents(
        self,
        *,
        status: str | None = None,
        tag: str | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> ContentPage:
        normalized_status = _normalize_status(status) if status is not None else None
        normalized_tag = tag.strip() if tag is not None and tag.strip() else None
        safe_page = max(1, page)
        safe_page_size = max(1, page_size if page_size is not None else self._default_page_size)

        documents = self._repository.list_documents(
            status=normalized_status,
            tag=normalized_tag,
            limit=safe_page_size,
            offset=(safe_page - 1) * safe_page_size,
        )
        total = self._repository.count_documents(status=normalized_status, tag=normalized_tag)
        return ContentPage(
            items=[self._apply_read_policy(document) for document in documents],
            total=total,
            page=safe_page,
            page_size=safe_page_size,
        )

    def list_images(self, document_id: str) -> tuple[ContentImage, ...]:
        return self._require_document(document_id).images

    def delete_image(self, document_id: str, asset_id: str) -> ImageRemoval:
        """Detach one image; its anchor stays in the text and renders literally."""
        current = self._require_document(document_id)
        removed = next((image for image in current.images if image.asset_id == asset_id), None)
        if removed is None:
            raise ContentNotFoundError(f"Content image not found: {asset_id}")

        remaining = tuple(image for image in current.images if image.asset_id != asset_id)
        output = self.render_document(current.raw_content, remaining, document_id=document_id)
        saved = self._save(
            replace(
                current,
                rendered_content=output.rendered_content,
                rendered_version=output.rendered_version,
                read_time_minutes=output.read_time_minutes,
                images=remaining,
            )
        )
        LOGGER.info(
            "content image removed document_id=%s asset_id=%s remaining=%s",
            document_id,
            asset_id,
            len(remaining),
        )
        return ImageRemoval(document=saved, removed=removed)

    def delete_document(self, document_id: str) -> None:
        if not self._repository.delete_document(document_id):
            raise ContentNotFoundError(f"Blog not found: {document_id}")
        LOGGER.info("content document deleted document_id=%s", document_id)

    def needs_rerender(self, document: ContentDocument) -> bool:
        return document.rendered_content is None or document.rendered_version != CONVERTER_VERSION

    def regenerate_document(self, document_id: str) -> ContentDocument:
        """Recompute and persist derived fields for one stored document."""
        current = self._require_document(document_id)
        output = self.render_document(
            current.raw_content, current.images, document_id=document_id
        )
        saved = self._save(
            replace(
                current,
                rendered_content=output.rendered_content,
                rendered_version=output.rendered_version,
                read_time_minutes=output.read_time_minutes,
            )
        )
        self._telemetry.rendering_persisted(
            document_id=document_id, converter_version=CONVERTER_VERSION
        )
        return saved

    def regenerate_stale_documents(
        self,
        *,
        force_all: bool = False,
        dry_run: bool = False,
    ) -> RegenerationStats:
        if force_all:
            document_ids = self._repository.list_all_document_ids()
        else:
            document_ids = [
                document.document_id
                for document in self._repository.list_documents_needing_render(
                    converter_version=CONVERTER_VERSION
                )
            ]

        regenerated = 0
        for document_id in document_ids:
            if dry_run:
                LOGGER.info("content document would be regenerated document_id=%s", document_id)
                continue
            self.regenerate_document(document_id)
            regenerated += 1
        return RegenerationStats(examined=len(document_ids), regenerated=regenerated)

    def _apply_read_policy(self, document: ContentDocument) -> ContentDocument:
        if self._render_on_read == "never":
            return document
        if self._render_on_read == "stale" and not self.needs_rerender(document):
            return document

        output = self.render_document(
            document.raw_content, document.images, document_id=document.document_id
        )
        self._telemetry.rendered_on_read(
            document_id=document.document_id,
            policy=self._render_on_read,
            stored_version=document.rendered_version,
            converter_version=CONVERTER_VERSION,
        )
        # Read-path renderings are served but never written back.
        return replace(
            document,
            rendered_content=output.rendered_content,
            rendered_version=output.rendered_version,
            read_time_minutes=output.read_time_minutes,
        )

    def _render(
        self,
        raw_content: str,
        images: tuple[ContentImage, ...],
        unresolved_asset_ids: tuple[str, ...],
        *,
        document_id: str | None,
    ) -> PipelineOutput:
        rendered = render_markup(raw_content, images)
        read_time = estimate_read_time_minutes(raw_content, self._words_per_minute)
        self._telemetry.render_completed(
            RenderMetrics(
                converter_version=CONVERTER_VERSION,
                raw_length=len(raw_content),
                html_length=len(rendered.html),
                image_count=len(images),
                bound_images=len(rendered.bound_asset_ids),
                unbound_anchors=rendered.unbound_anchor_count,
                read_time_minutes=read_time,
                document_id=document_id,
            )
        )
        return PipelineOutput(
            raw_content=raw_content,
            rendered_content=rendered.html,
            rendered_version=CONVERTER_VERSION,
            read_time_minutes=read_time,
            images=images,
            unresolved_asset_ids=unresolved_asset_ids,
        )

    def _report_unresolved(
        self,
        resolution: ResolutionResult,
        uploads: Sequence[UploadedAsset],
        document_id: str | None,
    ) -> None:
        temporary_ids = {upload.asset_id: upload.temporary_id for upload in uploads}
        for asset_id in resolution.unresolved_asset_ids:
            self._telemetry.anchor_unresolved(
                UnresolvedAnchor(
                    asset_id=asset_id,
                    temporary_id=temporary_ids.get(asset_id),
                    document_id=document_id,
                )
            )

    def _require_document(self, document_id: str) -> ContentDocument:
        document = self._repository.get_document(document_id)
        if document is None:
            raise ContentNotFoundError(f"Blog not found: {document_id}")
        return document

    def _save(self, document: ContentDocument) -> ContentDocument:
        try:
            return self._repository.save_document(document)
        except KeyError as exc:
            raise ContentNotFoundError(f"Blog not found: {document.document_id}") from exc

    def _unique_slug(self, title: str, *, exclude_document_id: str | None = None) -> str:
        base = generate_slug(title)
        candidate = base
        for suffix in range(1, MAX_SLUG_SUFFIX_ATTEMPTS + 1):
            if not self._repository.slug_exists(candidate, exclude_document_id=exclude_document_id):
                return candidate
            suffix_text = f"-{suffix}"
            candidate = f"{base[: MAX_SLUG_LENGTH - len(suffix_text)]}{suffix_text}"
        return _fallback_slug()


def generate_slug(title: str) -> str:
    slug = _SLUG_DISALLOWED_PATTERN.sub("", title.lower())
    slug = _WHITESPACE_PATTERN.sub("-", slug)
    slug = _DASH_RUN_PATTERN.sub("-", slug)
    slug = slug[:MAX_SLUG_LENGTH]
    if not slug.strip("-"):
        return _fallback_slug()
    return slug


def generate_excerpt(raw_content: str, max_length: int = MAX_EXCERPT_LENGTH) -> str:
    if not raw_content:
        return ""
    plain_text = _TAG_PATTERN.sub("", raw_content)
    if len(plain_text) <= max_length:
        return plain_text
    return plain_text[:max_length].strip() + "..."


def _fallback_slug() -> str:
    return f"blog-{uuid4().hex[:12]}"


def _resolve_excerpt(excerpt: str | None, raw_content: str) -> str:
    if excerpt is not None and excerpt.strip():
        return excerpt.strip()
    return generate_excerpt(raw_content)


def _require_text(value: str, *, field_name: str) -> str:
    normalized = value.strip() if isinstance(value, str) else ""
    if not normalized:
        raise ContentValidationError(f"{field_name} must not be empty")
    return normalized


def _normalize_status(status: str) -> str:
    normalized = status.strip().lower()
    if normalized not in CONTENT_STATUSES:
        allowed = ", ".join(sorted(CONTENT_STATUSES))
        raise ContentValidationError(f"status must be one of: {allowed}")
    return normalized


def _normalize_tags(tags: Sequence[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for tag in tags:
        stripped = tag.strip()
        if stripped:
            seen.setdefault(stripped, None)
    return tuple(seen)
