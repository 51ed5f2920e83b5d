from __future__ import annotations

from datetime import datetime
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.app.repositories.content_repository import ContentDocument, ContentImage
from backend.app.services.placeholder_resolver import UploadedAsset

ContentStatus = Literal["draft", "published", "archived"]


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized


class UploadDescriptor(BaseModel):
    """A finished upload and the anchor it should replace."""

    model_config = ConfigDict(extra="forbid")

    asset_id: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, max_length=2048)
    alt_text: str | None = Field(default=None, max_length=500)
    temporary_id: str | None = Field(default=None, max_length=200)
    ordinal_index: int | None = Field(default=None, ge=0)

    @field_validator("asset_id", "url")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("value must not be blank")
        return normalized

    @field_validator("temporary_id", mode="before")
    @classmethod
    def _normalize_temporary_id(cls, value: object) -> str | None:
        return _normalize_optional_text(value)

    def to_uploaded_asset(self) -> UploadedAsset:
        return UploadedAsset(
            asset_id=self.asset_id,
            url=self.url,
            alt_text=self.alt_text,
            temporary_id=self.temporary_id,
            ordinal_index=self.ordinal_index,
        )


class ContentImagePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    asset_id: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, max_length=2048)
    alt_text: str = Field(default="Blog image", max_length=500)
    anchor: str | None = None
    position: int = Field(default=0, ge=0)

    @classmethod
    def from_image(cls, image: ContentImage) -> ContentImagePayload:
        return cls(
            asset_id=image.asset_id,
            url=image.url,
            alt_text=image.alt_text,
            anchor=image.anchor,
            position=image.position,
        )

    def to_image(self) -> ContentImage:
        return ContentImage(
            asset_id=self.asset_id,
            url=self.url,
            alt_text=self.alt_text,
            anchor=self.anchor,
            position=self.position,
        )


class ContentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1, max_length=300)
    raw_content: str = Field(min_length=1)
    excerpt: str | None = Field(default=None, max_length=1000)
    status: ContentStatus = "draft"
    tags: list[str] = Field(default_factory=list, max_length=50)
    uploads: list[UploadDescriptor] = Field(default_factory=list, max_length=50)

    @field_validator("excerpt", mode="before")
    @classmethod
    def _normalize_excerpt(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class ContentUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=300)
    raw_content: str | None = Field(default=None, min_length=1)
    excerpt: str | None = Field(default=None, max_length=1000)
    status: ContentStatus | None = None
    tags: list[str] | None = Field(default=None, max_length=50)
    uploads: list[UploadDescriptor] = Field(default_factory=list, max_length=50)
    deleted_asset_ids: list[str] = Field(default_factory=list, max_length=50)
    replace_all_images: bool = False

    @model_validator(mode="after")
    def _validate_replace_all(self) -> ContentUpdateRequest:
        if self.replace_all_images and not self.uploads:
            raise ValueError("replace_all_images requires at least one upload")
        return self


class ContentPreviewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    raw_content: str
    images: list[ContentImagePayload] = Field(default_factory=list, max_length=50)
    uploads: list[UploadDescriptor] = Field(default_factory=list, max_length=50)


class ContentPreviewResponse(BaseModel):
    raw_content: str
    rendered_content: str
    rendered_version: int
    read_time_minutes: int
    images: list[ContentImagePayload]
    unresolved_asset_ids: list[str]


class ContentDocumentResponse(BaseModel):
    document_id: str
    slug: str
    title: str
    excerpt: str
    status: ContentStatus
    tags: list[str]
    raw_content: str
    rendered_content: str | None
    rendered_version: int | None
    read_time_minutes: int
    images: list[ContentImagePayload]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, document: ContentDocument) -> ContentDocumentResponse:
        return cls(
            document_id=document.document_id,
            slug=document.slug,
            title=document.title,
            excerpt=document.excerpt,
            status=cast(ContentStatus, document.status),
            tags=list(document.tags),
            raw_content=document.raw_content,
            rendered_content=document.rendered_content,
            rendered_version=document.rendered_version,
            read_time_minutes=document.read_time_minutes,
            images=[ContentImagePayload.from_image(image) for image in document.images],
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class ContentListResponse(BaseModel):
    items: list[ContentDocumentResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ContentImagesResponse(BaseModel):
    images: list[ContentImagePayload]
    count: int


class ContentImageDeleteResponse(BaseModel):
    deleted_image: ContentImagePayload
    remaining_images: int
    document: ContentDocumentResponse
