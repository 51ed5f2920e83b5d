from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Annotated, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.dependencies import get_content_service
from backend.app.models.content_contracts import (
    ContentCreateRequest,
    ContentDocumentResponse,
    ContentImageDeleteResponse,
    ContentImagePayload,
    ContentImagesResponse,
    ContentListResponse,
    ContentPreviewRequest,
    ContentPreviewResponse,
    ContentStatus,
    ContentUpdateRequest,
)
from backend.app.services.content_pipeline_service import (
    ContentNotFoundError,
    ContentPipelineService,
    ContentValidationError,
)

router = APIRouter(prefix="/blogs", tags=["blogs"])

ContentService = Annotated[ContentPipelineService, Depends(get_content_service)]
_T = TypeVar("_T")


@contextmanager
def _document_context(document_id: str) -> Iterator[None]:
    context_tokens = bind_contextvars(content_document_id=document_id)
    try:
        yield
    finally:
        reset_contextvars(**context_tokens)


def _call_service(operation: Callable[[], _T]) -> _T:
    try:
        return operation()
    except ContentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ContentValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post(
    "",
    response_model=ContentDocumentResponse,
    status_code=201,
    operation_id="blog_create",
)
def create_blog(request: ContentCreateRequest, service: ContentService) -> ContentDocumentResponse:
    document = _call_service(
        lambda: service.create_document(
            title=request.title,
            raw_content=request.raw_content,
            excerpt=request.excerpt,
            status=request.status,
            tags=request.tags,
            uploads=[upload.to_uploaded_asset() for upload in request.uploads],
        )
    )
    return ContentDocumentResponse.from_document(document)


@router.post(
    "/preview",
    response_model=ContentPreviewResponse,
    operation_id="blog_preview",
)
def preview_blog(request: ContentPreviewRequest, service: ContentService) -> ContentPreviewResponse:
    output = _call_service(
        lambda: service.preview(
            request.raw_content,
            images=[image.to_image() for image in request.images],
            uploads=[upload.to_uploaded_asset() for upload in request.uploads],
        )
    )
    return ContentPreviewResponse(
        raw_content=output.raw_content,
        rendered_content=output.rendered_content,
        rendered_version=output.rendered_version,
        read_time_minutes=output.read_time_minutes,
        images=[ContentImagePayload.from_image(image) for image in output.images],
        unresolved_asset_ids=list(output.unresolved_asset_ids),
    )


@router.get("", response_model=ContentListResponse, operation_id="blog_list")
def list_blogs(
    service: ContentService,
    status: ContentStatus | None = None,
    tag: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> ContentListResponse:
    result = _call_service(
        lambda: service.list_documents(status=status, tag=tag, page=page, page_size=page_size)
    )
    return ContentListResponse(
        items=[ContentDocumentResponse.from_document(document) for document in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get(
    "/id/{document_id}",
    response_model=ContentDocumentResponse,
    operation_id="blog_get_by_id",
)
def get_blog_by_id(document_id: str, service: ContentService) -> ContentDocumentResponse:
    with _document_context(document_id):
        document = _call_service(lambda: service.get_document(document_id))
    return ContentDocumentResponse.from_document(document)


@router.get("/{slug}", response_model=ContentDocumentResponse, operation_id="blog_get_by_slug")
def get_blog_by_slug(slug: str, service: ContentService) -> ContentDocumentResponse:
    document = _call_service(lambda: service.get_document_by_slug(slug))
    return ContentDocumentResponse.from_document(document)


@router.put(
    "/{document_id}",
    response_model=ContentDocumentResponse,
    operation_id="blog_update",
)
def update_blog(
    document_id: str,
    request: ContentUpdateRequest,
    service: ContentService,
) -> ContentDocumentResponse:
    with _document_context(document_id):
        document = _call_service(
            lambda: service.update_document(
                document_id,
                title=request.title,
                raw_content=request.raw_content,
                excerpt=request.excerpt,
                status=request.status,
                tags=request.tags,
                uploads=[upload.to_uploaded_asset() for upload in request.uploads],
                deleted_asset_ids=request.deleted_asset_ids,
                replace_all_images=request.replace_all_images,
            )
        )
    return ContentDocumentResponse.from_document(document)


@router.get(
    "/{document_id}/content-images",
    response_model=ContentImagesResponse,
    operation_id="blog_content_images_list",
)
def list_blog_images(document_id: str, service: ContentService) -> ContentImagesResponse:
    with _document_context(document_id):
        images = _call_service(lambda: service.list_images(document_id))
    return ContentImagesResponse(
        images=[ContentImagePayload.from_image(image) for image in images],
        count=len(images),
    )


@router.delete(
    "/{document_id}/content-images/{asset_id}",
    response_model=ContentImageDeleteResponse,
    operation_id="blog_content_image_delete",
)
def delete_blog_image(
    document_id: str,
    asset_id: str,
    service: ContentService,
) -> ContentImageDeleteResponse:
    with _document_context(document_id):
        removal = _call_service(lambda: service.delete_image(document_id, asset_id))
    return ContentImageDeleteResponse(
        deleted_image=ContentImagePayload.from_image(removal.removed),
        remaining_images=len(removal.document.images),
        document=ContentDocumentResponse.from_document(removal.document),
    )


@router.delete("/{document_id}", status_code=204, operation_id="blog_delete")
def delete_blog(document_id: str, service: ContentService) -> Response:
    with _document_context(document_id):
        _call_service(lambda: service.delete_document(document_id))
    return Response(status_code=204)
