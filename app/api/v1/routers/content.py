from __future__ import annotations

# ─────────────────────────────────────────────────────────────────────────────
# 🎞️ FanVault Media • Content API
# ─────────────────────────────────────────────────────────────────────────────
# Thin HTTP surface over `ContentService`. All rules live in the services;
# routes only translate HTTP ⇄ service calls. Errors are `AppException`s and
# render as problem+json via `app.core.exception_handlers`.

from typing import AsyncIterator, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Path, Query, Response, UploadFile, status
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ValidationError
from app.dependencies.services import get_content_service, get_user_id, require_owner
from app.schemas.analytics import CostEstimate, CostEstimateRequest, LibraryOverview, StorageAnalytics
from app.schemas.content import ContentItem, SignedUrl, UploadMetadata, UploadResult, VerifiedToken
from app.schemas.enums import AccessLevel, ContentType, Priority, UploadOutcome
from app.services.content_service import ContentService

router = APIRouter(tags=["Content"])
__all__ = ["router"]


async def _chunks(file: UploadFile, chunk_size: int) -> AsyncIterator[bytes]:
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        yield chunk


# ─────────────────────────────────────────────────────────────────────────────
# 📥 Upload
# ─────────────────────────────────────────────────────────────────────────────
@router.post(
    "/content",
    response_model=UploadResult,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a media file",
    responses={200: {"description": "Identical bytes already stored; registered as a duplicate"}},
)
async def upload_content(
    response: Response,
    file: UploadFile = File(...),
    title: str = Form(...),
    type: Optional[ContentType] = Form(None),
    access_level: AccessLevel = Form(AccessLevel.TICKET_HOLDERS),
    priority: Priority = Form(Priority.NORMAL),
    user_id: str = Depends(get_user_id),
    service: ContentService = Depends(get_content_service),
) -> UploadResult:
    try:
        meta = UploadMetadata(
            owner_id=user_id,
            title=title,
            filename=file.filename or "",
            mime_type=file.content_type or "application/octet-stream",
            declared_size=file.size,
            type=type,
            access_level=access_level,
            priority=priority,
        )
    except PydanticValidationError as e:
        raise ValidationError([f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()])

    result = await service.upload(_chunks(file, service.validation.chunk_size), meta)
    if result.outcome is UploadOutcome.DUPLICATE_DETECTED:
        response.status_code = status.HTTP_200_OK
    return result


# ─────────────────────────────────────────────────────────────────────────────
# 📖 Read
# ─────────────────────────────────────────────────────────────────────────────
@router.get("/content/{content_id}", response_model=ContentItem, summary="Get one content item")
async def get_content(
    content_id: UUID = Path(...),
    service: ContentService = Depends(get_content_service),
) -> ContentItem:
    return await service.get(content_id)


@router.get("/artists/{owner_id}/content", response_model=List[ContentItem], summary="List an artist's content")
async def list_content(
    owner_id: str = Depends(require_owner),
    include_deleted: bool = Query(False, description="Include soft-deleted items (trash view)"),
    service: ContentService = Depends(get_content_service),
) -> List[ContentItem]:
    return await service.list_for_owner(owner_id, include_deleted=include_deleted)


# ─────────────────────────────────────────────────────────────────────────────
# ✏️ Lifecycle
# ─────────────────────────────────────────────────────────────────────────────
@router.delete("/content/{content_id}", response_model=ContentItem, summary="Soft-delete content")
async def delete_content(
    content_id: UUID,
    user_id: str = Depends(get_user_id),
    service: ContentService = Depends(get_content_service),
) -> ContentItem:
    return await service.delete(content_id, user_id)


@router.post("/content/{content_id}/restore", response_model=ContentItem, summary="Restore soft-deleted content")
async def restore_content(
    content_id: UUID,
    user_id: str = Depends(get_user_id),
    service: ContentService = Depends(get_content_service),
) -> ContentItem:
    return await service.restore(content_id, user_id)


@router.post(
    "/content/{content_id}/variants/{label}/retry",
    response_model=ContentItem,
    summary="Regenerate one failed variant",
)
async def retry_variant(
    content_id: UUID,
    label: str = Path(..., min_length=1, max_length=32),
    user_id: str = Depends(get_user_id),
    service: ContentService = Depends(get_content_service),
) -> ContentItem:
    return await service.retry_variant(content_id, label, user_id)


@router.post("/content/{content_id}/backup", response_model=ContentItem, summary="Back up to every target now")
async def backup_content(
    content_id: UUID,
    user_id: str = Depends(get_user_id),
    service: ContentService = Depends(get_content_service),
) -> ContentItem:
    return await service.backup(content_id, user_id)


# ─────────────────────────────────────────────────────────────────────────────
# 🔐 Signed URLs
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/content/{content_id}/signed-url", response_model=SignedUrl, summary="Issue a signed media URL")
async def issue_signed_url(
    content_id: UUID,
    ttl_seconds: Optional[int] = Query(None, ge=60, le=7 * 24 * 60 * 60),
    user_id: str = Depends(get_user_id),
    service: ContentService = Depends(get_content_service),
) -> SignedUrl:
    return await service.issue_signed_url(content_id, user_id, ttl_seconds=ttl_seconds)


@router.get("/media/verify", response_model=VerifiedToken, summary="Verify a signed media token")
async def verify_token(
    response: Response,
    token: str = Query(..., min_length=3, max_length=4096),
    service: ContentService = Depends(get_content_service),
) -> VerifiedToken:
    response.headers["Cache-Control"] = "no-store"
    return await service.verify(token)


# ─────────────────────────────────────────────────────────────────────────────
# 📊 Analytics
# ─────────────────────────────────────────────────────────────────────────────
@router.get("/artists/{owner_id}/storage", response_model=StorageAnalytics, summary="Storage analytics")
async def storage_analytics(
    owner_id: str = Depends(require_owner),
    service: ContentService = Depends(get_content_service),
) -> StorageAnalytics:
    return await service.storage_analytics(owner_id)


@router.get("/artists/{owner_id}/overview", response_model=LibraryOverview, summary="Library overview")
async def library_overview(
    owner_id: str = Depends(require_owner),
    service: ContentService = Depends(get_content_service),
) -> LibraryOverview:
    return await service.library_overview(owner_id)


@router.post("/storage/estimate", response_model=CostEstimate, summary="Estimate storage and delivery cost")
async def estimate_costs(
    payload: CostEstimateRequest,
    service: ContentService = Depends(get_content_service),
) -> CostEstimate:
    return service.estimate_costs(payload)
