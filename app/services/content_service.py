from __future__ import annotations

"""
Content Service
===============

Orchestrates the ingest and delete data flows on top of the components:

    upload:  validate + hash ─► dedup lookup ─┬─► (hit)  logical copy
                                              └─► (miss) quota reserve ─► store put
                                                         ─► registry write ─► quota commit
                                                         ─► background: variants, CDN publish, backup

    delete:  soft delete ─► (grace) ─► lifecycle sweep hard-deletes

Failure rules
-------------
- Validation and quota failures happen before any registry write.
- A failed or cancelled `put` cancels the reservation; no row is written.
- Once the bytes are stored, registration runs to completion even if the
  caller goes away; a cancelled caller turns into a soft-delete request.
- Identical bytes from the same owner are serialized on `(owner, hash)` so
  two concurrent uploads cannot both become originals.
"""

import asyncio
import logging
from typing import AsyncIterable, Dict, List, Optional
from uuid import UUID

from app.core.exceptions import AccessDenied, NotFound
from app.core.metrics import inc_upload, observe_upload_bytes
from app.core.storage import primary_key
from app.repositories.content import ContentRepositoryProtocol
from app.schemas.analytics import CostEstimate, CostEstimateRequest, LibraryOverview, StorageAnalytics
from app.schemas.content import (
    ContentItem,
    SignedUrl,
    UploadMetadata,
    UploadResult,
    VerifiedToken,
    utcnow,
)
from app.schemas.enums import (
    AccessLevel,
    CdnEvent,
    LifecycleStatus,
    Priority,
    StorageClass,
    UploadOutcome,
    VariantStatus,
)
from app.services.access import AccessClient
from app.services.analytics import AnalyticsService
from app.services.cdn import CdnDistributor
from app.services.dedup import DedupIndex
from app.services.hashing import InspectedUpload, ValidationConfig, inspect
from app.services.lifecycle import HardDeleteResult, LifecycleManager
from app.services.object_store import ObjectStore
from app.services.quota_ledger import QuotaLedger
from app.services.signing import UrlSigner
from app.services.variants import VariantGenerator
from app.utils.background import BackgroundRunner
from app.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


class ContentService:
    def __init__(
        self,
        *,
        repo: ContentRepositoryProtocol,
        store: ObjectStore,
        ledger: QuotaLedger,
        dedup: DedupIndex,
        generator: VariantGenerator,
        lifecycle: LifecycleManager,
        cdn: CdnDistributor,
        analytics: AnalyticsService,
        signer: UrlSigner,
        access: AccessClient,
        runner: BackgroundRunner,
        validation: Optional[ValidationConfig] = None,
    ) -> None:
        self.repo = repo
        self.store = store
        self.ledger = ledger
        self.dedup = dedup
        self.generator = generator
        self.lifecycle = lifecycle
        self.cdn = cdn
        self.analytics = analytics
        self.signer = signer
        self.access = access
        self.runner = runner
        self.validation = validation or ValidationConfig()
        self._ingest_locks = KeyedLock()

    # ─────────────────────────────────────────────────────────
    # 📥 Upload
    # ─────────────────────────────────────────────────────────
    async def upload(self, stream: AsyncIterable[bytes], meta: UploadMetadata) -> UploadResult:
        upload = await inspect(stream, meta, self.validation)
        try:
            async with self._ingest_locks.hold((meta.owner_id, upload.content_hash)):
                source = await self.dedup.lookup(upload.content_hash, meta.owner_id)
                if source is not None:
                    copy = await self.dedup.create_logical_copy(source, meta)
                    inc_upload(copy.type.value, "duplicate")
                    await self.analytics.invalidate(meta.owner_id)
                    return self._result(copy, UploadOutcome.DUPLICATE_DETECTED, upload.warnings)
                item = await self._store_new(upload, meta)
        finally:
            upload.close()
        return self._result(item, UploadOutcome.STORED, upload.warnings)

    async def _store_new(self, upload: InspectedUpload, meta: UploadMetadata) -> ContentItem:
        owner_id, size = meta.owner_id, upload.size
        item = ContentItem(
            owner_id=owner_id,
            type=upload.content_type,
            title=meta.title,
            original_filename=meta.filename,
            access_level=meta.access_level,
            priority=meta.priority,
            storage_key=primary_key(owner_id, meta.filename),
            storage_class=StorageClass.HOT,
            content_hash=upload.content_hash,
            size_bytes=size,
            mime_type=upload.mime_type,
            extension=upload.extension,
        )

        await self.ledger.reserve(owner_id, size)
        try:
            await self.store.put(item.storage_key, upload.file, content_type=item.mime_type,
                                 storage_class=item.storage_class)
        except BaseException:
            # StorageUnavailable, cancellation or anything else: nothing was registered.
            await asyncio.shield(self.ledger.cancel(owner_id, size))
            raise

        registration = asyncio.ensure_future(self._register(item))
        try:
            return await asyncio.shield(registration)
        except asyncio.CancelledError:
            logger.warning("Upload cancelled after store; scheduling soft delete",
                           extra={"content_id": str(item.id), "owner_id": owner_id})
            self.runner.submit(self._soft_delete_when_registered(registration), label=f"abandon-{item.id}")
            raise

    async def _register(self, item: ContentItem) -> ContentItem:
        try:
            await self.repo.save(item)
        except Exception:
            logger.exception("Registry write failed; removing stored object", extra={"content_id": str(item.id)})
            await self.store.delete(item.storage_key)
            await self.ledger.cancel(item.owner_id, item.size_bytes)
            raise
        await self.ledger.commit(item.owner_id, item.size_bytes)

        inc_upload(item.type.value, "stored")
        observe_upload_bytes(item.type.value, item.size_bytes)
        logger.info(
            "Content stored",
            extra={"content_id": str(item.id), "owner_id": item.owner_id, "size": item.size_bytes,
                   "storage_key": item.storage_key},
        )
        await self.analytics.invalidate(item.owner_id)
        self.runner.submit(self._after_upload(item.id), label=f"variants-{item.id}")
        return item

    async def _soft_delete_when_registered(self, registration: "asyncio.Future[ContentItem]") -> None:
        try:
            item = await registration
        except Exception:
            return  # registration already cleaned up after itself
        await self.lifecycle.soft_delete(item.id)

    async def _after_upload(self, content_id: UUID) -> None:
        item = await self.generator.generate(content_id)
        if item is None or item.lifecycle_status is not LifecycleStatus.ACTIVE:
            return
        await self.cdn.publish(item, CdnEvent.CREATED)
        if item.priority is Priority.HIGH:
            await self.lifecycle.backup(content_id)
        await self.analytics.invalidate(item.owner_id)

    # ─────────────────────────────────────────────────────────
    # 📖 Read
    # ─────────────────────────────────────────────────────────
    async def get(self, content_id: UUID) -> ContentItem:
        item = await self.repo.get(content_id)
        if item is None or item.lifecycle_status is LifecycleStatus.HARD_DELETED:
            raise NotFound("Content", str(content_id))
        return item

    async def list_for_owner(self, owner_id: str, *, include_deleted: bool = False) -> List[ContentItem]:
        return await self.repo.find_by_owner(owner_id, include_deleted=include_deleted)

    def urls(self, item: ContentItem) -> Dict[str, str]:
        """Public delivery URLs; empty for content served only through signed URLs."""
        if item.access_level is not AccessLevel.PUBLIC:
            return {}
        out = {"original": self.store.public_url(item.storage_key)}
        for v in item.variants:
            if v.status is VariantStatus.COMPLETED:
                out[v.label] = self.store.public_url(v.storage_key)
        return out

    def _result(self, item: ContentItem, outcome: UploadOutcome, warnings: List[str]) -> UploadResult:
        return UploadResult(
            content_id=item.id,
            outcome=outcome,
            is_duplicate=item.is_duplicate,
            processing_status=item.processing_status,
            size_bytes=item.size_bytes,
            content_hash=item.content_hash,
            urls=self.urls(item),
            warnings=list(warnings),
        )

    # ─────────────────────────────────────────────────────────
    # ✏️ Owner actions
    # ─────────────────────────────────────────────────────────
    async def _owned(self, content_id: UUID, user_id: str) -> ContentItem:
        item = await self.get(content_id)
        if item.owner_id != user_id:
            raise AccessDenied("Only the owner may modify this content", user_id=user_id)
        return item

    async def delete(self, content_id: UUID, user_id: str) -> ContentItem:
        await self._owned(content_id, user_id)
        item = await self.lifecycle.soft_delete(content_id)
        await self.analytics.invalidate(item.owner_id)
        return item

    async def restore(self, content_id: UUID, user_id: str) -> ContentItem:
        await self._owned(content_id, user_id)
        item = await self.lifecycle.restore(content_id)
        await self.analytics.invalidate(item.owner_id)
        return item

    async def hard_delete(self, content_id: UUID, *, force: bool = False) -> HardDeleteResult:
        item = await self.repo.get(content_id)
        result = await self.lifecycle.hard_delete(content_id, force=force)
        if item is not None and result.removed:
            await self.analytics.invalidate(item.owner_id)
        return result

    async def retry_variant(self, content_id: UUID, label: str, user_id: str) -> ContentItem:
        await self._owned(content_id, user_id)
        item = await self.generator.retry_variant(content_id, label)
        await self.analytics.invalidate(item.owner_id)
        return item

    async def backup(self, content_id: UUID, user_id: str) -> ContentItem:
        await self._owned(content_id, user_id)
        return await self.lifecycle.backup(content_id)

    # ─────────────────────────────────────────────────────────
    # 🔐 Signed URLs
    # ─────────────────────────────────────────────────────────
    async def issue_signed_url(self, content_id: UUID, user_id: str, *, ttl_seconds: Optional[int] = None) -> SignedUrl:
        item = await self.get(content_id)
        if item.lifecycle_status is not LifecycleStatus.ACTIVE:
            raise NotFound("Content", str(content_id))
        if item.access_level is AccessLevel.PUBLIC:
            return SignedUrl(url=self.store.public_url(item.storage_key), public=True)

        ticket_id: Optional[str] = None
        if item.owner_id != user_id:
            decision = await self.access.has_access(user_id, content_id)
            if not decision.allowed:
                logger.info("Signed URL refused", extra={"content_id": str(content_id), "reason": decision.reason})
                raise AccessDenied(user_id=user_id, details={"reason": decision.reason})
            ticket_id = decision.ticket_id
        return self.signer.issue(content_id, user_id, ttl_seconds=ttl_seconds, ticket_id=ticket_id)

    async def verify(self, token: str, *, now: Optional[int] = None) -> VerifiedToken:
        claims = self.signer.verify(token, now=now)
        item = await self.get(claims.content_id)
        if item.lifecycle_status is not LifecycleStatus.ACTIVE:
            raise NotFound("Content", str(claims.content_id))
        remaining = max(1, claims.expires_at - int(now if now is not None else utcnow().timestamp()))
        claims.url = await self.store.signed_url(item.storage_key, remaining)
        return claims

    # ─────────────────────────────────────────────────────────
    # 📊 Analytics
    # ─────────────────────────────────────────────────────────
    async def storage_analytics(self, owner_id: str) -> StorageAnalytics:
        return await self.analytics.storage_analytics(owner_id)

    async def library_overview(self, owner_id: str) -> LibraryOverview:
        return await self.analytics.library_overview(owner_id)

    def estimate_costs(self, request: CostEstimateRequest) -> CostEstimate:
        return self.analytics.estimate_costs(request.size_bytes, request.type,
                                             duration_minutes=request.duration_minutes)


__all__ = ["ContentService"]
