from __future__ import annotations

"""
Deduplication Index
===================

Content hash → canonical stored item. The registry already indexes
`(content_hash, owner_id)`, so the index is a thin policy layer on top of
`ContentRepositoryProtocol.find_by_hash`:

- `lookup(hash, owner_id)` returns the item whose bytes a new upload would
  reuse. Originals win over duplicates; among originals the oldest wins.
- `create_logical_copy(source, meta)` registers a new item that points at the
  source's storage key and completed variants. Nothing is stored, reserved
  or generated for it.

Cross-owner matching is off by default: answering "someone else already has
these bytes" from a fast path is a timing side channel across tenants.
"""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.core.config import Settings
from app.repositories.content import ContentRepositoryProtocol
from app.schemas.content import ContentItem, UploadMetadata, utcnow
from app.schemas.enums import LifecycleStatus, ProcessingStatus, VariantStatus

logger = logging.getLogger(__name__)


class DedupConfig(BaseModel):
    """`cross_owner`: match identical bytes stored by any owner (default off)."""

    model_config = ConfigDict(frozen=True)

    cross_owner: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "DedupConfig":
        return cls(cross_owner=s.DEDUP_CROSS_OWNER)


class DedupIndex:
    def __init__(self, repo: ContentRepositoryProtocol, config: Optional[DedupConfig] = None) -> None:
        self.repo = repo
        self.config = config or DedupConfig()

    async def lookup(self, content_hash: str, owner_id: str) -> Optional[ContentItem]:
        scope = None if self.config.cross_owner else owner_id
        candidates = await self.repo.find_by_hash(content_hash, scope)
        if not candidates:
            return None
        # Prefer active originals, then any original, then whatever is left.
        ranked = sorted(
            candidates,
            key=lambda i: (i.is_duplicate, i.lifecycle_status is not LifecycleStatus.ACTIVE, i.uploaded_at),
        )
        return ranked[0]

    async def create_logical_copy(self, source: ContentItem, meta: UploadMetadata) -> ContentItem:
        """Register `meta` as a copy of `source`'s bytes (no storage, no quota)."""
        original_id = source.original_content_id if source.is_duplicate else source.id
        now = utcnow()
        copy = ContentItem(
            owner_id=meta.owner_id,
            type=source.type,
            title=meta.title,
            original_filename=meta.filename,
            access_level=meta.access_level,
            priority=meta.priority,
            storage_key=source.storage_key,
            storage_class=source.storage_class,
            content_hash=source.content_hash,
            size_bytes=source.size_bytes,
            mime_type=source.mime_type,
            extension=source.extension,
            uploaded_at=now,
            updated_at=now,
            processing_status=ProcessingStatus.COMPLETED,
            is_duplicate=True,
            original_content_id=original_id,
            width=source.width,
            height=source.height,
            duration_seconds=source.duration_seconds,
            bitrate_bps=source.bitrate_bps,
            sample_rate=source.sample_rate,
            channels=source.channels,
            waveform=list(source.waveform) if source.waveform else None,
            variants=[
                v.model_copy() for v in source.variants if v.status is VariantStatus.COMPLETED
            ],
        )
        await self.repo.save(copy)
        logger.info(
            "Registered logical copy",
            extra={"content_id": str(copy.id), "original_content_id": str(original_id), "owner_id": meta.owner_id},
        )
        return copy


__all__ = ["DedupConfig", "DedupIndex"]
