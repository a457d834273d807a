from __future__ import annotations

"""Content registry repository.

Interface plus two implementations for persisting `ContentItem` aggregates
(item + variants + backups):

- `MemoryContentRepository`  dict-backed; returns deep copies so callers must
                             `save()` to publish a change, like the SQL one.
- `SqlContentRepository`     SQLAlchemy async sessions over `content_items`,
                             `content_variants`, `content_backups`.

"Live" below means any lifecycle status other than `hard_deleted`.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.content_item import (
    ContentBackup as BackupRow,
    ContentItem as ItemRow,
    ContentVariant as VariantRow,
)
from app.schemas.content import BackupLocation, ContentItem, Variant
from app.schemas.enums import BackupStatus, LifecycleStatus, VariantKind, VariantStatus


# Protocol-like documentation for the expected interface.


class ContentRepositoryProtocol:
    async def get(self, content_id: UUID) -> Optional[ContentItem]:
        raise NotImplementedError

    async def save(self, item: ContentItem) -> ContentItem:
        """Insert or replace the whole aggregate."""
        raise NotImplementedError

    async def delete(self, content_id: UUID) -> bool:
        raise NotImplementedError

    async def find_by_owner(self, owner_id: str, *, include_deleted: bool = False) -> List[ContentItem]:
        raise NotImplementedError

    async def find_by_hash(self, content_hash: str, owner_id: Optional[str] = None) -> List[ContentItem]:
        """Live items with this hash (any owner when `owner_id` is None), oldest first."""
        raise NotImplementedError

    async def find_by_storage_key(self, storage_key: str) -> List[ContentItem]:
        """Live items whose canonical object is `storage_key`."""
        raise NotImplementedError

    async def list_due_hard_delete(self, now: datetime) -> List[ContentItem]:
        raise NotImplementedError

    async def list_needing_backup(self, *, limit: int = 100) -> List[ContentItem]:
        """Active originals (not duplicates) without a completed backup on every target."""
        raise NotImplementedError

    async def list_owners(self) -> List[str]:
        raise NotImplementedError


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; everything in the domain is UTC."""
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _backup_pending(item: ContentItem) -> bool:
    return not item.backups or any(b.status is not BackupStatus.COMPLETED for b in item.backups)


# ─────────────────────────────────────────────────────────────
# 🧪 Memory
# ─────────────────────────────────────────────────────────────
class MemoryContentRepository(ContentRepositoryProtocol):
    def __init__(self) -> None:
        self._items: Dict[UUID, ContentItem] = {}

    async def get(self, content_id: UUID) -> Optional[ContentItem]:
        item = self._items.get(content_id)
        return item.model_copy(deep=True) if item else None

    async def save(self, item: ContentItem) -> ContentItem:
        self._items[item.id] = item.model_copy(deep=True)
        return item

    async def delete(self, content_id: UUID) -> bool:
        return self._items.pop(content_id, None) is not None

    def _live(self) -> List[ContentItem]:
        return [i for i in self._items.values() if i.lifecycle_status is not LifecycleStatus.HARD_DELETED]

    @staticmethod
    def _copies(items: List[ContentItem]) -> List[ContentItem]:
        return [i.model_copy(deep=True) for i in sorted(items, key=lambda i: i.uploaded_at)]

    async def find_by_owner(self, owner_id: str, *, include_deleted: bool = False) -> List[ContentItem]:
        items = [i for i in self._live() if i.owner_id == owner_id]
        if not include_deleted:
            items = [i for i in items if i.lifecycle_status is LifecycleStatus.ACTIVE]
        return self._copies(items)

    async def find_by_hash(self, content_hash: str, owner_id: Optional[str] = None) -> List[ContentItem]:
        items = [
            i for i in self._live()
            if i.content_hash == content_hash and (owner_id is None or i.owner_id == owner_id)
        ]
        return self._copies(items)

    async def find_by_storage_key(self, storage_key: str) -> List[ContentItem]:
        return self._copies([i for i in self._live() if i.storage_key == storage_key])

    async def list_due_hard_delete(self, now: datetime) -> List[ContentItem]:
        items = [
            i for i in self._items.values()
            if i.lifecycle_status is LifecycleStatus.SOFT_DELETED and i.hard_delete_at and i.hard_delete_at <= now
        ]
        return self._copies(items)

    async def list_needing_backup(self, *, limit: int = 100) -> List[ContentItem]:
        items = [
            i for i in self._items.values()
            if i.lifecycle_status is LifecycleStatus.ACTIVE and not i.is_duplicate and _backup_pending(i)
        ]
        return self._copies(items)[:limit]

    async def list_owners(self) -> List[str]:
        return sorted({i.owner_id for i in self._items.values()})


# ─────────────────────────────────────────────────────────────
# 🗄️ SQL
# ─────────────────────────────────────────────────────────────
_ITEM_COLUMNS = (
    "owner_id", "type", "title", "original_filename", "access_level", "priority",
    "storage_key", "storage_class", "content_hash", "size_bytes", "mime_type", "extension",
    "uploaded_at", "updated_at", "processing_status", "processing_error",
    "lifecycle_status", "deleted_at", "hard_delete_at", "is_duplicate", "original_content_id",
    "width", "height", "duration_seconds", "bitrate_bps", "sample_rate", "channels", "waveform",
)


def _item_from_row(row: ItemRow) -> ContentItem:
    data = {c: getattr(row, c) for c in _ITEM_COLUMNS}
    for ts in ("uploaded_at", "updated_at", "deleted_at", "hard_delete_at"):
        data[ts] = _aware(data[ts])
    data["id"] = row.id
    data["variants"] = [
        Variant(
            label=v.label,
            kind=VariantKind(v.kind),
            storage_key=v.storage_key,
            status=VariantStatus(v.status),
            size_bytes=v.size_bytes or 0,
            width=v.width,
            height=v.height,
            bitrate_kbps=v.bitrate_kbps,
            mime_type=v.mime_type,
            error=v.error,
            attempts=v.attempts or 0,
            updated_at=_aware(v.updated_at),
        )
        for v in sorted(row.variants, key=lambda v: v.position)
    ]
    data["backups"] = [
        BackupLocation(
            target=b.target,
            provider=b.provider,
            region=b.region,
            bucket=b.bucket,
            key=b.key,
            storage_class=b.storage_class,
            status=BackupStatus(b.status),
            error=b.error,
            created_at=_aware(b.created_at),
        )
        for b in row.backups
    ]
    return ContentItem(**data)


def _apply_item(row: ItemRow, item: ContentItem) -> None:
    for c in _ITEM_COLUMNS:
        setattr(row, c, getattr(item, c))

    # Children are matched by natural key so the unique indexes never see a
    # delete+insert of the same (content_id, label|target) in one flush.
    existing_v = {v.label: v for v in row.variants}
    keep_v: List[VariantRow] = []
    for pos, v in enumerate(item.variants):
        vr = existing_v.pop(v.label, None) or VariantRow(label=v.label)
        vr.position = pos
        vr.kind = v.kind.value
        vr.storage_key = v.storage_key
        vr.status = v.status.value
        vr.size_bytes = v.size_bytes
        vr.width = v.width
        vr.height = v.height
        vr.bitrate_kbps = v.bitrate_kbps
        vr.mime_type = v.mime_type
        vr.error = v.error
        vr.attempts = v.attempts
        vr.updated_at = v.updated_at
        keep_v.append(vr)
    row.variants = keep_v

    existing_b = {b.target: b for b in row.backups}
    keep_b: List[BackupRow] = []
    for b in item.backups:
        br = existing_b.pop(b.target, None) or BackupRow(target=b.target)
        br.provider = b.provider
        br.region = b.region
        br.bucket = b.bucket
        br.key = b.key
        br.storage_class = b.storage_class
        br.status = b.status.value
        br.error = b.error
        br.created_at = b.created_at
        keep_b.append(br)
    row.backups = keep_b


class SqlContentRepository(ContentRepositoryProtocol):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def _select(self, stmt) -> List[ContentItem]:
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().unique().all()
            return [_item_from_row(r) for r in rows]

    async def get(self, content_id: UUID) -> Optional[ContentItem]:
        async with self._sessions() as session:
            row = await session.get(ItemRow, content_id)
            return _item_from_row(row) if row else None

    async def save(self, item: ContentItem) -> ContentItem:
        async with self._sessions() as session:
            async with session.begin():
                row = await session.get(ItemRow, item.id)
                if row is None:
                    row = ItemRow(id=item.id)
                    row.variants = []
                    row.backups = []
                    session.add(row)
                _apply_item(row, item)
        return item

    async def delete(self, content_id: UUID) -> bool:
        async with self._sessions() as session:
            async with session.begin():
                row = await session.get(ItemRow, content_id)
                if row is None:
                    return False
                await session.delete(row)
        return True

    async def find_by_owner(self, owner_id: str, *, include_deleted: bool = False) -> List[ContentItem]:
        stmt = select(ItemRow).where(ItemRow.owner_id == owner_id)
        if include_deleted:
            stmt = stmt.where(ItemRow.lifecycle_status != LifecycleStatus.HARD_DELETED)
        else:
            stmt = stmt.where(ItemRow.lifecycle_status == LifecycleStatus.ACTIVE)
        return await self._select(stmt.order_by(ItemRow.uploaded_at))

    async def find_by_hash(self, content_hash: str, owner_id: Optional[str] = None) -> List[ContentItem]:
        stmt = select(ItemRow).where(
            ItemRow.content_hash == content_hash,
            ItemRow.lifecycle_status != LifecycleStatus.HARD_DELETED,
        )
        if owner_id is not None:
            stmt = stmt.where(ItemRow.owner_id == owner_id)
        return await self._select(stmt.order_by(ItemRow.uploaded_at))

    async def find_by_storage_key(self, storage_key: str) -> List[ContentItem]:
        stmt = select(ItemRow).where(
            ItemRow.storage_key == storage_key,
            ItemRow.lifecycle_status != LifecycleStatus.HARD_DELETED,
        )
        return await self._select(stmt.order_by(ItemRow.uploaded_at))

    async def list_due_hard_delete(self, now: datetime) -> List[ContentItem]:
        stmt = select(ItemRow).where(
            ItemRow.lifecycle_status == LifecycleStatus.SOFT_DELETED,
            ItemRow.hard_delete_at.is_not(None),
            ItemRow.hard_delete_at <= now,
        )
        return await self._select(stmt.order_by(ItemRow.hard_delete_at))

    async def list_needing_backup(self, *, limit: int = 100) -> List[ContentItem]:
        stmt = (
            select(ItemRow)
            .where(
                ItemRow.lifecycle_status == LifecycleStatus.ACTIVE,
                ItemRow.is_duplicate.is_(False),
            )
            .order_by(ItemRow.uploaded_at)
        )
        items = await self._select(stmt)
        return [i for i in items if _backup_pending(i)][:limit]

    async def list_owners(self) -> List[str]:
        async with self._sessions() as session:
            rows = await session.execute(select(ItemRow.owner_id).distinct().order_by(ItemRow.owner_id))
            return [r[0] for r in rows]


__all__ = [
    "ContentRepositoryProtocol",
    "MemoryContentRepository",
    "SqlContentRepository",
]
