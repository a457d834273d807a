from __future__ import annotations

"""
Lifecycle Manager
=================

    active ──soft_delete──► soft_deleted ──(grace elapsed)──► hard_deleted
      ▲                          │
      └────────restore───────────┘   (only while now < hard_delete_at)

Soft delete
    Flags the row, stamps `deleted_at`, schedules `hard_delete_at` and hides
    the item from normal listings. Bytes stay put and still count against
    quota so a restore is free.

Hard delete
    1. Remove every storage copy: canonical object, variants, backups.
       Keys still referenced by another live item are kept, and the oldest
       such item is promoted to own them (it becomes the original and takes
       over the billing).
    2. Remove the registry row.
    3. Release the item's billable bytes.
    4. Invalidate the CDN.
    A second call finds no row and returns `removed=False`: storage deletes
    are idempotent and quota is released only by the call that removed the
    row. An interrupted release leaves drift that reconciliation repairs.

Backups
    `backup(content_id)` copies the canonical object to every configured
    target and records one `BackupLocation` each; failed targets are retried
    by `backup_sweep`. Never blocks primary availability.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import Settings
from app.core.exceptions import InvalidTransition, NotFound, StorageUnavailable
from app.core.metrics import inc_backup, inc_hard_delete
from app.core.storage import backup_key
from app.repositories.content import ContentRepositoryProtocol
from app.schemas.content import BackupLocation, ContentItem, utcnow
from app.schemas.enums import BackupStatus, CdnEvent, LifecycleStatus
from app.services.cdn import CdnDistributor
from app.services.object_store import ObjectStore
from app.services.quota_ledger import QuotaLedger
from app.services.transitions import LIFECYCLE_TRANSITIONS, ensure_transition
from app.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


class LifecycleConfig(BaseModel):
    """
    - grace_period_days     soft delete → hard delete window (restore allowed inside it)
    - sweep_batch           max items handled per sweep run
    - backup_batch          max items handled per backup sweep run
    """

    model_config = ConfigDict(frozen=True)

    grace_period_days: int = Field(30, ge=0, le=365)
    sweep_batch: int = Field(500, ge=1)
    backup_batch: int = Field(100, ge=1)

    @classmethod
    def from_settings(cls, s: Settings) -> "LifecycleConfig":
        return cls(grace_period_days=s.SOFT_DELETE_GRACE_DAYS)

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.grace_period_days)


@dataclass
class BackupTarget:
    """One replica location. `store` may be the primary store (a colder tier)."""

    name: str
    store: ObjectStore
    provider: str = "s3"
    storage_class: str = "STANDARD_IA"


@dataclass
class HardDeleteResult:
    content_id: UUID
    removed: bool
    deleted_keys: List[str] = field(default_factory=list)
    kept_keys: List[str] = field(default_factory=list)
    released_bytes: int = 0
    promoted_id: Optional[UUID] = None


class LifecycleManager:
    def __init__(
        self,
        repo: ContentRepositoryProtocol,
        store: ObjectStore,
        ledger: QuotaLedger,
        cdn: Optional[CdnDistributor] = None,
        config: Optional[LifecycleConfig] = None,
        *,
        backup_targets: Optional[List[BackupTarget]] = None,
        item_locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repo = repo
        self.store = store
        self.ledger = ledger
        self.cdn = cdn
        self.config = config or LifecycleConfig()
        self.backup_targets: Dict[str, BackupTarget] = {t.name: t for t in (backup_targets or [])}
        self.item_locks = item_locks or KeyedLock()
        self.clock = clock

    # ─────────────────────────────────────────────────────────
    # 🗑️ Soft delete / restore
    # ─────────────────────────────────────────────────────────
    async def soft_delete(self, content_id: UUID) -> ContentItem:
        async with self.item_locks.hold(content_id):
            item = await self._live(content_id)
            item.lifecycle_status = ensure_transition(
                "lifecycle", LIFECYCLE_TRANSITIONS, item.lifecycle_status, LifecycleStatus.SOFT_DELETED,
            )
            now = self.clock()
            item.deleted_at = now
            item.hard_delete_at = now + self.config.grace_period
            item.updated_at = now
            await self.repo.save(item)
        logger.info(
            "Content soft-deleted",
            extra={"content_id": str(content_id), "owner_id": item.owner_id,
                   "hard_delete_at": item.hard_delete_at.isoformat()},
        )
        await self._publish(item, CdnEvent.DELETED)
        return item

    async def restore(self, content_id: UUID) -> ContentItem:
        async with self.item_locks.hold(content_id):
            item = await self._live(content_id)
            now = self.clock()
            if item.lifecycle_status is LifecycleStatus.SOFT_DELETED and (
                item.hard_delete_at is None or now >= item.hard_delete_at
            ):
                # Past the grace window the item is as good as gone.
                raise NotFound("Content", str(content_id))
            item.lifecycle_status = ensure_transition(
                "lifecycle", LIFECYCLE_TRANSITIONS, item.lifecycle_status, LifecycleStatus.ACTIVE,
            )
            item.deleted_at = None
            item.hard_delete_at = None
            item.updated_at = now
            await self.repo.save(item)
        logger.info("Content restored", extra={"content_id": str(content_id), "owner_id": item.owner_id})
        await self._publish(item, CdnEvent.UPDATED)
        return item

    # ─────────────────────────────────────────────────────────
    # 💥 Hard delete
    # ─────────────────────────────────────────────────────────
    async def hard_delete(self, content_id: UUID, *, force: bool = False,
                          now: Optional[datetime] = None) -> HardDeleteResult:
        """Irreversibly remove a soft-deleted item whose grace elapsed.

        `force` is the operator purge: it skips the grace period and may remove
        an `active` item straight away.
        """
        async with self.item_locks.hold(content_id):
            item = await self.repo.get(content_id)
            if item is None:
                return HardDeleteResult(content_id, removed=False)
            if item.lifecycle_status is LifecycleStatus.SOFT_DELETED and not force:
                if item.hard_delete_at is not None and (now or self.clock()) < item.hard_delete_at:
                    raise InvalidTransition("lifecycle", "soft_deleted (in grace period)", LifecycleStatus.HARD_DELETED.value)
            if not force and item.lifecycle_status is not LifecycleStatus.HARD_DELETED:
                ensure_transition("lifecycle", LIFECYCLE_TRANSITIONS, item.lifecycle_status, LifecycleStatus.HARD_DELETED)

            result = HardDeleteResult(content_id, removed=True)
            shared_with = [i for i in await self.repo.find_by_storage_key(item.storage_key) if i.id != item.id]
            if shared_with:
                result.kept_keys = self._object_keys(item)
                result.promoted_id = await self._hand_over(item, shared_with)
            else:
                result.deleted_keys = await self._delete_objects(item)

            item.lifecycle_status = LifecycleStatus.HARD_DELETED
            await self.repo.delete(content_id)
            released = item.billable_bytes
            if released:
                await self.ledger.release(item.owner_id, released)
            result.released_bytes = released

        inc_hard_delete()
        logger.info(
            "Content hard-deleted",
            extra={"content_id": str(content_id), "owner_id": item.owner_id, "released": released,
                   "deleted_keys": len(result.deleted_keys), "kept_keys": len(result.kept_keys)},
        )
        if not shared_with:
            await self._publish(item, CdnEvent.DELETED)
        return result

    @staticmethod
    def _object_keys(item: ContentItem) -> List[str]:
        keys = [item.storage_key] + [v.storage_key for v in item.variants if v.storage_key]
        return list(dict.fromkeys(keys))

    async def _delete_objects(self, item: ContentItem) -> List[str]:
        deleted: List[str] = []
        for key in self._object_keys(item):
            await self.store.delete(key)
            deleted.append(key)
        for b in item.backups:
            target = self.backup_targets.get(b.target)
            if target is None:
                logger.warning("Backup target %s no longer configured; leaving %s", b.target, b.key,
                               extra={"content_id": str(item.id)})
                continue
            await target.store.delete(b.key)
            deleted.append(f"{b.target}:{b.key}")
        return deleted

    async def _hand_over(self, item: ContentItem, others: List[ContentItem]) -> Optional[UUID]:
        """Keep shared bytes alive for `others`; promote one of them if `item` owned the bytes."""
        if item.is_duplicate:
            return None
        heir = sorted(others, key=lambda i: (i.is_duplicate, i.uploaded_at))[0]
        if heir.is_duplicate:
            async with self.item_locks.hold(heir.id):
                heir = await self.repo.get(heir.id) or heir
                heir.is_duplicate = False
                heir.original_content_id = None
                known = {v.label for v in heir.variants}
                heir.variants += [v.model_copy() for v in item.variants if v.label not in known]
                heir.backups = [b.model_copy() for b in item.backups]
                heir.updated_at = self.clock()
                await self.repo.save(heir)
            await self.ledger.charge(heir.owner_id, heir.billable_bytes)
        for other in others:
            if other.id != heir.id and other.original_content_id == item.id:
                async with self.item_locks.hold(other.id):
                    fresh = await self.repo.get(other.id)
                    if fresh is not None:
                        fresh.original_content_id = heir.id
                        await self.repo.save(fresh)
        logger.info("Shared bytes handed over", extra={"content_id": str(item.id), "heir_id": str(heir.id)})
        return heir.id

    async def sweep(self, now: Optional[datetime] = None) -> List[HardDeleteResult]:
        """Hard-delete every soft-deleted item whose grace period elapsed."""
        now = now or self.clock()
        due = (await self.repo.list_due_hard_delete(now))[: self.config.sweep_batch]
        results: List[HardDeleteResult] = []
        for item in due:
            try:
                results.append(await self.hard_delete(item.id, now=now))
            except InvalidTransition:
                logger.info("Hard delete skipped; item restored before the sweep reached it",
                            extra={"content_id": str(item.id)})
            except StorageUnavailable as e:
                logger.warning("Hard delete deferred; storage unavailable: %s", e.details,
                               extra={"content_id": str(item.id)})
        if due:
            logger.info("Lifecycle sweep: %s due, %s removed", len(due), sum(r.removed for r in results))
        return results

    # ─────────────────────────────────────────────────────────
    # 💾 Backups
    # ─────────────────────────────────────────────────────────
    async def backup(self, content_id: UUID) -> ContentItem:
        item = await self.repo.get(content_id)
        if item is None or item.lifecycle_status is LifecycleStatus.HARD_DELETED:
            raise NotFound("Content", str(content_id))
        if item.is_duplicate or item.lifecycle_status is not LifecycleStatus.ACTIVE:
            return item

        done: Set[str] = {b.target for b in item.backups if b.status is BackupStatus.COMPLETED}
        fresh: List[BackupLocation] = []
        for name, target in self.backup_targets.items():
            if name in done:
                continue
            key = backup_key(item.storage_key, name)
            location = BackupLocation(
                target=name,
                provider=target.provider,
                region=target.store.region,
                bucket=target.store.bucket,
                key=key,
                storage_class=target.storage_class,
            )
            try:
                await self.store.copy_to(item.storage_key, target.store, key, storage_class=target.storage_class)
                location.status = BackupStatus.COMPLETED
                inc_backup(name, "completed")
            except (StorageUnavailable, KeyError) as e:
                location.status = BackupStatus.FAILED
                location.error = str(getattr(e, "details", None) or e)
                inc_backup(name, "failed")
                logger.warning("Backup to %s failed: %s", name, location.error, extra={"content_id": str(content_id)})
            fresh.append(location)

        if not fresh:
            return item
        async with self.item_locks.hold(content_id):
            current = await self.repo.get(content_id)
            if current is None:
                return item
            replaced = {b.target for b in fresh}
            current.backups = [b for b in current.backups if b.target not in replaced] + fresh
            current.updated_at = self.clock()
            await self.repo.save(current)
        return current

    async def backup_sweep(self, *, limit: Optional[int] = None) -> int:
        """Back up active originals lacking a completed copy on every target."""
        if not self.backup_targets:
            return 0
        count = 0
        for item in await self.repo.list_needing_backup(limit=limit or self.config.backup_batch):
            missing = set(self.backup_targets) - {b.target for b in item.backups if b.status is BackupStatus.COMPLETED}
            if not missing:
                continue
            await self.backup(item.id)
            count += 1
        if count:
            logger.info("Backup sweep processed %s item(s)", count)
        return count

    # ── helpers ──────────────────────────────────────────────
    async def _live(self, content_id: UUID) -> ContentItem:
        item = await self.repo.get(content_id)
        if item is None or item.lifecycle_status is LifecycleStatus.HARD_DELETED:
            raise NotFound("Content", str(content_id))
        return item

    async def _publish(self, item: ContentItem, event: CdnEvent) -> None:
        if self.cdn is not None:
            await self.cdn.publish(item, event)


__all__ = ["BackupTarget", "HardDeleteResult", "LifecycleConfig", "LifecycleManager"]
