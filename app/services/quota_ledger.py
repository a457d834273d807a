from __future__ import annotations

"""
Quota Ledger
============

Per-owner storage accounting in two counters:

    used      bytes committed by stored objects (originals + completed variants)
    reserved  bytes promised to in-flight uploads / variant writes

Flow for every stored object: `reserve` → store put → `commit`, or
`reserve` → failure → `cancel`. Deletes call `release`.

Every mutation for one owner runs under that owner's lock (`KeyedLock`);
owners never wait on each other. The repository write itself is a single
atomic statement, so the ceiling also holds across worker processes.

`reconcile` recomputes `used` from the registry and records every
difference as a `quota_drift_corrected` data-quality event.
"""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import GIB, Settings
from app.core.exceptions import QuotaExceeded
from app.core.metrics import inc_data_quality, inc_quota_rejection
from app.repositories.content import ContentRepositoryProtocol
from app.repositories.quota import QuotaRepositoryProtocol
from app.schemas.content import StorageRecord, utcnow
from app.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


class QuotaConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_quota_bytes: int = Field(100 * GIB, ge=0)

    @classmethod
    def from_settings(cls, s: Settings) -> "QuotaConfig":
        return cls(default_quota_bytes=s.DEFAULT_QUOTA_BYTES)


class QuotaLedger:
    def __init__(
        self,
        repo: QuotaRepositoryProtocol,
        content_repo: ContentRepositoryProtocol,
        config: Optional[QuotaConfig] = None,
    ) -> None:
        self.repo = repo
        self.content_repo = content_repo
        self.config = config or QuotaConfig()
        self._locks = KeyedLock()

    async def get(self, owner_id: str) -> StorageRecord:
        return await self.repo.ensure(owner_id, self.config.default_quota_bytes)

    async def set_quota(self, owner_id: str, quota_bytes: int) -> StorageRecord:
        if quota_bytes < 0:
            raise ValueError("quota_bytes must be >= 0")
        async with self._locks.hold(owner_id):
            await self.repo.ensure(owner_id, self.config.default_quota_bytes)
            return await self.repo.set_quota(owner_id, quota_bytes)

    async def reserve(self, owner_id: str, size: int) -> bool:
        """Hold `size` bytes for an upload; raise `QuotaExceeded` past the ceiling."""
        if size < 0:
            raise ValueError("size must be >= 0")
        async with self._locks.hold(owner_id):
            await self.repo.ensure(owner_id, self.config.default_quota_bytes)
            record = await self.repo.try_reserve(owner_id, size)
            if record is None:
                current = await self.repo.ensure(owner_id, self.config.default_quota_bytes)
                inc_quota_rejection()
                logger.info(
                    "Quota reservation refused",
                    extra={"owner_id": owner_id, "requested": size, "used": current.used_bytes,
                           "reserved": current.reserved_bytes, "quota": current.quota_bytes},
                )
                raise QuotaExceeded(
                    owner_id,
                    requested=size,
                    used=current.used_bytes,
                    reserved=current.reserved_bytes,
                    quota=current.quota_bytes,
                )
            return True

    async def commit(self, owner_id: str, size: int) -> StorageRecord:
        """Turn a reservation of `size` bytes into used bytes."""
        async with self._locks.hold(owner_id):
            return await self.repo.adjust(owner_id, used=size, reserved=-size)

    async def cancel(self, owner_id: str, size: int) -> StorageRecord:
        """Drop a reservation that will never be committed."""
        async with self._locks.hold(owner_id):
            return await self.repo.adjust(owner_id, reserved=-size)

    async def charge(self, owner_id: str, size: int) -> StorageRecord:
        """Add already-stored bytes to `used` (ownership hand-over).

        The ceiling is checked with the same conditional reservation uploads
        use. The bytes already exist and stay referenced, so a charge that does
        not fit is still applied and recorded as a `handover_over_quota`
        data-quality event carrying the overage.
        """
        if size <= 0:
            return await self.get(owner_id)
        async with self._locks.hold(owner_id):
            current = await self.repo.ensure(owner_id, self.config.default_quota_bytes)
            if await self.repo.try_reserve(owner_id, size) is not None:
                return await self.repo.adjust(owner_id, used=size, reserved=-size)
            overage = current.used_bytes + current.reserved_bytes + size - current.quota_bytes
            inc_data_quality("handover_over_quota")
            logger.warning(
                "Hand-over charge exceeds quota; bytes kept",
                extra={"owner_id": owner_id, "charged": size, "overage": overage, "quota": current.quota_bytes},
            )
            return await self.repo.adjust(owner_id, used=size)

    async def release(self, owner_id: str, size: int) -> StorageRecord:
        """Return `size` committed bytes; `used` is floored at zero."""
        if size <= 0:
            return await self.get(owner_id)
        async with self._locks.hold(owner_id):
            current = await self.repo.ensure(owner_id, self.config.default_quota_bytes)
            if size > current.used_bytes:
                inc_data_quality("release_clamped")
                logger.warning(
                    "Quota release larger than used; clamping to zero",
                    extra={"owner_id": owner_id, "release": size, "used": current.used_bytes},
                )
            return await self.repo.adjust(owner_id, used=-size)

    async def reconcile(self, owner_id: str) -> StorageRecord:
        """Recompute `used` from live registry items."""
        async with self._locks.hold(owner_id):
            current = await self.repo.ensure(owner_id, self.config.default_quota_bytes)
            items = await self.content_repo.find_by_owner(owner_id, include_deleted=True)
            actual = sum(i.billable_bytes for i in items)
            if actual != current.used_bytes:
                inc_data_quality("quota_drift_corrected")
                logger.warning(
                    "Quota drift corrected",
                    extra={"owner_id": owner_id, "recorded": current.used_bytes, "actual": actual,
                           "delta": actual - current.used_bytes},
                )
            return await self.repo.set_used(owner_id, actual, reconciled_at=utcnow())

    async def reconcile_all(self) -> Dict[str, int]:
        """Reconcile every known owner; returns owner → corrected used bytes."""
        owners: List[str] = sorted(set(await self.repo.list_owners()) | set(await self.content_repo.list_owners()))
        out: Dict[str, int] = {}
        for owner_id in owners:
            record = await self.reconcile(owner_id)
            out[owner_id] = record.used_bytes
        return out


__all__ = ["QuotaConfig", "QuotaLedger"]
