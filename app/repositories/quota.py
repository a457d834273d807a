from __future__ import annotations

"""Quota ledger repository (one `StorageRecord` per owner).

`try_reserve` is a single conditional statement so two processes racing for
the last bytes of a quota cannot both win; the in-process ledger lock only
serializes callers inside one worker.
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.storage_record import StorageRecord as RecordRow
from app.repositories.content import _aware
from app.schemas.content import StorageRecord, utcnow


class QuotaRepositoryProtocol:
    async def get(self, owner_id: str) -> Optional[StorageRecord]:
        raise NotImplementedError

    async def ensure(self, owner_id: str, quota_bytes: int) -> StorageRecord:
        """Return the owner's record, creating it with `quota_bytes` if missing."""
        raise NotImplementedError

    async def try_reserve(self, owner_id: str, size: int) -> Optional[StorageRecord]:
        """Add `size` to reserved iff used + reserved + size <= quota; None when refused."""
        raise NotImplementedError

    async def adjust(self, owner_id: str, *, used: int = 0, reserved: int = 0) -> StorageRecord:
        """Add the deltas, flooring each counter at zero."""
        raise NotImplementedError

    async def set_used(self, owner_id: str, used_bytes: int, *, reconciled_at: datetime) -> StorageRecord:
        raise NotImplementedError

    async def set_quota(self, owner_id: str, quota_bytes: int) -> StorageRecord:
        raise NotImplementedError

    async def list_owners(self) -> List[str]:
        raise NotImplementedError


class MemoryQuotaRepository(QuotaRepositoryProtocol):
    def __init__(self) -> None:
        self._records: Dict[str, StorageRecord] = {}

    async def get(self, owner_id: str) -> Optional[StorageRecord]:
        rec = self._records.get(owner_id)
        return rec.model_copy() if rec else None

    async def ensure(self, owner_id: str, quota_bytes: int) -> StorageRecord:
        rec = self._records.get(owner_id)
        if rec is None:
            rec = StorageRecord(owner_id=owner_id, quota_bytes=quota_bytes)
            self._records[owner_id] = rec
        return rec.model_copy()

    async def try_reserve(self, owner_id: str, size: int) -> Optional[StorageRecord]:
        rec = self._records[owner_id]
        if rec.used_bytes + rec.reserved_bytes + size > rec.quota_bytes:
            return None
        rec.reserved_bytes += size
        rec.updated_at = utcnow()
        return rec.model_copy()

    async def adjust(self, owner_id: str, *, used: int = 0, reserved: int = 0) -> StorageRecord:
        rec = self._records[owner_id]
        rec.used_bytes = max(0, rec.used_bytes + used)
        rec.reserved_bytes = max(0, rec.reserved_bytes + reserved)
        rec.updated_at = utcnow()
        return rec.model_copy()

    async def set_used(self, owner_id: str, used_bytes: int, *, reconciled_at: datetime) -> StorageRecord:
        rec = self._records[owner_id]
        rec.used_bytes = max(0, used_bytes)
        rec.reconciled_at = reconciled_at
        rec.updated_at = utcnow()
        return rec.model_copy()

    async def set_quota(self, owner_id: str, quota_bytes: int) -> StorageRecord:
        rec = self._records[owner_id]
        rec.quota_bytes = quota_bytes
        rec.updated_at = utcnow()
        return rec.model_copy()

    async def list_owners(self) -> List[str]:
        return sorted(self._records)


def _record_from_row(row: RecordRow) -> StorageRecord:
    return StorageRecord(
        owner_id=row.owner_id,
        quota_bytes=row.quota_bytes,
        used_bytes=row.used_bytes,
        reserved_bytes=row.reserved_bytes,
        updated_at=_aware(row.updated_at),
        reconciled_at=_aware(row.reconciled_at),
    )


def _floored(column, delta: int):
    return case((column + delta < 0, 0), else_=column + delta)


class SqlQuotaRepository(QuotaRepositoryProtocol):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def _fetch(self, session: AsyncSession, owner_id: str) -> StorageRecord:
        row = (
            await session.execute(select(RecordRow).where(RecordRow.owner_id == owner_id))
        ).scalar_one()
        await session.refresh(row)
        return _record_from_row(row)

    async def get(self, owner_id: str) -> Optional[StorageRecord]:
        async with self._sessions() as session:
            row = await session.get(RecordRow, owner_id)
            return _record_from_row(row) if row else None

    async def ensure(self, owner_id: str, quota_bytes: int) -> StorageRecord:
        existing = await self.get(owner_id)
        if existing is not None:
            return existing
        try:
            async with self._sessions() as session:
                async with session.begin():
                    session.add(RecordRow(
                        owner_id=owner_id,
                        quota_bytes=quota_bytes,
                        used_bytes=0,
                        reserved_bytes=0,
                        updated_at=utcnow(),
                    ))
        except IntegrityError:
            # Another writer created it first.
            pass
        record = await self.get(owner_id)
        if record is None:
            raise RuntimeError(f"storage record for {owner_id!r} missing after insert")
        return record

    async def try_reserve(self, owner_id: str, size: int) -> Optional[StorageRecord]:
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    update(RecordRow)
                    .where(
                        RecordRow.owner_id == owner_id,
                        RecordRow.used_bytes + RecordRow.reserved_bytes + size <= RecordRow.quota_bytes,
                    )
                    .values(reserved_bytes=RecordRow.reserved_bytes + size, updated_at=utcnow())
                )
                if not result.rowcount:
                    return None
                return await self._fetch(session, owner_id)

    async def adjust(self, owner_id: str, *, used: int = 0, reserved: int = 0) -> StorageRecord:
        async with self._sessions() as session:
            async with session.begin():
                await session.execute(
                    update(RecordRow)
                    .where(RecordRow.owner_id == owner_id)
                    .values(
                        used_bytes=_floored(RecordRow.used_bytes, used),
                        reserved_bytes=_floored(RecordRow.reserved_bytes, reserved),
                        updated_at=utcnow(),
                    )
                )
                return await self._fetch(session, owner_id)

    async def set_used(self, owner_id: str, used_bytes: int, *, reconciled_at: datetime) -> StorageRecord:
        async with self._sessions() as session:
            async with session.begin():
                await session.execute(
                    update(RecordRow)
                    .where(RecordRow.owner_id == owner_id)
                    .values(used_bytes=max(0, used_bytes), reconciled_at=reconciled_at, updated_at=utcnow())
                )
                return await self._fetch(session, owner_id)

    async def set_quota(self, owner_id: str, quota_bytes: int) -> StorageRecord:
        async with self._sessions() as session:
            async with session.begin():
                await session.execute(
                    update(RecordRow)
                    .where(RecordRow.owner_id == owner_id)
                    .values(quota_bytes=quota_bytes, updated_at=utcnow())
                )
                return await self._fetch(session, owner_id)

    async def list_owners(self) -> List[str]:
        async with self._sessions() as session:
            rows = await session.execute(select(RecordRow.owner_id).order_by(RecordRow.owner_id))
            return [r[0] for r in rows]


__all__ = ["QuotaRepositoryProtocol", "MemoryQuotaRepository", "SqlQuotaRepository"]
