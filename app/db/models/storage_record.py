from __future__ import annotations

"""
📦 FanVault Media — StorageRecord (quota ledger row, one per owner)

`used_bytes` counts committed bytes, `reserved_bytes` counts in-flight
uploads. Both are updated with single-statement increments so concurrent
writers never lose updates; the CHECKs keep them non-negative.
"""

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, String

from app.db.base_class import Base


class StorageRecord(Base):
    __tablename__ = "storage_records"

    owner_id = Column(String(128), primary_key=True)
    quota_bytes = Column(BigInteger, nullable=False)
    used_bytes = Column(BigInteger, nullable=False, default=0)
    reserved_bytes = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("used_bytes >= 0", name="used_nonneg"),
        CheckConstraint("reserved_bytes >= 0", name="reserved_nonneg"),
        CheckConstraint("quota_bytes >= 0", name="quota_nonneg"),
    )


__all__ = ["StorageRecord"]
