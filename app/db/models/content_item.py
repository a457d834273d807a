from __future__ import annotations

"""
🗂️ FanVault Media — ContentItem (one uploaded file or a logical copy of one)
===========================================================================

Registry row for each item an artist uploaded. Variants and backup locations
hang off it (`content_variants`, `content_backups`) and are loaded eagerly:
the registry always reads/writes an item as one aggregate.

Design highlights
-----------------
• **Content-addressed**: `content_hash` (hex SHA-256) indexed with `owner_id`
  for the dedup lookup.
• **Duplicates own no bytes**: `is_duplicate` rows reuse another row's
  `storage_key` and point at it through `original_content_id`.
• **Lifecycle**: `lifecycle_status` + `deleted_at` / `hard_delete_at` drive the
  soft-delete → grace → hard-delete sweep (`ix_content_items_hard_delete_due`).
• Portable types (`Uuid`, `JSON` → JSONB on PostgreSQL) so the same models run
  on PostgreSQL in production and SQLite in tests.
"""

from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.db.base_class import Base
from app.schemas.enums import (
    AccessLevel,
    ContentType,
    LifecycleStatus,
    Priority,
    ProcessingStatus,
    StorageClass,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum(enum_cls, name: str) -> SAEnum:
    """Persist enum *values* (lowercase) rather than member names."""
    return SAEnum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e], validate_strings=True)


class ContentItem(Base):
    __tablename__ = "content_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    owner_id = Column(String(128), nullable=False, index=True)
    type = Column(_enum(ContentType, "content_type"), nullable=False)
    title = Column(String(255), nullable=False)
    original_filename = Column(String(255), nullable=False)
    access_level = Column(_enum(AccessLevel, "access_level"), nullable=False)
    priority = Column(_enum(Priority, "content_priority"), nullable=False)

    # Storage
    storage_key = Column(String(1024), nullable=False, index=True)
    storage_class = Column(_enum(StorageClass, "storage_class"), nullable=False)
    content_hash = Column(String(64), nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    mime_type = Column(String(127), nullable=False)
    extension = Column(String(16), nullable=False)

    uploaded_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # Processing
    processing_status = Column(_enum(ProcessingStatus, "processing_status"), nullable=False)
    processing_error = Column(String(1024), nullable=True)

    # Lifecycle
    lifecycle_status = Column(_enum(LifecycleStatus, "lifecycle_status"), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    hard_delete_at = Column(DateTime(timezone=True), nullable=True)

    # Dedup
    is_duplicate = Column(Boolean, nullable=False, default=False)
    original_content_id = Column(Uuid, nullable=True, index=True)

    # Media facts
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    bitrate_bps = Column(BigInteger, nullable=True)
    sample_rate = Column(Integer, nullable=True)
    channels = Column(Integer, nullable=True)
    waveform = Column(JSONType, nullable=True)

    __table_args__ = (
        CheckConstraint("size_bytes >= 0", name="size_nonneg"),
        CheckConstraint("length(storage_key) > 0", name="storage_key_not_blank"),
        CheckConstraint(
            "(is_duplicate = false) OR (original_content_id IS NOT NULL)",
            name="duplicate_has_original",
        ),
        Index("ix_content_items_hash_owner", "content_hash", "owner_id"),
        Index("ix_content_items_owner_lifecycle", "owner_id", "lifecycle_status"),
        Index("ix_content_items_hard_delete_due", "lifecycle_status", "hard_delete_at"),
    )

    variants = relationship(
        "ContentVariant",
        back_populates="item",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ContentVariant.position",
    )
    backups = relationship(
        "ContentBackup",
        back_populates="item",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ContentBackup.created_at",
    )


class ContentVariant(Base):
    """One derived rendition of a `ContentItem`."""

    __tablename__ = "content_variants"

    id = Column(Uuid, primary_key=True, default=uuid4)
    content_id = Column(Uuid, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    label = Column(String(32), nullable=False)
    kind = Column(String(32), nullable=False)
    storage_key = Column(String(1024), nullable=False, index=True)
    status = Column(String(16), nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    bitrate_kbps = Column(Integer, nullable=True)
    mime_type = Column(String(127), nullable=True)
    error = Column(String(1024), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("size_bytes >= 0", name="size_nonneg"),
        Index("uq_content_variants_content_label", "content_id", "label", unique=True),
    )

    item = relationship("ContentItem", back_populates="variants")


class ContentBackup(Base):
    """One replica of an item's canonical object."""

    __tablename__ = "content_backups"

    id = Column(Uuid, primary_key=True, default=uuid4)
    content_id = Column(Uuid, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True)
    target = Column(String(64), nullable=False)
    provider = Column(String(32), nullable=False)
    region = Column(String(32), nullable=True)
    bucket = Column(String(255), nullable=False)
    key = Column(String(1024), nullable=False)
    storage_class = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False)
    error = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("uq_content_backups_content_target", "content_id", "target", unique=True),
    )

    item = relationship("ContentItem", back_populates="backups")


__all__ = ["ContentItem", "ContentVariant", "ContentBackup"]
