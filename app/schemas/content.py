from __future__ import annotations

"""
FanVault Media • Content Schemas
================================

Pydantic v2 models for the content registry and the ingest/read APIs.

- `ContentItem`      one uploaded file (or a logical copy of one), with its
                     variants and backup locations nested
- `Variant`          one derived rendition (thumbnail, transcode, audio bitrate)
- `BackupLocation`   one replica of the canonical object
- `StorageRecord`    the quota ledger entry for an owner
- `UploadMetadata` / `UploadResult`   ingest contract

Invariants carried by the models
--------------------------------
- A duplicate (`is_duplicate=True`) never owns bytes: it points at another
  item's `storage_key` and records `original_content_id`; its billable size is 0.
- `StorageRecord.used_bytes` is never negative.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.enums import (
    AccessLevel,
    BackupStatus,
    ContentType,
    LifecycleStatus,
    Priority,
    ProcessingStatus,
    StorageClass,
    UploadOutcome,
    VariantKind,
    VariantStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === Registry records =====================================================

class Variant(BaseModel):
    """A derived rendition stored under its own key."""

    label: str
    kind: VariantKind
    storage_key: str
    status: VariantStatus = VariantStatus.PENDING
    size_bytes: int = Field(0, ge=0)
    width: Optional[int] = None
    height: Optional[int] = None
    bitrate_kbps: Optional[int] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    updated_at: datetime = Field(default_factory=utcnow)


class BackupLocation(BaseModel):
    target: str                     # secondary_region | cold_storage | <extra provider>
    provider: str = "s3"
    region: Optional[str] = None
    bucket: str
    key: str
    storage_class: str = "STANDARD"
    status: BackupStatus = BackupStatus.PENDING
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ContentItem(BaseModel):
    model_config = ConfigDict(validate_assignment=False)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str
    type: ContentType
    title: str
    original_filename: str
    access_level: AccessLevel = AccessLevel.TICKET_HOLDERS
    priority: Priority = Priority.NORMAL

    storage_key: str
    storage_class: StorageClass = StorageClass.HOT
    content_hash: str
    size_bytes: int = Field(ge=0)
    mime_type: str
    extension: str
    uploaded_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processing_error: Optional[str] = None

    lifecycle_status: LifecycleStatus = LifecycleStatus.ACTIVE
    deleted_at: Optional[datetime] = None
    hard_delete_at: Optional[datetime] = None

    is_duplicate: bool = False
    original_content_id: Optional[UUID] = None

    # Media facts (probe results)
    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None
    bitrate_bps: Optional[int] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    waveform: Optional[List[float]] = None

    variants: List[Variant] = Field(default_factory=list)
    backups: List[BackupLocation] = Field(default_factory=list)

    # ── helpers ──────────────────────────────────────────────
    def variant(self, label: str) -> Optional[Variant]:
        return next((v for v in self.variants if v.label == label), None)

    @property
    def is_visible(self) -> bool:
        """Shown in normal listings."""
        return self.lifecycle_status is LifecycleStatus.ACTIVE

    @property
    def variant_bytes(self) -> int:
        return sum(v.size_bytes for v in self.variants if v.status is VariantStatus.COMPLETED)

    @property
    def billable_bytes(self) -> int:
        """Bytes this item counts against its owner's quota."""
        if self.is_duplicate:
            return 0
        return self.size_bytes + self.variant_bytes

    @property
    def has_completed_backup(self) -> bool:
        return any(b.status is BackupStatus.COMPLETED for b in self.backups)


class StorageRecord(BaseModel):
    """Quota ledger entry for one owner."""

    owner_id: str
    quota_bytes: int = Field(ge=0)
    used_bytes: int = Field(0, ge=0)
    reserved_bytes: int = Field(0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)
    reconciled_at: Optional[datetime] = None

    @property
    def available_bytes(self) -> int:
        return max(0, self.quota_bytes - self.used_bytes - self.reserved_bytes)


# === Ingest contract ======================================================

class UploadMetadata(BaseModel):
    owner_id: str = Field(min_length=1, max_length=128)
    title: str = Field(min_length=1, max_length=255)
    filename: str = Field(min_length=1, max_length=255)
    mime_type: str = "application/octet-stream"
    declared_size: Optional[int] = Field(None, ge=0)
    type: Optional[ContentType] = None
    access_level: AccessLevel = AccessLevel.TICKET_HOLDERS
    priority: Priority = Priority.NORMAL


class UploadResult(BaseModel):
    content_id: UUID
    outcome: UploadOutcome
    is_duplicate: bool
    processing_status: ProcessingStatus
    size_bytes: int
    content_hash: str
    urls: Dict[str, str] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


# === Access / delivery ====================================================

class AccessDecision(BaseModel):
    allowed: bool
    ticket_id: Optional[str] = None
    reason: Optional[str] = None


class SignedUrl(BaseModel):
    """Data returned when issuing a signed media URL."""

    url: str
    token: Optional[str] = None
    expires_at: Optional[int] = None
    public: bool = False


class VerifiedToken(BaseModel):
    content_id: UUID
    user_id: str
    ticket_id: Optional[str] = None
    expires_at: int
    url: Optional[str] = None       # short-lived storage URL, set once the item is resolved


__all__ = [
    "utcnow",
    "Variant",
    "BackupLocation",
    "ContentItem",
    "StorageRecord",
    "UploadMetadata",
    "UploadResult",
    "AccessDecision",
    "SignedUrl",
    "VerifiedToken",
]
