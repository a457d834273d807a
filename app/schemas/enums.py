from __future__ import annotations

"""
FanVault Media • Enums
======================

String-backed enums shared by the ORM models, the pydantic schemas and the
services. Values are lowercase and stable: they are persisted and returned by
the API, so never rename one once deployed.
"""

from enum import Enum as PyEnum


class ContentType(str, PyEnum):
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    DOCUMENT = "document"


class AccessLevel(str, PyEnum):
    PUBLIC = "public"
    TICKET_HOLDERS = "ticket_holders"
    PRIVATE = "private"


class Priority(str, PyEnum):
    NORMAL = "normal"
    HIGH = "high"


class StorageClass(str, PyEnum):
    """Cost tier of a stored object."""
    HOT = "hot"
    COOL = "cool"
    ARCHIVE = "archive"


class ProcessingStatus(str, PyEnum):
    """Variant-generation state of a content item."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class LifecycleStatus(str, PyEnum):
    ACTIVE = "active"
    SOFT_DELETED = "soft_deleted"
    HARD_DELETED = "hard_deleted"


class VariantStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class VariantKind(str, PyEnum):
    IMAGE_RENDITION = "image_rendition"
    VIDEO_RENDITION = "video_rendition"
    VIDEO_THUMBNAIL = "video_thumbnail"
    AUDIO_RENDITION = "audio_rendition"


class BackupStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadOutcome(str, PyEnum):
    """Informational result of an accepted upload."""
    STORED = "stored"
    DUPLICATE_DETECTED = "duplicate_detected"


class CdnEvent(str, PyEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


__all__ = [
    "ContentType",
    "AccessLevel",
    "Priority",
    "StorageClass",
    "ProcessingStatus",
    "LifecycleStatus",
    "VariantStatus",
    "VariantKind",
    "BackupStatus",
    "UploadOutcome",
    "CdnEvent",
]
