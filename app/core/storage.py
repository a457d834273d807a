from __future__ import annotations

"""
FanVault Media • Object Key Layout
==================================

Deterministic key layout (single private bucket per region, CDN in front):

    s3://{bucket}/
      artists/{owner_id}/{timestamp_ms}_{rand16}_{name}.{ext}            canonical object
      artists/{owner_id}/images/{label}/{stem}_{label}.webp              image renditions
      artists/{owner_id}/videos/{label}/{stem}_{label}.mp4               video renditions
      artists/{owner_id}/thumbnails/{label}/{stem}_thumb_{label}.jpg     video thumbnails
      artists/{owner_id}/audio/{label}/{stem}_{label}.{ext}              audio renditions
      backups/{target}/{canonical key}                                   backup copies

Everything an owner stores lives under `artists/{owner_id}/`, so listing and
cleanup are prefix operations. The `{timestamp_ms}_{rand16}` head makes a
canonical key unique without a registry round-trip.

Security
--------
- All objects private; public delivery goes through the CDN.
- Default encryption SSE-S3 (AES256).
"""

import os
import re
import secrets
import time
from typing import Optional

from app.schemas.enums import StorageClass

OWNER_PREFIX = "artists/{owner_id}/"
BACKUP_PREFIX = "backups/{target}/"

# One year; canonical keys are immutable so edge caches may keep them forever.
STATIC_CACHE_CONTROL = "public, max-age=31536000, immutable"

S3_STORAGE_CLASS = {
    StorageClass.HOT: "STANDARD",
    StorageClass.COOL: "STANDARD_IA",
    StorageClass.ARCHIVE: "GLACIER_IR",
}

_OWNER_RE = re.compile(r"[A-Za-z0-9_\-]{1,128}")
_UNSAFE_RE = re.compile(r"[^a-z0-9]+")


def sanitize_name(filename: str, *, max_len: int = 80) -> str:
    """Lowercase stem with every non-alphanumeric run collapsed to `_`."""
    stem, _ = os.path.splitext(os.path.basename(filename or ""))
    cleaned = _UNSAFE_RE.sub("_", stem.lower()).strip("_")
    return (cleaned or "file")[:max_len]


def file_extension(filename: str) -> str:
    """Lowercase extension without the dot (`''` when missing)."""
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def is_valid_owner_id(owner_id: str) -> bool:
    """Owner ids become a key path segment: letters, digits, `_` and `-` only."""
    return bool(_OWNER_RE.fullmatch(owner_id or ""))


def owner_prefix(owner_id: str) -> str:
    if not is_valid_owner_id(owner_id):
        raise ValueError(f"invalid owner id for key layout: {owner_id!r}")
    return OWNER_PREFIX.format(owner_id=owner_id)


def primary_key(owner_id: str, filename: str, *, now_ms: Optional[int] = None, suffix: Optional[str] = None) -> str:
    """Canonical key for a freshly uploaded object."""
    ts = int(now_ms if now_ms is not None else time.time() * 1000)
    rand = suffix or secrets.token_hex(8)
    ext = file_extension(filename)
    name = f"{ts}_{rand}_{sanitize_name(filename)}"
    return f"{owner_prefix(owner_id)}{name}.{ext}" if ext else f"{owner_prefix(owner_id)}{name}"


def key_stem(key: str) -> str:
    return os.path.splitext(key.rsplit("/", 1)[-1])[0]


def key_dir(key: str) -> str:
    return key.rsplit("/", 1)[0] if "/" in key else ""


def image_variant_key(source_key: str, label: str) -> str:
    return f"{key_dir(source_key)}/images/{label}/{key_stem(source_key)}_{label}.webp"


def video_variant_key(source_key: str, label: str) -> str:
    return f"{key_dir(source_key)}/videos/{label}/{key_stem(source_key)}_{label}.mp4"


def thumbnail_key(source_key: str, label: str) -> str:
    return f"{key_dir(source_key)}/thumbnails/{label}/{key_stem(source_key)}_thumb_{label}.jpg"


def audio_variant_key(source_key: str, label: str, ext: str) -> str:
    return f"{key_dir(source_key)}/audio/{label}/{key_stem(source_key)}_{label}.{ext}"


def backup_key(source_key: str, target: str) -> str:
    return f"{BACKUP_PREFIX.format(target=target)}{source_key}"


def cdn_path(key: str, *, wildcard: bool = False) -> str:
    """CloudFront invalidation path for a key (leading slash, optional `*`)."""
    path = "/" + key.lstrip("/")
    return f"{path}*" if wildcard else path


__all__ = [
    "STATIC_CACHE_CONTROL",
    "S3_STORAGE_CLASS",
    "sanitize_name",
    "file_extension",
    "is_valid_owner_id",
    "owner_prefix",
    "primary_key",
    "key_stem",
    "key_dir",
    "image_variant_key",
    "video_variant_key",
    "thumbnail_key",
    "audio_variant_key",
    "backup_key",
    "cdn_path",
]
