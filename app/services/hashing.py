from __future__ import annotations

"""
Hasher / Validator
==================

First stage of ingest. Two entry points:

- `validate_declared(meta)` checks what the client *claims* (size, filename,
  mime, type) before a single byte is read or any network call is made. It
  collects every violated rule and raises one `ValidationError` listing them.
- `inspect(stream, meta)` streams the body once: SHA-256 and size are computed
  while the bytes are spooled into a `SpooledTemporaryFile` (memory up to a
  threshold, disk beyond) that the object store `put` consumes afterwards.
  The maximum size is enforced while streaming.

Neither function has side effects beyond the spool file owned by the returned
`InspectedUpload`.
"""

import hashlib
import logging
import mimetypes
import tempfile
from dataclasses import dataclass, field
from typing import AsyncIterable, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import GIB, MIB, Settings
from app.core.exceptions import ValidationError
from app.core.storage import file_extension, is_valid_owner_id
from app.schemas.content import UploadMetadata
from app.schemas.enums import ContentType

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS: Dict[ContentType, FrozenSet[str]] = {
    ContentType.VIDEO: frozenset({"mp4", "mov", "avi", "mkv", "webm", "flv"}),
    ContentType.AUDIO: frozenset({"mp3", "wav", "flac", "aac", "m4a", "ogg"}),
    ContentType.IMAGE: frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp"}),
    ContentType.DOCUMENT: frozenset({"pdf", "doc", "docx", "txt"}),
}

DOCUMENT_MIME_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
})

GENERIC_MIME_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})


class ValidationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_file_size: int = Field(5 * GIB, ge=1)
    supported_formats: Dict[ContentType, FrozenSet[str]] = Field(default_factory=lambda: dict(SUPPORTED_FORMATS))
    strict_mime: bool = False
    spool_max_memory: int = Field(8 * MIB, ge=0)
    chunk_size: int = Field(1 * MIB, ge=1024)

    @classmethod
    def from_settings(cls, s: Settings) -> "ValidationConfig":
        return cls(
            max_file_size=s.MAX_UPLOAD_BYTES,
            strict_mime=s.STRICT_MIME,
            spool_max_memory=s.UPLOAD_SPOOL_MAX_MEMORY,
            chunk_size=s.UPLOAD_CHUNK_SIZE,
        )

    def type_for_extension(self, ext: str) -> Optional[ContentType]:
        for ctype, exts in self.supported_formats.items():
            if ext in exts:
                return ctype
        return None


def classify_mime(mime: Optional[str]) -> Optional[ContentType]:
    """Map a mime type to a content type (None when unsupported)."""
    m = (mime or "").split(";", 1)[0].strip().lower()
    if m.startswith("video/"):
        return ContentType.VIDEO
    if m.startswith("audio/"):
        return ContentType.AUDIO
    if m.startswith("image/"):
        return ContentType.IMAGE
    if m in DOCUMENT_MIME_TYPES:
        return ContentType.DOCUMENT
    return None


@dataclass
class DeclaredCheck:
    """Outcome of `validate_declared` (only returned when no rule failed)."""

    content_type: ContentType
    extension: str
    mime_type: str
    warnings: List[str] = field(default_factory=list)


@dataclass
class InspectedUpload:
    content_hash: str
    size: int
    content_type: ContentType
    extension: str
    mime_type: str
    file: tempfile.SpooledTemporaryFile
    warnings: List[str] = field(default_factory=list)

    def close(self) -> None:
        self.file.close()


def validate_declared(meta: UploadMetadata, config: ValidationConfig) -> DeclaredCheck:
    """Check client-declared attributes; raise `ValidationError` listing every failure."""
    errors: List[str] = []
    warnings: List[str] = []

    if not is_valid_owner_id(meta.owner_id):
        errors.append(f"owner id '{meta.owner_id}' may only contain letters, digits, '_' and '-'")

    if meta.declared_size is not None:
        if meta.declared_size > config.max_file_size:
            errors.append(f"file size {meta.declared_size} exceeds maximum {config.max_file_size} bytes")
        elif meta.declared_size == 0:
            errors.append("file is empty")

    ext = file_extension(meta.filename)
    ext_type = config.type_for_extension(ext) if ext else None
    if not ext:
        errors.append("file has no extension")
    elif ext_type is None:
        errors.append(f"unsupported file extension '.{ext}'")

    mime = (meta.mime_type or "").split(";", 1)[0].strip().lower()
    if mime in GENERIC_MIME_TYPES:
        guessed, _ = mimetypes.guess_type(meta.filename)
        if guessed:
            warnings.append(f"generic mime type '{mime or 'none'}' replaced by '{guessed}' from extension")
            mime = guessed
    mime_type = classify_mime(mime)
    if mime_type is None:
        if mime in GENERIC_MIME_TYPES and ext_type is not None:
            warnings.append(f"mime type unknown; classified by extension '.{ext}'")
        else:
            errors.append(f"unsupported mime type '{mime or 'none'}'")

    if mime_type is not None and ext_type is not None and mime_type is not ext_type:
        msg = f"mime type '{mime}' does not match extension '.{ext}'"
        if config.strict_mime:
            errors.append(msg)
        else:
            warnings.append(msg)

    resolved = ext_type or mime_type
    if meta.type is not None and resolved is not None and meta.type is not resolved:
        errors.append(f"declared type '{meta.type.value}' does not match detected type '{resolved.value}'")

    if errors:
        raise ValidationError(errors)
    for w in warnings:
        logger.warning("Upload warning: %s", w, extra={"owner_id": meta.owner_id, "upload_filename": meta.filename})
    return DeclaredCheck(content_type=resolved, extension=ext, mime_type=mime, warnings=warnings)  # type: ignore[arg-type]


async def inspect(stream: AsyncIterable[bytes], meta: UploadMetadata, config: ValidationConfig) -> InspectedUpload:
    """Validate, then hash + size + spool the body in a single pass."""
    declared = validate_declared(meta, config)

    digest = hashlib.sha256()
    size = 0
    spool = tempfile.SpooledTemporaryFile(max_size=config.spool_max_memory)
    try:
        async for chunk in stream:
            if not chunk:
                continue
            size += len(chunk)
            if size > config.max_file_size:
                raise ValidationError([f"file size exceeds maximum {config.max_file_size} bytes"])
            digest.update(chunk)
            spool.write(chunk)

        errors: List[str] = []
        if size == 0:
            errors.append("file is empty")
        if meta.declared_size is not None and meta.declared_size != size and size > 0:
            errors.append(f"declared size {meta.declared_size} does not match received {size} bytes")
        if errors:
            raise ValidationError(errors)
    except BaseException:
        spool.close()
        raise

    spool.seek(0)
    return InspectedUpload(
        content_hash=digest.hexdigest(),
        size=size,
        content_type=declared.content_type,
        extension=declared.extension,
        mime_type=declared.mime_type,
        file=spool,
        warnings=declared.warnings,
    )


async def iter_bytes(data: bytes, chunk_size: int = 1 * MIB):
    """Async chunk iterator over an in-memory payload."""
    for i in range(0, len(data), chunk_size):
        yield data[i:i + chunk_size]


__all__ = [
    "SUPPORTED_FORMATS",
    "ValidationConfig",
    "DeclaredCheck",
    "InspectedUpload",
    "classify_mime",
    "validate_declared",
    "inspect",
    "iter_bytes",
]
