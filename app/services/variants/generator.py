from __future__ import annotations

"""
Variant Generator
=================

Derives consumable renditions from a stored original, out-of-band from the
upload request.

Per item
--------
    pending ──► processing ──► completed
                     └──────► failed      (source unreadable / unprobeable)

One `generate()` run per item at a time (`_runs` lock); the registry row is
read-modify-written under the shared per-item lock for a few milliseconds
per variant, so deletes and restores never wait on a transcode.

Per variant
-----------
render → quota reserve → store put → quota commit → recorded `completed`.
Any failure along the way records the variant `failed` with a reason and
moves on; the item still completes. `retry_variant` reruns exactly one
failed variant and raises `ProcessingFailed` if it fails again.

Ladders never exceed the source: image rungs wider than the source, video
rungs taller than the source, thumbnails larger than the frame, and audio
bitrates above the source bitrate are not planned at all.
"""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import Settings
from app.core.exceptions import NotFound, ProcessingFailed, QuotaExceeded, StorageUnavailable
from app.core.metrics import inc_variant
from app.core.storage import audio_variant_key, image_variant_key, thumbnail_key, video_variant_key
from app.repositories.content import ContentRepositoryProtocol
from app.schemas.content import ContentItem, Variant, utcnow
from app.schemas.enums import (
    ContentType,
    LifecycleStatus,
    ProcessingStatus,
    VariantKind,
    VariantStatus,
)
from app.services.object_store import ObjectStore
from app.services.quota_ledger import QuotaLedger
from app.services.transitions import (
    PROCESSING_TRANSITIONS,
    VARIANT_TRANSITIONS,
    ensure_transition,
)
from app.services.variants import image as image_ops
from app.services.variants.codec import CodecError, CodecTool, MediaProbe, waveform_peaks
from app.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# ⚙️ Configuration
# ─────────────────────────────────────────────────────────────
class ImageRung(BaseModel):
    label: str
    width: int = Field(gt=0)


class VideoRung(BaseModel):
    label: str
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    bitrate_kbps: int = Field(gt=0)


class ThumbnailSize(BaseModel):
    label: str
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class AudioRung(BaseModel):
    label: str
    codec: str
    extension: str
    mime_type: str
    bitrate_kbps: int = Field(gt=0)


class VariantConfig(BaseModel):
    """Rendition ladders plus codec knobs.

    - image_ladder       WebP widths (never enlarged)
    - video_ladder       H.264 rungs; only heights <= source height are made
    - thumbnail_sizes    JPEG frames sampled at `thumbnail_position` of duration
    - audio_ladder       renditions made only at or below the source bitrate
    - waveform_buckets   number of peak values stored on audio items
    - work_dir           scratch space for downloads/transcodes (system tmp if unset)
    """

    model_config = ConfigDict(frozen=True)

    image_ladder: List[ImageRung] = Field(default_factory=lambda: [
        ImageRung(label="thumb", width=200),
        ImageRung(label="small", width=400),
        ImageRung(label="medium", width=800),
        ImageRung(label="large", width=1600),
    ])
    video_ladder: List[VideoRung] = Field(default_factory=lambda: [
        VideoRung(label="360p", width=640, height=360, bitrate_kbps=800),
        VideoRung(label="480p", width=854, height=480, bitrate_kbps=1200),
        VideoRung(label="720p", width=1280, height=720, bitrate_kbps=2500),
        VideoRung(label="1080p", width=1920, height=1080, bitrate_kbps=5000),
        VideoRung(label="4k", width=3840, height=2160, bitrate_kbps=15000),
    ])
    thumbnail_sizes: List[ThumbnailSize] = Field(default_factory=lambda: [
        ThumbnailSize(label="small", width=320, height=180),
        ThumbnailSize(label="medium", width=640, height=360),
        ThumbnailSize(label="large", width=1280, height=720),
    ])
    audio_ladder: List[AudioRung] = Field(default_factory=lambda: [
        AudioRung(label="320k", codec="mp3", extension="mp3", mime_type="audio/mpeg", bitrate_kbps=320),
        AudioRung(label="192k", codec="mp3", extension="mp3", mime_type="audio/mpeg", bitrate_kbps=192),
        AudioRung(label="128k", codec="mp3", extension="mp3", mime_type="audio/mpeg", bitrate_kbps=128),
        AudioRung(label="96k", codec="aac", extension="m4a", mime_type="audio/mp4", bitrate_kbps=96),
    ])
    thumbnail_position: float = Field(0.10, ge=0, le=1)
    waveform_buckets: int = Field(200, ge=10, le=5000)
    webp_quality: int = Field(85, ge=1, le=100)
    work_dir: Optional[str] = None

    @classmethod
    def from_settings(cls, s: Settings) -> "VariantConfig":
        return cls(
            thumbnail_position=s.THUMBNAIL_POSITION,
            waveform_buckets=s.WAVEFORM_BUCKETS,
            webp_quality=s.WEBP_QUALITY,
            work_dir=s.MEDIA_WORK_DIR,
        )


# ─────────────────────────────────────────────────────────────
# 🧱 Planning types
# ─────────────────────────────────────────────────────────────
@dataclass
class Rendered:
    data: bytes
    width: Optional[int] = None
    height: Optional[int] = None
    bitrate_kbps: Optional[int] = None


@dataclass
class PlannedVariant:
    label: str
    kind: VariantKind
    key: str
    mime_type: str
    render: Callable[[], Awaitable[Rendered]]


# Failures recorded on a variant instead of propagating.
_RENDER_ERRORS = (CodecError, OSError, ValueError, UnidentifiedImageError, Image.DecompressionBombError)


class VariantGenerator:
    def __init__(
        self,
        repo: ContentRepositoryProtocol,
        store: ObjectStore,
        ledger: QuotaLedger,
        codec: CodecTool,
        config: Optional[VariantConfig] = None,
        *,
        item_locks: Optional[KeyedLock] = None,
    ) -> None:
        self.repo = repo
        self.store = store
        self.ledger = ledger
        self.codec = codec
        self.config = config or VariantConfig()
        self.item_locks = item_locks or KeyedLock()
        self._runs = KeyedLock()

    # ── public API ───────────────────────────────────────────
    async def generate(self, content_id: UUID) -> Optional[ContentItem]:
        """Produce every planned variant of an item. Safe to call twice."""
        async with self._runs.hold(content_id):
            item = await self.repo.get(content_id)
            if item is None or item.is_duplicate or item.lifecycle_status is not LifecycleStatus.ACTIVE:
                return item
            if item.processing_status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED):
                return item

            item = await self._set_processing(content_id)
            if item is None:
                return None
            return await self._run(item, only_label=None)

    async def retry_variant(self, content_id: UUID, label: str) -> ContentItem:
        """Regenerate one failed variant; raise `ProcessingFailed` if it fails again."""
        async with self._runs.hold(content_id):
            async with self.item_locks.hold(content_id):
                item = await self.repo.get(content_id)
                if item is None or item.lifecycle_status is LifecycleStatus.HARD_DELETED:
                    raise NotFound("Content", str(content_id))
                if item.is_duplicate:
                    raise NotFound("Variant", label)
                variant = item.variant(label)
                if variant is None:
                    raise NotFound("Variant", label)
                variant.status = ensure_transition("variant", VARIANT_TRANSITIONS, variant.status, VariantStatus.PENDING)
                variant.error = None
                if item.processing_status is not ProcessingStatus.PROCESSING:
                    item.processing_status = ensure_transition(
                        "processing", PROCESSING_TRANSITIONS, item.processing_status, ProcessingStatus.PROCESSING,
                    )
                item.updated_at = utcnow()
                await self.repo.save(item)

            item = await self._run(item, only_label=label)
            if item is None:
                raise NotFound("Content", str(content_id))
            if item.processing_status is ProcessingStatus.FAILED:
                raise ProcessingFailed(str(content_id), label, item.processing_error or "source unreadable")
            retried = item.variant(label)
            if retried is not None and retried.status is VariantStatus.FAILED:
                raise ProcessingFailed(str(content_id), label, retried.error or "unknown")
            return item

    # ── run ──────────────────────────────────────────────────
    async def _set_processing(self, content_id: UUID) -> Optional[ContentItem]:
        async with self.item_locks.hold(content_id):
            item = await self.repo.get(content_id)
            if item is None:
                return None
            if item.processing_status is not ProcessingStatus.PROCESSING:
                item.processing_status = ensure_transition(
                    "processing", PROCESSING_TRANSITIONS, item.processing_status, ProcessingStatus.PROCESSING,
                )
                item.updated_at = utcnow()
                await self.repo.save(item)
            return item

    async def _run(self, item: ContentItem, *, only_label: Optional[str]) -> Optional[ContentItem]:
        log_extra = {"content_id": str(item.id), "owner_id": item.owner_id}
        with tempfile.TemporaryDirectory(prefix="fv-variants-", dir=self.config.work_dir) as tmp:
            src = os.path.join(tmp, f"source.{item.extension or 'bin'}")
            try:
                await self.store.download_to(item.storage_key, src)
                plan, facts = await self._plan(item, src, tmp)
            except (StorageUnavailable, KeyError, *_RENDER_ERRORS) as e:
                logger.warning("Source unreadable; item failed: %r", e, extra=log_extra)
                return await self._finish(item.id, failed_reason=f"source unreadable: {e}")

            await self._record_facts(item.id, facts)
            if only_label is not None:
                plan = [p for p in plan if p.label == only_label]
                previous = item.variant(only_label)
                if not plan and previous is not None:
                    stale = previous.model_copy(update={
                        "status": VariantStatus.FAILED,
                        "error": "rendition no longer applicable to source",
                        "attempts": previous.attempts + 1,
                        "updated_at": utcnow(),
                    })
                    if not await self._record_variant(item, stale):
                        return None

            for planned in plan:
                previous = item.variant(planned.label)
                attempts = (previous.attempts if previous else 0) + 1
                variant = await self._produce(item, planned, attempts)
                if not await self._record_variant(item, variant):
                    return None

        logger.info("Variants generated", extra={**log_extra, "planned": len(plan)})
        return await self._finish(item.id)

    async def _finish(self, content_id: UUID, *, failed_reason: Optional[str] = None) -> Optional[ContentItem]:
        async with self.item_locks.hold(content_id):
            item = await self.repo.get(content_id)
            if item is None:
                return None
            target = ProcessingStatus.FAILED if failed_reason else ProcessingStatus.COMPLETED
            if item.processing_status is ProcessingStatus.PROCESSING:
                item.processing_status = ensure_transition("processing", PROCESSING_TRANSITIONS, item.processing_status, target)
            item.processing_error = failed_reason
            item.updated_at = utcnow()
            await self.repo.save(item)
            return item

    # ── planning ─────────────────────────────────────────────
    async def _plan(self, item: ContentItem, src: str, tmp: str) -> Tuple[List[PlannedVariant], Dict[str, object]]:
        if item.type is ContentType.IMAGE:
            return await self._plan_image(item, src)
        if item.type is ContentType.VIDEO:
            return await self._plan_video(item, src, tmp)
        if item.type is ContentType.AUDIO:
            return await self._plan_audio(item, src, tmp)
        return [], {}

    async def _plan_image(self, item: ContentItem, src: str) -> Tuple[List[PlannedVariant], Dict[str, object]]:
        width, height = await asyncio.to_thread(image_ops.image_size, src)
        quality = self.config.webp_quality

        def _rung(w: int) -> Callable[[], Awaitable[Rendered]]:
            async def render() -> Rendered:
                data, rw, rh = await asyncio.to_thread(image_ops.render_width, src, w, quality=quality)
                return Rendered(data, rw, rh)
            return render

        plan = [
            PlannedVariant(r.label, VariantKind.IMAGE_RENDITION, image_variant_key(item.storage_key, r.label),
                           "image/webp", _rung(r.width))
            for r in self.config.image_ladder
            if r.width <= width
        ]
        return plan, {"width": width, "height": height}

    async def _plan_video(self, item: ContentItem, src: str, tmp: str) -> Tuple[List[PlannedVariant], Dict[str, object]]:
        probe = await self.codec.probe(src)
        if not probe.has_video or not probe.height or not probe.width:
            raise CodecError("no video stream")
        facts = _facts(probe)
        plan: List[PlannedVariant] = []

        def _transcode(rung: VideoRung) -> Callable[[], Awaitable[Rendered]]:
            async def render() -> Rendered:
                dst = os.path.join(tmp, f"{rung.label}.mp4")
                await self.codec.transcode_video(src, dst, height=rung.height, bitrate_kbps=rung.bitrate_kbps)
                out = await self.codec.probe(dst)
                if out.height and out.height > (probe.height or 0):
                    raise ValueError(f"transcode height {out.height} exceeds source {probe.height}")
                data = await asyncio.to_thread(_read, dst)
                return Rendered(data, out.width or rung.width, out.height or rung.height, rung.bitrate_kbps)
            return render

        for rung in self.config.video_ladder:
            if rung.height <= probe.height:
                plan.append(PlannedVariant(rung.label, VariantKind.VIDEO_RENDITION,
                                           video_variant_key(item.storage_key, rung.label), "video/mp4", _transcode(rung)))

        frame = os.path.join(tmp, "frame.jpg")
        frame_lock = asyncio.Lock()
        at = (probe.duration_seconds or 0.0) * self.config.thumbnail_position

        def _thumb(size: ThumbnailSize) -> Callable[[], Awaitable[Rendered]]:
            async def render() -> Rendered:
                async with frame_lock:
                    if not os.path.exists(frame):
                        await self.codec.extract_frame(src, frame, at_seconds=at)
                data, w, h = await asyncio.to_thread(image_ops.render_fit, frame, size.width, size.height)
                return Rendered(data, w, h)
            return render

        for size in self.config.thumbnail_sizes:
            if size.height <= probe.height and size.width <= probe.width:
                label = f"thumb_{size.label}"
                plan.append(PlannedVariant(label, VariantKind.VIDEO_THUMBNAIL,
                                           thumbnail_key(item.storage_key, size.label), "image/jpeg", _thumb(size)))
        return plan, facts

    async def _plan_audio(self, item: ContentItem, src: str, tmp: str) -> Tuple[List[PlannedVariant], Dict[str, object]]:
        probe = await self.codec.probe(src)
        if not probe.has_audio:
            raise CodecError("no audio stream")
        if not probe.bitrate_bps and probe.duration_seconds:
            probe.bitrate_bps = int(item.size_bytes * 8 / probe.duration_seconds)
        facts = _facts(probe)

        try:
            pcm = await self.codec.pcm_samples(src)
            facts["waveform"] = waveform_peaks(pcm, self.config.waveform_buckets)
        except CodecError as e:
            logger.warning("Waveform extraction failed: %s", e, extra={"content_id": str(item.id)})

        def _encode(rung: AudioRung) -> Callable[[], Awaitable[Rendered]]:
            async def render() -> Rendered:
                dst = os.path.join(tmp, f"{rung.label}.{rung.extension}")
                await self.codec.transcode_audio(src, dst, codec=rung.codec, bitrate_kbps=rung.bitrate_kbps)
                data = await asyncio.to_thread(_read, dst)
                return Rendered(data, bitrate_kbps=rung.bitrate_kbps)
            return render

        plan = [
            PlannedVariant(r.label, VariantKind.AUDIO_RENDITION,
                           audio_variant_key(item.storage_key, r.label, r.extension), r.mime_type, _encode(r))
            for r in self.config.audio_ladder
            if probe.bitrate_bps and r.bitrate_kbps * 1000 <= probe.bitrate_bps
        ]
        return plan, facts

    # ── produce / record ─────────────────────────────────────
    async def _produce(self, item: ContentItem, planned: PlannedVariant, attempts: int) -> Variant:
        variant = Variant(
            label=planned.label,
            kind=planned.kind,
            storage_key=planned.key,
            mime_type=planned.mime_type,
            attempts=attempts,
        )
        log_extra = {"content_id": str(item.id), "label": planned.label}
        try:
            rendered = await planned.render()
        except _RENDER_ERRORS as e:
            return self._failed(variant, f"render failed: {e}", log_extra)

        size = len(rendered.data)
        try:
            await self.ledger.reserve(item.owner_id, size)
        except QuotaExceeded:
            return self._failed(variant, "quota_exceeded", log_extra)
        try:
            await self.store.put(planned.key, rendered.data, content_type=planned.mime_type)
        except StorageUnavailable as e:
            await self.ledger.cancel(item.owner_id, size)
            return self._failed(variant, f"storage unavailable: {e.details}", log_extra)
        except BaseException:
            await self.ledger.cancel(item.owner_id, size)
            raise
        await self.ledger.commit(item.owner_id, size)

        variant.status = VariantStatus.COMPLETED
        variant.size_bytes = size
        variant.width = rendered.width
        variant.height = rendered.height
        variant.bitrate_kbps = rendered.bitrate_kbps
        variant.updated_at = utcnow()
        inc_variant(planned.kind.value, "completed")
        return variant

    @staticmethod
    def _failed(variant: Variant, reason: str, log_extra: Dict[str, str]) -> Variant:
        logger.warning("Variant failed: %s", reason, extra=log_extra)
        inc_variant(variant.kind.value, "failed")
        variant.status = VariantStatus.FAILED
        variant.error = reason
        variant.updated_at = utcnow()
        return variant

    async def _record_variant(self, item: ContentItem, variant: Variant) -> bool:
        """Attach `variant` to the current row. False when the item vanished meanwhile."""
        async with self.item_locks.hold(item.id):
            current = await self.repo.get(item.id)
            if current is None or current.lifecycle_status is LifecycleStatus.HARD_DELETED:
                if variant.status is VariantStatus.COMPLETED:
                    await self.store.delete(variant.storage_key)
                    await self.ledger.release(item.owner_id, variant.size_bytes)
                return False
            current.variants = [v for v in current.variants if v.label != variant.label] + [variant]
            current.updated_at = utcnow()
            await self.repo.save(current)
        # keep the caller's view current for attempt counting
        item.variants = [v for v in item.variants if v.label != variant.label] + [variant]
        return True

    async def _record_facts(self, content_id: UUID, facts: Dict[str, object]) -> None:
        if not facts:
            return
        async with self.item_locks.hold(content_id):
            current = await self.repo.get(content_id)
            if current is None:
                return
            for k, v in facts.items():
                if v is not None:
                    setattr(current, k, v)
            await self.repo.save(current)


def _facts(probe: MediaProbe) -> Dict[str, object]:
    return {
        "width": probe.width,
        "height": probe.height,
        "duration_seconds": probe.duration_seconds,
        "bitrate_bps": probe.bitrate_bps,
        "sample_rate": probe.sample_rate,
        "channels": probe.channels,
    }


def _read(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


__all__ = [
    "AudioRung",
    "ImageRung",
    "PlannedVariant",
    "Rendered",
    "ThumbnailSize",
    "VariantConfig",
    "VariantGenerator",
    "VideoRung",
]
