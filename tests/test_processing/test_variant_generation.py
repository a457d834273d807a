# tests/test_processing/test_variant_generation.py

import pytest

from app.core.exceptions import AccessDenied, InvalidTransition, NotFound, ProcessingFailed
from app.schemas.enums import ProcessingStatus, VariantKind, VariantStatus
from tests.fixtures.media import audio_bytes, meta, png_bytes, upload, video_bytes
from tests.fixtures.mocks.codec import FakeCodec


async def _upload_video(registry, service, name="live.mp4"):
    res = await upload(service, video_bytes(), meta(name, mime_type="video/mp4"))
    await registry.runner.drain()
    return await service.get(res.content_id)


@pytest.mark.anyio
async def test_video_ladder_never_exceeds_source(registry, service, primary_store):
    item = await _upload_video(registry, service)

    assert item.processing_status is ProcessingStatus.COMPLETED
    assert (item.width, item.height) == (1920, 1080)
    renditions = [v for v in item.variants if v.kind is VariantKind.VIDEO_RENDITION]
    assert [v.label for v in renditions] == ["360p", "480p", "720p", "1080p"]
    assert all(v.height <= 1080 for v in renditions)

    thumbs = [v for v in item.variants if v.kind is VariantKind.VIDEO_THUMBNAIL]
    assert [(v.label, v.width, v.height) for v in thumbs] == [
        ("thumb_small", 320, 180), ("thumb_medium", 640, 360), ("thumb_large", 1280, 720),
    ]
    for v in item.variants:
        assert v.storage_key in primary_store.objects
        assert v.storage_key.startswith("artists/artist-a/")
    assert item.variant("720p").storage_key.endswith("_720p.mp4")
    assert item.variant("thumb_small").storage_key.endswith("_thumb_small.jpg")


@pytest.mark.anyio
async def test_variant_bytes_are_committed_to_quota(registry, service):
    item = await _upload_video(registry, service)
    rec = await registry.ledger.get("artist-a")
    assert rec.used_bytes == item.size_bytes + item.variant_bytes
    assert rec.reserved_bytes == 0


@pytest.mark.anyio
async def test_one_failed_rendition_does_not_fail_the_item(registry, service, codec, primary_store):
    codec.fail_heights.add(720)
    item = await _upload_video(registry, service)

    assert item.processing_status is ProcessingStatus.COMPLETED
    failed = item.variant("720p")
    assert failed.status is VariantStatus.FAILED
    assert "encoder failed at 720p" in failed.error
    assert failed.storage_key not in primary_store.objects
    assert item.variant("1080p").status is VariantStatus.COMPLETED


@pytest.mark.anyio
async def test_retry_variant_recovers(registry, service, codec):
    codec.fail_heights.add(720)
    item = await _upload_video(registry, service)
    used_before = (await registry.ledger.get("artist-a")).used_bytes

    codec.fail_heights.clear()
    retried = await service.retry_variant(item.id, "720p", "artist-a")

    v = retried.variant("720p")
    assert v.status is VariantStatus.COMPLETED
    assert v.attempts == 2
    assert retried.processing_status is ProcessingStatus.COMPLETED
    assert (await registry.ledger.get("artist-a")).used_bytes == used_before + v.size_bytes


@pytest.mark.anyio
async def test_retry_variant_failing_again_raises(registry, service, codec):
    codec.fail_heights.add(480)
    item = await _upload_video(registry, service)

    with pytest.raises(ProcessingFailed) as ei:
        await service.retry_variant(item.id, "480p", "artist-a")
    assert ei.value.status_code == 422
    assert ei.value.label == "480p"

    again = await service.get(item.id)
    assert again.processing_status is ProcessingStatus.COMPLETED
    assert again.variant("480p").attempts == 2


@pytest.mark.anyio
async def test_retry_of_completed_or_unknown_variant(registry, service):
    item = await _upload_video(registry, service)
    with pytest.raises(InvalidTransition):
        await service.retry_variant(item.id, "360p", "artist-a")
    with pytest.raises(NotFound):
        await service.retry_variant(item.id, "8k", "artist-a")


@pytest.mark.anyio
async def test_unreadable_source_fails_the_item(registry, service, codec):
    codec.unreadable = True
    item = await _upload_video(registry, service, "broken.mp4")

    assert item.processing_status is ProcessingStatus.FAILED
    assert item.processing_error.startswith("source unreadable")
    assert item.variants == []
    assert (await registry.ledger.get("artist-a")).used_bytes == item.size_bytes


@pytest.mark.anyio
async def test_small_video_gets_only_fitting_rungs(registry, service, codec):
    codec.source = FakeCodec(width=854, height=480).source
    item = await _upload_video(registry, service, "phone.mp4")
    assert [v.label for v in item.variants] == ["360p", "480p", "thumb_small", "thumb_medium"]


@pytest.mark.anyio
async def test_audio_ladder_and_waveform(registry, service, codec):
    codec.source = FakeCodec.for_audio(bitrate_bps=256_000).source
    res = await upload(service, audio_bytes(), meta("single.mp3", mime_type="audio/mpeg"))
    await registry.runner.drain()
    item = await service.get(res.content_id)

    assert item.processing_status is ProcessingStatus.COMPLETED
    assert [v.label for v in item.variants] == ["192k", "128k", "96k"]
    assert item.variant("96k").storage_key.endswith("_96k.m4a")
    assert item.variant("96k").mime_type == "audio/mp4"
    assert item.sample_rate == 44100
    assert len(item.waveform) == 200
    assert max(item.waveform) == 1.0
    assert all(0.0 <= p <= 1.0 for p in item.waveform)


@pytest.mark.anyio
async def test_image_ladder_respects_source_width(registry, service):
    res = await upload(service, png_bytes(1000, 800), meta("photo.png", mime_type="image/png"))
    await registry.runner.drain()
    item = await service.get(res.content_id)

    assert [v.label for v in item.variants] == ["thumb", "small", "medium"]
    medium = item.variant("medium")
    assert (medium.width, medium.height) == (800, 640)
    assert medium.mime_type == "image/webp"
    assert (item.width, item.height) == (1000, 800)


@pytest.mark.anyio
async def test_corrupt_image_fails_the_item(registry, service):
    res = await upload(service, b"\x89PNG\r\n\x1a\n" + b"garbage" * 10, meta("bad.png", mime_type="image/png"))
    await registry.runner.drain()
    item = await service.get(res.content_id)
    assert item.processing_status is ProcessingStatus.FAILED


@pytest.mark.anyio
async def test_generate_is_idempotent(registry, service, codec):
    item = await _upload_video(registry, service)
    calls = len(codec.calls)
    again = await registry.generator.generate(item.id)
    assert again.processing_status is ProcessingStatus.COMPLETED
    assert len(codec.calls) == calls


@pytest.mark.anyio
async def test_non_owner_cannot_retry(registry, service, codec):
    codec.fail_heights.add(720)
    item = await _upload_video(registry, service)

    with pytest.raises(AccessDenied):
        await service.retry_variant(item.id, "720p", "artist-b")
