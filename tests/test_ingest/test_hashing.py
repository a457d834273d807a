# tests/test_ingest/test_hashing.py

import hashlib

import pytest

from app.core.config import GIB
from app.core.exceptions import ValidationError
from app.schemas.enums import ContentType
from app.services.hashing import (
    ValidationConfig,
    classify_mime,
    inspect,
    iter_bytes,
    validate_declared,
)
from tests.fixtures.media import meta, png_bytes


class _ExplodingStream:
    """Async iterable that fails the test if anybody reads from it."""

    def __aiter__(self):
        return self

    async def __anext__(self):
        raise AssertionError("stream must not be read")


@pytest.mark.anyio
async def test_hash_and_size_are_computed_in_one_pass():
    data = png_bytes(64, 64)
    cfg = ValidationConfig(chunk_size=1024)
    up = await inspect(iter_bytes(data, 1000), meta("cover.png", mime_type="image/png"), cfg)
    try:
        assert up.content_hash == hashlib.sha256(data).hexdigest()
        assert up.size == len(data)
        assert up.content_type is ContentType.IMAGE
        assert up.extension == "png"
        assert up.file.read() == data
    finally:
        up.close()


@pytest.mark.anyio
async def test_declared_6_gib_is_rejected_before_reading():
    with pytest.raises(ValidationError) as ei:
        await inspect(_ExplodingStream(), meta("concert.mp4", mime_type="video/mp4", declared_size=6 * GIB),
                      ValidationConfig())
    assert ei.value.status_code == 400
    assert any("exceeds maximum" in e for e in ei.value.errors)


def test_every_violated_rule_is_listed():
    bad = meta("notes.exe", mime_type="application/x-msdownload", declared_size=6 * GIB)
    with pytest.raises(ValidationError) as ei:
        validate_declared(bad, ValidationConfig())
    errors = ei.value.errors
    assert len(errors) == 3
    assert any("exceeds maximum" in e for e in errors)
    assert any("unsupported file extension '.exe'" in e for e in errors)
    assert any("unsupported mime type" in e for e in errors)
    assert ei.value.details == {"errors": errors}


def test_mime_extension_mismatch_is_a_warning_by_default():
    check = validate_declared(meta("track.mp3", mime_type="video/mp4"), ValidationConfig())
    assert check.content_type is ContentType.AUDIO
    assert any("does not match extension" in w for w in check.warnings)


def test_mime_extension_mismatch_fails_in_strict_mode():
    with pytest.raises(ValidationError) as ei:
        validate_declared(meta("track.mp3", mime_type="video/mp4"), ValidationConfig(strict_mime=True))
    assert any("does not match extension" in e for e in ei.value.errors)


def test_generic_mime_falls_back_to_extension():
    check = validate_declared(meta("setlist.pdf"), ValidationConfig())
    assert check.content_type is ContentType.DOCUMENT
    assert check.mime_type == "application/pdf"


def test_declared_type_must_match_detected_type():
    with pytest.raises(ValidationError) as ei:
        validate_declared(meta("cover.png", mime_type="image/png", type=ContentType.VIDEO), ValidationConfig())
    assert any("declared type 'video'" in e for e in ei.value.errors)


def test_missing_extension_is_rejected():
    with pytest.raises(ValidationError) as ei:
        validate_declared(meta("README", mime_type="text/plain"), ValidationConfig())
    assert "file has no extension" in ei.value.errors


@pytest.mark.anyio
async def test_stream_larger_than_maximum_is_cut_off():
    cfg = ValidationConfig(max_file_size=2048, chunk_size=1024)
    with pytest.raises(ValidationError) as ei:
        await inspect(iter_bytes(b"x" * 5000, 1024), meta("big.txt", mime_type="text/plain"), cfg)
    assert any("exceeds maximum 2048" in e for e in ei.value.errors)


@pytest.mark.anyio
async def test_empty_stream_is_rejected():
    with pytest.raises(ValidationError) as ei:
        await inspect(iter_bytes(b""), meta("empty.txt", mime_type="text/plain"), ValidationConfig())
    assert "file is empty" in ei.value.errors


@pytest.mark.anyio
async def test_declared_size_must_match_received_bytes():
    with pytest.raises(ValidationError) as ei:
        await inspect(iter_bytes(b"hello"), meta("hi.txt", mime_type="text/plain", declared_size=99),
                      ValidationConfig())
    assert any("does not match received 5 bytes" in e for e in ei.value.errors)


@pytest.mark.parametrize(
    "mime,expected",
    [
        ("video/quicktime", ContentType.VIDEO),
        ("audio/flac", ContentType.AUDIO),
        ("image/webp; charset=binary", ContentType.IMAGE),
        ("application/pdf", ContentType.DOCUMENT),
        ("application/zip", None),
    ],
)
def test_classify_mime(mime, expected):
    assert classify_mime(mime) is expected
