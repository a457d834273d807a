# tests/test_lifecycle/test_backups.py

import pytest

from app.core.exceptions import AccessDenied, StorageUnavailable
from app.schemas.enums import BackupStatus, Priority
from tests.fixtures.media import meta, png_bytes, upload

@pytest.mark.anyio
async def test_high_priority_upload_is_backed_up(registry, service, backup_store, primary_store):
    res = await upload(service, png_bytes(300, 300), meta("press.png", mime_type="image/png", priority=Priority.HIGH))
    await registry.runner.drain()
    item = await service.get(res.content_id)

    by_target = {b.target: b for b in item.backups}
    assert set(by_target) == {"secondary_region", "cold_storage"}
    assert all(b.status is BackupStatus.COMPLETED for b in item.backups)

    secondary = by_target["secondary_region"]
    assert secondary.key == f"backups/secondary_region/{item.storage_key}"
    assert (secondary.bucket, secondary.region) == ("backup", "us-west-2")
    assert backup_store.objects[secondary.key].storage_class == "STANDARD_IA"

    cold = by_target["cold_storage"]
    assert primary_store.objects[cold.key].storage_class == "DEEP_ARCHIVE"
    assert primary_store.objects[cold.key].data == primary_store.objects[item.storage_key].data

@pytest.mark.anyio
async def test_normal_priority_waits_for_sweep(registry, service):
    res = await upload(service, png_bytes(300, 300), meta("cover.png", mime_type="image/png"))
    await registry.runner.drain()
    assert (await service.get(res.content_id)).backups == []

    assert await registry.lifecycle.backup_sweep() == 1
    item = await service.get(res.content_id)
    assert item.has_completed_backup
    assert await registry.lifecycle.backup_sweep() == 0

@pytest.mark.anyio
async def test_failed_target_is_recorded_and_retried(registry, service, backup_store, monkeypatch):
    res = await upload(service, png_bytes(300, 300), meta("cover.png", mime_type="image/png"))
    await registry.runner.drain()

    original_copy = registry.store.copy_to

    async def flaky_copy(key, dest, dest_key, **kwargs):
        if dest is backup_store:
            raise StorageUnavailable("put", dest_key, attempts=3)
        return await original_copy(key, dest, dest_key, **kwargs)

    monkeypatch.setattr(registry.store, "copy_to", flaky_copy)
    item = await service.backup(res.content_id, "artist-a")
    status = {b.target: b.status for b in item.backups}
    assert status == {"secondary_region": BackupStatus.FAILED, "cold_storage": BackupStatus.COMPLETED}
    assert "put" in next(b.error for b in item.backups if b.target == "secondary_region")

    monkeypatch.setattr(registry.store, "copy_to", original_copy)
    assert await registry.lifecycle.backup_sweep() == 1
    item = await service.get(res.content_id)
    assert {b.target: b.status for b in item.backups} == {
        "secondary_region": BackupStatus.COMPLETED,
        "cold_storage": BackupStatus.COMPLETED,
    }


@pytest.mark.anyio
async def test_hard_delete_removes_backup_copies(registry, service, backup_store, primary_store):
    res = await upload(service, png_bytes(300, 300), meta("press.png", mime_type="image/png", priority=Priority.HIGH))
    await registry.runner.drain()
    item = await service.get(res.content_id)

    await service.delete(item.id, "artist-a")
    result = await service.hard_delete(item.id, force=True)

    assert f"secondary_region:backups/secondary_region/{item.storage_key}" in result.deleted_keys
    assert backup_store.objects == {}
    assert not any(k.startswith("backups/") for k in primary_store.objects)

@pytest.mark.anyio
async def test_backup_is_owner_only(registry, service):
    res = await upload(service, png_bytes(100, 100), meta("cover.png", mime_type="image/png"))
    with pytest.raises(AccessDenied):
        await service.backup(res.content_id, "artist-b")
