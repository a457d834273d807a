# tests/test_lifecycle/test_soft_and_hard_delete.py

from datetime import timedelta

import pytest

from app.core.exceptions import AccessDenied, InvalidTransition, NotFound
from app.schemas.content import utcnow
from app.schemas.enums import LifecycleStatus
from app.services.lifecycle import LifecycleConfig, LifecycleManager
from tests.fixtures.items import make_item
from tests.fixtures.media import meta, png_bytes, upload


class Clock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


async def _stored_image(registry, service, name="cover.png", **kw):
    res = await upload(service, png_bytes(900, 600), meta(name, mime_type="image/png", **kw))
    await registry.runner.drain()
    return await service.get(res.content_id)


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def lifecycle(registry, clock):
    return LifecycleManager(
        registry.content_repo, registry.store, registry.ledger, registry.cdn,
        LifecycleConfig(grace_period_days=30),
        backup_targets=registry.backup_targets, item_locks=registry.item_locks, clock=clock,
    )


@pytest.mark.anyio
async def test_soft_delete_hides_but_keeps_bytes(registry, service, primary_store):
    item = await _stored_image(registry, service)
    used = (await registry.ledger.get("artist-a")).used_bytes

    deleted = await service.delete(item.id, "artist-a")
    assert deleted.lifecycle_status is LifecycleStatus.SOFT_DELETED
    assert deleted.hard_delete_at - deleted.deleted_at == timedelta(days=30)

    assert await service.list_for_owner("artist-a") == []
    assert [i.id for i in await service.list_for_owner("artist-a", include_deleted=True)] == [item.id]
    assert item.storage_key in primary_store.objects
    assert (await registry.ledger.get("artist-a")).used_bytes == used


@pytest.mark.anyio
async def test_restore_inside_grace(registry, service, lifecycle, clock):
    item = await _stored_image(registry, service)
    await lifecycle.soft_delete(item.id)
    clock.advance(days=29)
    restored = await lifecycle.restore(item.id)
    assert restored.lifecycle_status is LifecycleStatus.ACTIVE
    assert restored.deleted_at is None and restored.hard_delete_at is None


@pytest.mark.anyio
async def test_restore_after_grace_is_not_found(registry, service, lifecycle, clock):
    item = await _stored_image(registry, service)
    await lifecycle.soft_delete(item.id)
    clock.advance(days=30, seconds=1)
    with pytest.raises(NotFound):
        await lifecycle.restore(item.id)


@pytest.mark.anyio
async def test_restore_of_active_item_is_invalid(registry, service):
    item = await _stored_image(registry, service)
    with pytest.raises(InvalidTransition):
        await service.restore(item.id, "artist-a")


@pytest.mark.anyio
async def test_sweep_removes_everything_after_grace(registry, service, lifecycle, clock, primary_store):
    item = await _stored_image(registry, service)
    keys = [item.storage_key] + [v.storage_key for v in item.variants]
    assert len(keys) == 4
    await lifecycle.soft_delete(item.id)

    assert await lifecycle.sweep(clock.now + timedelta(days=29)) == []

    results = await lifecycle.sweep(clock.now + timedelta(days=31))
    assert len(results) == 1
    assert results[0].removed is True
    assert results[0].released_bytes == item.billable_bytes
    assert sorted(results[0].deleted_keys) == sorted(keys)

    assert await registry.content_repo.get(item.id) is None
    for key in keys:
        assert not await primary_store.exists(key)
        with pytest.raises(KeyError):
            await primary_store.get(key)
    assert (await registry.ledger.get("artist-a")).used_bytes == 0
    with pytest.raises(NotFound):
        await service.get(item.id)


@pytest.mark.anyio
async def test_sweep_skips_item_restored_after_listing(registry, service, lifecycle, clock, monkeypatch):
    item = await _stored_image(registry, service)
    stale = await lifecycle.soft_delete(item.id)
    await lifecycle.restore(item.id)

    async def _due(now):
        return [stale]

    monkeypatch.setattr(registry.content_repo, "list_due_hard_delete", _due)
    assert await lifecycle.sweep(clock.now + timedelta(days=31)) == []
    assert (await service.get(item.id)).lifecycle_status is LifecycleStatus.ACTIVE

@pytest.mark.anyio
async def test_hard_delete_is_idempotent(registry, service, lifecycle):
    item = await _stored_image(registry, service)
    await lifecycle.soft_delete(item.id)
    first = await lifecycle.hard_delete(item.id, force=True)
    second = await lifecycle.hard_delete(item.id, force=True)
    assert first.removed and not second.removed
    assert second.released_bytes == 0
    assert (await registry.ledger.get("artist-a")).used_bytes == 0


@pytest.mark.anyio
async def test_hard_delete_guards(registry, service, lifecycle):
    item = await _stored_image(registry, service)
    with pytest.raises(InvalidTransition):
        await lifecycle.hard_delete(item.id)
    await lifecycle.soft_delete(item.id)
    with pytest.raises(InvalidTransition):
        await lifecycle.hard_delete(item.id)
    assert await registry.content_repo.get(item.id) is not None


@pytest.mark.anyio
async def test_forced_hard_delete_purges_active_item(registry, service, lifecycle, primary_store):
    item = await _stored_image(registry, service)
    assert item.lifecycle_status is LifecycleStatus.ACTIVE

    result = await lifecycle.hard_delete(item.id, force=True)

    assert result.removed
    assert result.released_bytes == item.billable_bytes
    assert item.storage_key in result.deleted_keys
    assert item.storage_key not in primary_store.objects
    assert await registry.content_repo.get(item.id) is None
    assert (await registry.ledger.get("artist-a")).used_bytes == 0


@pytest.mark.anyio
async def test_deleting_original_promotes_duplicate(registry, service, lifecycle, primary_store):
    original = await _stored_image(registry, service, "first.png")
    res = await upload(service, png_bytes(900, 600), meta("second.png", mime_type="image/png"))
    await registry.runner.drain()
    copy_id = res.content_id
    used = (await registry.ledger.get("artist-a")).used_bytes

    await lifecycle.soft_delete(original.id)
    result = await lifecycle.hard_delete(original.id, force=True)

    assert result.promoted_id == copy_id
    assert result.deleted_keys == []
    assert original.storage_key in result.kept_keys
    assert original.storage_key in primary_store.objects

    heir = await service.get(copy_id)
    assert heir.is_duplicate is False
    assert heir.original_content_id is None
    assert heir.billable_bytes == original.billable_bytes
    assert (await registry.ledger.get("artist-a")).used_bytes == used


@pytest.mark.anyio
async def test_deleting_duplicate_keeps_original_bytes(registry, service, lifecycle, primary_store):
    original = await _stored_image(registry, service, "first.png")
    res = await upload(service, png_bytes(900, 600), meta("second.png", mime_type="image/png"))
    used = (await registry.ledger.get("artist-a")).used_bytes

    await lifecycle.soft_delete(res.content_id)
    result = await lifecycle.hard_delete(res.content_id, force=True)
    assert result.removed and result.promoted_id is None
    assert result.released_bytes == 0
    assert original.storage_key in primary_store.objects
    assert (await registry.ledger.get("artist-a")).used_bytes == used


@pytest.mark.anyio
async def test_only_owner_may_delete(registry, service):
    item = await _stored_image(registry, service)
    with pytest.raises(AccessDenied):
        await service.delete(item.id, "artist-b")
    assert (await service.get(item.id)).lifecycle_status is LifecycleStatus.ACTIVE


@pytest.mark.anyio
async def test_hand_over_past_heir_quota_keeps_bytes(registry, lifecycle):
    shared = "artists/artist-a/1_shared_item.png"
    original = make_item(owner_id="artist-a", size=1000, key=shared)
    copy = make_item(owner_id="artist-b", size=1000, key=shared, is_duplicate=True,
                     original_content_id=original.id)
    await registry.content_repo.save(original)
    await registry.content_repo.save(copy)
    await registry.ledger.charge("artist-a", 1000)
    await registry.ledger.set_quota("artist-b", 100)

    result = await lifecycle.hard_delete(original.id, force=True)

    assert result.promoted_id == copy.id
    assert result.kept_keys == [shared]
    heir = await registry.content_repo.get(copy.id)
    assert heir.is_duplicate is False
    assert (await registry.ledger.get("artist-b")).used_bytes == 1000
    assert (await registry.ledger.get("artist-a")).used_bytes == 0
