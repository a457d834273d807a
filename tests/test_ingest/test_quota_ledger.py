# tests/test_ingest/test_quota_ledger.py

import asyncio

import pytest
from prometheus_client import REGISTRY

from app.core.exceptions import QuotaExceeded
from app.repositories.content import MemoryContentRepository
from app.repositories.quota import MemoryQuotaRepository
from app.schemas.enums import VariantStatus
from app.services.quota_ledger import QuotaConfig, QuotaLedger
from tests.fixtures.items import make_item, make_variant


@pytest.fixture()
def content_repo():
    return MemoryContentRepository()


@pytest.fixture()
def ledger(content_repo):
    return QuotaLedger(MemoryQuotaRepository(), content_repo, QuotaConfig(default_quota_bytes=1000))


@pytest.mark.anyio
async def test_new_owner_gets_default_quota(ledger):
    rec = await ledger.get("artist-a")
    assert (rec.quota_bytes, rec.used_bytes, rec.reserved_bytes) == (1000, 0, 0)
    assert rec.available_bytes == 1000


@pytest.mark.anyio
async def test_reserve_commit_cancel(ledger):
    await ledger.reserve("artist-a", 600)
    rec = await ledger.commit("artist-a", 600)
    assert (rec.used_bytes, rec.reserved_bytes) == (600, 0)

    await ledger.reserve("artist-a", 300)
    rec = await ledger.cancel("artist-a", 300)
    assert (rec.used_bytes, rec.reserved_bytes) == (600, 0)


@pytest.mark.anyio
async def test_reservations_count_against_quota(ledger):
    await ledger.reserve("artist-a", 700)
    with pytest.raises(QuotaExceeded) as ei:
        await ledger.reserve("artist-a", 301)
    assert ei.value.status_code == 403
    assert ei.value.details["reserved_bytes"] == 700
    assert ei.value.details["requested_bytes"] == 301
    # exactly filling the quota is allowed
    assert await ledger.reserve("artist-a", 300) is True


@pytest.mark.anyio
async def test_concurrent_reserves_never_exceed_quota(ledger):
    async def attempt():
        try:
            return await ledger.reserve("artist-a", 150)
        except QuotaExceeded:
            return False

    results = await asyncio.gather(*(attempt() for _ in range(20)))
    assert results.count(True) == 6
    rec = await ledger.get("artist-a")
    assert rec.reserved_bytes == 900


@pytest.mark.anyio
async def test_release_is_clamped_at_zero(ledger):
    await ledger.reserve("artist-a", 100)
    await ledger.commit("artist-a", 100)
    rec = await ledger.release("artist-a", 250)
    assert rec.used_bytes == 0


@pytest.mark.anyio
async def test_charge_adds_used_without_reservation(ledger):
    rec = await ledger.charge("artist-b", 400)
    assert (rec.used_bytes, rec.reserved_bytes) == (400, 0)


@pytest.mark.anyio
async def test_owners_are_isolated(ledger):
    await ledger.reserve("artist-a", 1000)
    assert await ledger.reserve("artist-b", 1000) is True


@pytest.mark.anyio
async def test_set_quota_rejects_negative(ledger):
    with pytest.raises(ValueError):
        await ledger.set_quota("artist-a", -1)
    rec = await ledger.set_quota("artist-a", 5000)
    assert rec.quota_bytes == 5000


@pytest.mark.anyio
async def test_reconcile_corrects_drift(ledger, content_repo):
    await content_repo.save(make_item(size=200, variants=[
        make_variant("small", 50),
        make_variant("large", 70, status=VariantStatus.FAILED),
    ]))
    await content_repo.save(make_item(size=200, content_hash="b" * 64, is_duplicate=True))
    await ledger.charge("artist-a", 999)

    rec = await ledger.reconcile("artist-a")
    assert rec.used_bytes == 250
    assert rec.reconciled_at is not None


@pytest.mark.anyio
async def test_reconcile_all_covers_every_owner(ledger, content_repo):
    await content_repo.save(make_item(owner_id="artist-c", size=10))
    await ledger.charge("artist-d", 77)
    out = await ledger.reconcile_all()
    assert out == {"artist-c": 10, "artist-d": 0}


def _handover_events() -> float:
    return REGISTRY.get_sample_value("media_data_quality_events_total", {"event": "handover_over_quota"}) or 0.0


@pytest.mark.anyio
async def test_charge_past_ceiling_keeps_bytes_and_records_overage(ledger):
    await ledger.reserve("artist-b", 800)
    await ledger.commit("artist-b", 800)
    before = _handover_events()

    rec = await ledger.charge("artist-b", 500)

    assert (rec.used_bytes, rec.reserved_bytes) == (1300, 0)
    assert _handover_events() == before + 1
    with pytest.raises(QuotaExceeded):
        await ledger.reserve("artist-b", 1)


@pytest.mark.anyio
async def test_charge_within_ceiling_records_nothing(ledger):
    before = _handover_events()
    rec = await ledger.charge("artist-b", 1000)
    assert rec.used_bytes == 1000
    assert _handover_events() == before
