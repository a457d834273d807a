# tests/test_analytics/test_storage_analytics.py

from datetime import datetime, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.config import GIB, MIB
from app.repositories.content import MemoryContentRepository
from app.repositories.quota import MemoryQuotaRepository
from app.schemas.enums import ContentType, StorageClass
from app.services.analytics import AnalyticsService
from app.services.quota_ledger import QuotaConfig, QuotaLedger
from tests.fixtures.items import make_item

NOW = datetime(2026, 6, 15, tzinfo=timezone.utc)


@pytest.fixture()
def repo():
    return MemoryContentRepository()


@pytest.fixture()
def ledger(repo):
    return QuotaLedger(MemoryQuotaRepository(), repo, QuotaConfig(default_quota_bytes=10 * GIB))


@pytest.fixture()
def analytics(repo, ledger, redis_mock):
    return AnalyticsService(repo, ledger, redis=redis_mock, clock=lambda: NOW)


def _at(year, month, day=1):
    return datetime(year, month, day, tzinfo=timezone.utc)


@pytest.mark.anyio
async def test_breakdowns_and_growth(repo, ledger, analytics):
    await repo.save(make_item(type=ContentType.VIDEO, size=100 * MIB, content_hash="1" * 64, uploaded_at=_at(2026, 5, 3)))
    await repo.save(make_item(type=ContentType.IMAGE, size=50 * MIB, content_hash="2" * 64, uploaded_at=_at(2026, 6, 1)))
    await repo.save(make_item(type=ContentType.AUDIO, size=100 * MIB, content_hash="3" * 64, uploaded_at=_at(2026, 6, 2),
                              storage_class=StorageClass.COOL))
    await ledger.charge("artist-a", 250 * MIB)

    result = await analytics.storage_analytics("artist-a")

    s = result.summary
    assert (s.total_files, s.total_size, s.used_quota) == (3, 250 * MIB, 250 * MIB)
    assert s.quota_percentage == pytest.approx(2.44, abs=0.01)

    by_type = result.breakdown.by_type
    assert by_type["video"].percentage == 40.0
    assert by_type["image"].percentage == 20.0
    assert {k: v.count for k, v in result.breakdown.by_month.items()} == {"2026-05": 1, "2026-06": 2}
    assert result.monthly_growth == 50.0

    classes = result.breakdown.by_storage_class
    assert classes["hot"].size == 150 * MIB
    assert classes["cool"].monthly_cost == pytest.approx(100 / 1024 * 0.01 * 30, abs=1e-4)
    assert result.optimization.recommendations == []


@pytest.mark.anyio
async def test_old_content_archive_recommendation(repo, analytics):
    old = make_item(size=GIB, content_hash="4" * 64, uploaded_at=_at(2025, 11, 1))
    await repo.save(old)
    await repo.save(make_item(size=GIB, content_hash="5" * 64, uploaded_at=_at(2026, 6, 1)))
    await repo.save(make_item(size=GIB, content_hash="6" * 64, uploaded_at=_at(2025, 1, 1),
                              storage_class=StorageClass.ARCHIVE))

    result = await analytics.storage_analytics("artist-a")
    [rec] = result.optimization.recommendations
    assert rec.type == "archive_old_content"
    assert rec.items == [old.id]
    assert result.optimization.potential_savings == pytest.approx((0.023 - 0.00099) * 30, abs=0.01)


@pytest.mark.anyio
async def test_duplicates_are_reported(repo, analytics):
    original = make_item(size=10 * MIB)
    await repo.save(original)
    dup = make_item(size=10 * MIB, is_duplicate=True, original_content_id=original.id)
    await repo.save(dup)

    result = await analytics.storage_analytics("artist-a")
    assert [r.type for r in result.optimization.recommendations] == ["remove_duplicates"]
    assert result.optimization.recommendations[0].items == [dup.id]


@pytest.mark.anyio
async def test_results_are_cached_until_invalidated(repo, analytics, redis_mock):
    await repo.save(make_item(size=1))
    first = await analytics.storage_analytics("artist-a")
    assert first.summary.total_files == 1
    assert await redis_mock.client.ttl("storage:analytics:artist-a") == 300

    await repo.save(make_item(size=1, content_hash="7" * 64))
    assert (await analytics.storage_analytics("artist-a")).summary.total_files == 1

    await analytics.invalidate("artist-a")
    assert (await analytics.storage_analytics("artist-a")).summary.total_files == 2


@pytest.mark.anyio
async def test_cache_outage_is_tolerated(repo, analytics, redis_mock):
    await repo.save(make_item(size=1))
    redis_mock.client.fail_with = RedisConnectionError("down")
    result = await analytics.storage_analytics("artist-a")
    assert result.summary.total_files == 1
    await analytics.invalidate("artist-a")


@pytest.mark.anyio
async def test_library_overview(repo, analytics):
    original = make_item(uploaded_at=_at(2025, 3, 1))
    await repo.save(original)
    await repo.save(make_item(type=ContentType.VIDEO, content_hash="8" * 64, uploaded_at=_at(2026, 1, 1)))
    for n in range(6):
        await repo.save(make_item(is_duplicate=True, original_content_id=original.id, uploaded_at=_at(2026, 2, n + 1)))

    overview = await analytics.library_overview("artist-a")
    assert overview.total_files == 8
    assert overview.by_type == {"image": 7, "video": 1}
    assert overview.by_year == {"2025": 1, "2026": 7}
    assert len(overview.duplicates) == 6
    assert overview.recommendations[0].type == "cleanup"
