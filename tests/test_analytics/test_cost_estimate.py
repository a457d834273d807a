# tests/test_analytics/test_cost_estimate.py

import pytest

from app.core.config import GIB, MIB
from app.repositories.content import MemoryContentRepository
from app.repositories.quota import MemoryQuotaRepository
from app.schemas.enums import ContentType
from app.services.analytics import AnalyticsService
from app.services.quota_ledger import QuotaLedger


@pytest.fixture()
def analytics():
    repo = MemoryContentRepository()
    return AnalyticsService(repo, QuotaLedger(MemoryQuotaRepository(), repo))


def test_one_gib_video(analytics):
    est = analytics.estimate_costs(GIB, ContentType.VIDEO, duration_minutes=10)

    assert est.storage == {"hot": pytest.approx(0.69), "cool": pytest.approx(0.3), "archive": pytest.approx(0.0297)}
    assert est.bandwidth_gb == pytest.approx(1000)
    assert est.bandwidth_cost == pytest.approx(85.0)
    assert est.processing_cost == pytest.approx(0.75)
    assert est.cdn_cost == pytest.approx(2.0)
    assert est.monthly == pytest.approx(87.69)
    assert est.one_time == pytest.approx(0.75)
    assert est.annual == pytest.approx(87.69 * 12 + 0.75, abs=0.01)
    assert [r.type for r in est.recommendations] == ["cost_optimization"]


def test_large_video_gets_compression_hint(analytics):
    est = analytics.estimate_costs(2 * GIB, ContentType.VIDEO)
    assert "compression" in [r.type for r in est.recommendations]


def test_small_image(analytics):
    est = analytics.estimate_costs(2 * MIB, ContentType.IMAGE)
    assert est.processing_cost == pytest.approx(0.01)
    assert est.bandwidth_gb == pytest.approx(2 / 1024 * 2000, abs=1e-3)
    assert est.recommendations == []


def test_document_has_no_processing(analytics):
    est = analytics.estimate_costs(MIB, ContentType.DOCUMENT)
    assert est.processing_cost == 0
    assert est.one_time == 0


def test_cdn_cost_follows_regions():
    repo = MemoryContentRepository()
    svc = AnalyticsService(repo, QuotaLedger(MemoryQuotaRepository(), repo), cdn_regions=["us-east"])
    assert svc.estimate_costs(MIB, ContentType.AUDIO).cdn_cost == pytest.approx(0.5)
