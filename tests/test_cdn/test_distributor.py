# tests/test_cdn/test_distributor.py

import httpx
import pytest

from app.core.storage import thumbnail_key, video_variant_key
from app.schemas.enums import AccessLevel, CdnEvent, ContentType, Priority, VariantKind
from app.services.cdn import QUEUE_KEY, CdnConfig, CdnDistributor
from tests.fixtures.items import make_item, make_variant


class FakeCloudFront:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.batches = []

    def create_invalidation(self, DistributionId, InvalidationBatch):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("Throttling")
        self.batches.append((DistributionId, InvalidationBatch["Paths"]["Items"]))
        return {"Invalidation": {"Id": f"I{len(self.batches)}"}}


def _config(**kw) -> CdnConfig:
    kw.setdefault("distribution_id", "E123")
    return CdnConfig(retry_attempts=2, retry_base_delay=0, retry_max_delay=0, **kw)


def _public(**kw):
    return make_item(type=ContentType.VIDEO, access_level=AccessLevel.PUBLIC,
                     key="artists/artist-a/1_abc_live.mp4", **kw)


def test_paths_cover_object_and_variants():
    source = "artists/artist-a/1_abc_live.mp4"
    item = _public(variants=[
        make_variant("720p", 100, kind=VariantKind.VIDEO_RENDITION, key=video_variant_key(source, "720p")),
        make_variant("small", 10, kind=VariantKind.VIDEO_THUMBNAIL, key=thumbnail_key(source, "small")),
    ])
    assert CdnDistributor.paths_for(item) == [
        "/artists/artist-a/1_abc_live.mp4",
        "/artists/artist-a/videos/720p/1_abc_live_720p.mp4",
        "/artists/artist-a/thumbnails/small/1_abc_live_thumb_small.jpg",
    ]


def test_paths_without_variants_are_just_the_object():
    assert CdnDistributor.paths_for(_public()) == ["/artists/artist-a/1_abc_live.mp4"]


@pytest.mark.anyio
async def test_public_item_is_invalidated(redis_mock):
    cf = FakeCloudFront()
    cdn = CdnDistributor(_config(), cloudfront=cf, redis=redis_mock)
    result = await cdn.publish(_public(), CdnEvent.UPDATED)
    assert result.status == "submitted"
    assert result.invalidation_id == "I1"
    assert cf.batches == [("E123", ["/artists/artist-a/1_abc_live.mp4"])]


@pytest.mark.anyio
async def test_private_items_are_skipped(redis_mock):
    cf = FakeCloudFront()
    cdn = CdnDistributor(_config(), cloudfront=cf, redis=redis_mock)
    item = make_item(access_level=AccessLevel.TICKET_HOLDERS)
    assert (await cdn.publish(item, CdnEvent.DELETED)).status == "skipped"
    assert cf.batches == []


@pytest.mark.anyio
async def test_failure_is_queued_not_raised(redis_mock):
    cdn = CdnDistributor(_config(), cloudfront=FakeCloudFront(failures=5), redis=redis_mock)
    result = await cdn.publish(_public(), CdnEvent.DELETED)
    assert result.status == "queued"
    assert redis_mock.client.rpush_calls == [(QUEUE_KEY, tuple(result.paths))]


@pytest.mark.anyio
async def test_no_distribution_queues(redis_mock):
    cdn = CdnDistributor(_config(distribution_id=None), redis=redis_mock)
    assert (await cdn.invalidate(["artists/x.png"])).status == "queued"
    assert await redis_mock.client.lrange(QUEUE_KEY, 0, -1) == ["/artists/x.png"]


@pytest.mark.anyio
async def test_nowhere_to_queue_drops():
    cdn = CdnDistributor(_config(distribution_id=None))
    assert (await cdn.invalidate(["/a"])).status == "dropped"


@pytest.mark.anyio
async def test_drain_submits_queued_paths(redis_mock):
    cf = FakeCloudFront(failures=2)
    cdn = CdnDistributor(_config(), cloudfront=cf, redis=redis_mock)
    await cdn.publish(_public(), CdnEvent.CREATED)
    assert await redis_mock.client.llen(QUEUE_KEY) == 2

    assert await cdn.drain_queue() == 2
    assert await redis_mock.client.llen(QUEUE_KEY) == 0
    assert len(cf.batches) == 1
    assert await cdn.drain_queue() == 0


@pytest.mark.anyio
async def test_drain_requeues_on_failure(redis_mock):
    cf = FakeCloudFront(failures=10)
    cdn = CdnDistributor(_config(), cloudfront=cf, redis=redis_mock)
    await redis_mock.queue_push(QUEUE_KEY, "/a", "/b")
    assert await cdn.drain_queue() == 0
    assert await redis_mock.client.lrange(QUEUE_KEY, 0, -1) == ["/a", "/b"]


@pytest.mark.anyio
async def test_high_priority_create_prewarms_edges(redis_mock):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, str(request.url)))
        if "eu" in request.url.host:
            raise httpx.ConnectTimeout("slow", request=request)
        return httpx.Response(200)

    cdn = CdnDistributor(
        _config(edge_endpoints={"us-east": "https://us.edge.test", "eu-west": "https://eu.edge.test/"}),
        cloudfront=FakeCloudFront(),
        redis=redis_mock,
        transport=httpx.MockTransport(handler),
    )
    result = await cdn.publish(_public(priority=Priority.HIGH), CdnEvent.CREATED)
    assert result.prewarmed == {"us-east": 200, "eu-west": 0}
    assert ("HEAD", "https://us.edge.test/artists/artist-a/1_abc_live.mp4") in seen


@pytest.mark.anyio
async def test_updates_do_not_prewarm(redis_mock):
    def handler(request):
        raise AssertionError("no pre-warm expected")

    cdn = CdnDistributor(_config(base_url="https://cdn.test"), cloudfront=FakeCloudFront(),
                         redis=redis_mock, transport=httpx.MockTransport(handler))
    result = await cdn.publish(_public(priority=Priority.HIGH), CdnEvent.UPDATED)
    assert result.prewarmed == {}
