# tests/test_api/test_content_routes.py

import pytest

from tests.fixtures.media import png_bytes, video_bytes

API = "/api/v1"
OWNER = {"X-User-Id": "artist-a"}
FAN = {"X-User-Id": "fan-1"}


async def _post_file(client, data, filename="cover.png", mime="image/png", headers=OWNER, **form):
    form.setdefault("title", filename)
    return await client.post(f"{API}/content", headers=headers, data=form, files={"file": (filename, data, mime)})


@pytest.mark.anyio
async def test_upload_then_duplicate(async_client, registry):
    data = png_bytes(400, 300)
    first = await _post_file(async_client, data)
    assert first.status_code == 201, first.text
    body = first.json()
    assert body["outcome"] == "stored"
    assert body["is_duplicate"] is False
    assert body["size_bytes"] == len(data)
    assert body["urls"] == {}

    await registry.runner.drain()
    second = await _post_file(async_client, data, filename="again.png")
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate_detected"
    assert second.json()["processing_status"] == "completed"


@pytest.mark.anyio
async def test_upload_validation_error_is_problem_json(async_client):
    resp = await _post_file(async_client, b"MZ\x90", filename="setup.exe", mime="application/x-msdownload")
    assert resp.status_code == 400
    assert resp.headers["content-type"].startswith("application/problem+json")
    problem = resp.json()
    assert problem["code"] == "validation_error"
    assert problem["status"] == 400
    assert problem["title"] == "ValidationError"
    assert any(".exe" in e for e in problem["details"]["errors"])


@pytest.mark.anyio
async def test_upload_with_unsafe_owner_id_is_400(async_client, registry):
    resp = await _post_file(async_client, png_bytes(40, 40), headers={"X-User-Id": "fan@example.com"})
    assert resp.status_code == 400, resp.text
    problem = resp.json()
    assert problem["code"] == "validation_error"
    assert any("owner id" in e for e in problem["details"]["errors"])
    assert await registry.quota_repo.get("fan@example.com") is None

@pytest.mark.anyio
async def test_upload_over_quota_is_403(async_client, registry):
    await registry.ledger.set_quota("artist-a", 10)
    resp = await _post_file(async_client, png_bytes(100, 100))
    assert resp.status_code == 403
    assert resp.json()["code"] == "quota_exceeded"
    assert resp.json()["details"]["quota_bytes"] == 10


@pytest.mark.anyio
async def test_missing_user_header_is_422(async_client):
    resp = await async_client.post(f"{API}/content", data={"title": "x"},
                                   files={"file": ("a.png", png_bytes(10, 10), "image/png")})
    assert resp.status_code == 422
    assert resp.json()["errors"]


@pytest.mark.anyio
async def test_get_and_list(async_client, registry):
    cid = (await _post_file(async_client, png_bytes(300, 300))).json()["content_id"]
    await registry.runner.drain()

    item = await async_client.get(f"{API}/content/{cid}")
    assert item.status_code == 200
    assert item.json()["processing_status"] == "completed"
    assert [v["label"] for v in item.json()["variants"]] == ["thumb"]

    listing = await async_client.get(f"{API}/artists/artist-a/content", headers=OWNER)
    assert [i["id"] for i in listing.json()] == [cid]

    forbidden = await async_client.get(f"{API}/artists/artist-a/content", headers=FAN)
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "access_denied"


@pytest.mark.anyio
async def test_unknown_content_is_404(async_client):
    resp = await async_client.get(f"{API}/content/00000000-0000-0000-0000-000000000000")
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


@pytest.mark.anyio
async def test_delete_restore_round(async_client, registry):
    cid = (await _post_file(async_client, png_bytes(50, 50))).json()["content_id"]

    assert (await async_client.delete(f"{API}/content/{cid}", headers=FAN)).status_code == 403

    deleted = await async_client.delete(f"{API}/content/{cid}", headers=OWNER)
    assert deleted.status_code == 200
    assert deleted.json()["lifecycle_status"] == "soft_deleted"

    trash = await async_client.get(f"{API}/artists/artist-a/content", params={"include_deleted": "true"}, headers=OWNER)
    assert [i["id"] for i in trash.json()] == [cid]
    assert (await async_client.get(f"{API}/artists/artist-a/content", headers=OWNER)).json() == []

    restored = await async_client.post(f"{API}/content/{cid}/restore", headers=OWNER)
    assert restored.json()["lifecycle_status"] == "active"

    again = await async_client.post(f"{API}/content/{cid}/restore", headers=OWNER)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"


@pytest.mark.anyio
async def test_retry_variant_route(async_client, registry, codec):
    codec.fail_heights.add(480)
    cid = (await _post_file(async_client, video_bytes(), filename="live.mp4", mime="video/mp4")).json()["content_id"]
    await registry.runner.drain()

    still_broken = await async_client.post(f"{API}/content/{cid}/variants/480p/retry", headers=OWNER)
    assert still_broken.status_code == 422
    assert still_broken.json()["code"] == "processing_failed"

    codec.fail_heights.clear()
    fixed = await async_client.post(f"{API}/content/{cid}/variants/480p/retry", headers=OWNER)
    assert fixed.status_code == 200
    assert {v["label"]: v["status"] for v in fixed.json()["variants"]}["480p"] == "completed"


@pytest.mark.anyio
async def test_backup_route(async_client, registry):
    cid = (await _post_file(async_client, png_bytes(50, 50))).json()["content_id"]
    resp = await async_client.post(f"{API}/content/{cid}/backup", headers=OWNER)
    assert resp.status_code == 200
    assert {b["target"] for b in resp.json()["backups"]} == {"secondary_region", "cold_storage"}


@pytest.mark.anyio
async def test_signed_url_and_verify(async_client, registry):
    cid = (await _post_file(async_client, png_bytes(50, 50))).json()["content_id"]

    denied = await async_client.post(f"{API}/content/{cid}/signed-url", headers=FAN)
    assert denied.status_code == 403

    registry.access.grant("fan-1", cid)
    signed = await async_client.post(f"{API}/content/{cid}/signed-url", params={"ttl_seconds": 300}, headers=FAN)
    assert signed.status_code == 200
    token = signed.json()["token"]

    verified = await async_client.get(f"{API}/media/verify", params={"token": token})
    assert verified.status_code == 200
    assert verified.headers["cache-control"] == "no-store"
    assert verified.json()["user_id"] == "fan-1"
    assert verified.json()["url"].startswith("https://cdn.test/primary/")

    bad = await async_client.get(f"{API}/media/verify", params={"token": token[:-2] + "zz"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "invalid_signature"


@pytest.mark.anyio
async def test_ttl_bounds_are_enforced(async_client):
    cid = (await _post_file(async_client, png_bytes(50, 50))).json()["content_id"]
    resp = await async_client.post(f"{API}/content/{cid}/signed-url", params={"ttl_seconds": 5}, headers=OWNER)
    assert resp.status_code == 422


@pytest.mark.anyio
async def test_analytics_routes(async_client, registry):
    await _post_file(async_client, png_bytes(50, 50))
    await registry.runner.drain()

    storage = await async_client.get(f"{API}/artists/artist-a/storage", headers=OWNER)
    assert storage.status_code == 200
    assert storage.json()["summary"]["total_files"] == 1

    overview = await async_client.get(f"{API}/artists/artist-a/overview", headers=OWNER)
    assert overview.json()["by_type"] == {"image": 1}

    assert (await async_client.get(f"{API}/artists/artist-a/storage", headers=FAN)).status_code == 403


@pytest.mark.anyio
async def test_estimate_route(async_client):
    resp = await async_client.post(f"{API}/storage/estimate", json={"size_bytes": 1073741824, "type": "video"})
    assert resp.status_code == 200
    assert resp.json()["processing_cost"] == pytest.approx(0.38, abs=0.01)

    bad = await async_client.post(f"{API}/storage/estimate", json={"size_bytes": -1, "type": "video"})
    assert bad.status_code == 422


@pytest.mark.anyio
async def test_probes(async_client):
    assert (await async_client.get("/healthz")).json() == {"ok": True}
    ready = await async_client.get("/readyz")
    assert ready.json() == {"ready": True, "checks": {"redis": True}}
    root = (await async_client.get("/")).json()
    assert set(root) == {"name", "docs", "version"}


@pytest.mark.anyio
async def test_metrics_exposes_pipeline_counters(async_client):
    await _post_file(async_client, png_bytes(40, 40))
    resp = await async_client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "media_uploads_total" in resp.text
    assert "media_data_quality_events_total" in resp.text
