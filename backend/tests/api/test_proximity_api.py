import pytest

from nearby.domain.proximity.freshness import now_ms
from nearby.domain.proximity.store import RedisLocationStore

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


async def _record(api_client, headers, lat, lng):
	resp = await api_client.post("/proximity/location", json={"lat": lat, "lng": lng}, headers=headers)
	assert resp.status_code == 200, resp.text
	return resp.json()


@pytest.mark.asyncio
async def test_requires_user_header(api_client):
	resp = await api_client.post("/proximity/location", json={"lat": 40.0, "lng": -74.0})
	assert resp.status_code == 401
	body = resp.json()
	assert body["detail"] == "missing_user"
	assert body["request_id"]
	assert resp.headers["X-Request-Id"] == body["request_id"]


@pytest.mark.asyncio
async def test_rejects_out_of_range_coordinates(api_client):
	resp = await api_client.post("/proximity/location", json={"lat": 95.0, "lng": 0.0}, headers=ALICE)
	assert resp.status_code == 422
	assert resp.json()["detail"] == "validation_error"


@pytest.mark.asyncio
async def test_nearby_returns_fuzzed_markers_only(api_client):
	await _record(api_client, ALICE, 40.0, -74.0)
	summary = await _record(api_client, BOB, 40.0005, -74.0005)
	assert summary["nearby_count"] == 1

	resp = await api_client.get(
		"/proximity/nearby", params={"session_salt": "12345", "zoom_bucket": 4}, headers=ALICE
	)
	assert resp.status_code == 200, resp.text
	body = resp.json()
	assert body["zoom_bucket"] == 4
	assert len(body["items"]) == 1
	item = body["items"][0]
	assert set(item) == {"user_id", "lat", "lng", "freshness"}
	assert item["user_id"] == "bob"
	assert item["freshness"] == "solid"
	assert (item["lat"], item["lng"]) != (40.0005, -74.0005)

	again = await api_client.get(
		"/proximity/nearby", params={"session_salt": "12345", "zoom_bucket": 4}, headers=ALICE
	)
	assert again.json()["items"][0] == item


@pytest.mark.asyncio
async def test_nearby_derives_bucket_from_span(api_client):
	await _record(api_client, ALICE, 40.0, -74.0)
	resp = await api_client.get("/proximity/nearby", params={"session_salt": "s", "span": 0.2}, headers=ALICE)
	assert resp.status_code == 200
	assert resp.json() == {"items": [], "zoom_bucket": 1}


@pytest.mark.asyncio
async def test_nearby_parameter_errors(api_client):
	await _record(api_client, ALICE, 40.0, -74.0)
	missing = await api_client.get("/proximity/nearby", params={"session_salt": "s"}, headers=ALICE)
	assert missing.status_code == 400
	assert missing.json()["detail"] == "span_or_zoom_bucket_required"

	too_fine = await api_client.get(
		"/proximity/nearby", params={"session_salt": "s", "zoom_bucket": 9}, headers=ALICE
	)
	assert too_fine.status_code == 400
	assert too_fine.json()["detail"] == "zoom_bucket_out_of_range"


@pytest.mark.asyncio
async def test_nearby_without_location_is_404(api_client):
	resp = await api_client.get("/proximity/nearby", params={"session_salt": "s", "zoom_bucket": 2}, headers=BOB)
	assert resp.status_code == 404
	assert resp.json()["detail"] == "location_not_found"


@pytest.mark.asyncio
async def test_publish_then_window_no_op(api_client):
	await RedisLocationStore().publish_location("bob", 40.001, -74.0, now_ms())

	first = await api_client.post("/proximity/publish", json={"lat": 40.0, "lng": -74.0}, headers=ALICE)
	assert first.status_code == 200
	body = first.json()
	assert body["published"] is True
	assert body["triggered"] is True
	assert body["nearby_count"] == 1
	assert "bob" not in first.text

	second = await api_client.post("/proximity/publish", json={"lat": 40.0, "lng": -74.0}, headers=ALICE)
	assert second.status_code == 200
	again = second.json()
	assert again["published"] is False
	assert again["triggered"] is False
	assert again["published_at"] == body["published_at"]
	assert again["next_publish_at"] == body["next_publish_at"]


@pytest.mark.asyncio
async def test_privacy_flag_update(api_client):
	await _record(api_client, ALICE, 40.0, -74.0)
	resp = await api_client.put("/proximity/privacy", json={"hide_distance": True}, headers=ALICE)
	assert resp.status_code == 204
	record = await RedisLocationStore().get_location("alice")
	assert record.hide_distance is True


@pytest.mark.asyncio
async def test_crossing_history_and_unlock(api_client):
	await _record(api_client, ALICE, 40.0, -74.0)
	await _record(api_client, BOB, 40.001, -74.0)

	history = await api_client.get("/proximity/crossed/history", headers=ALICE)
	assert history.status_code == 200
	assert [item["other_user_id"] for item in history.json()["items"]] == ["bob"]

	unlock = await api_client.get("/proximity/crossed/bob/unlock", headers=ALICE)
	assert unlock.status_code == 200
	assert unlock.json() == {"count": 1, "unlocked": False, "unlock_expires_at": None, "remaining_ms": 0}

	self_pair = await api_client.get("/proximity/crossed/alice/unlock", headers=ALICE)
	assert self_pair.status_code == 400


@pytest.mark.asyncio
async def test_crossed_paths_list_and_count(api_client):
	await _record(api_client, ALICE, 40.0, -74.0)
	await _record(api_client, BOB, 40.001, -74.0)

	listing = await api_client.get("/proximity/crossed", headers=ALICE)
	assert listing.status_code == 200, listing.text
	[item] = listing.json()["items"]
	assert item["other_user_id"] == "bob"
	assert item["count"] == 1
	assert item["unlocked"] is False
	assert item["remaining_ms"] == 0
	assert 0 < item["progress_to_unlock"] < 1

	count = await api_client.get("/proximity/crossed/count", headers=BOB)
	assert count.json() == {"count": 1}

	bad_limit = await api_client.get("/proximity/crossed", params={"limit": 0}, headers=ALICE)
	assert bad_limit.status_code == 422


@pytest.mark.asyncio
async def test_ops_endpoints(api_client):
	live = await api_client.get("/health/live")
	assert live.json() == {"status": "ok"}
	ready = await api_client.get("/health/ready")
	assert ready.status_code == 200
	metrics = await api_client.get("/metrics")
	assert metrics.status_code == 200
	assert metrics.headers["content-type"].startswith("text/plain")
	assert "nearby_http_requests_total" in metrics.text
