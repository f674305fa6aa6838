import pytest

from nearby.domain.proximity.ledger import CrossingLedger
from nearby.domain.proximity.store import RedisLocationStore
from nearby.infra.redis import redis_client
from nearby.settings import settings

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
NOW = 1_700_000_000_000

HERE = (40.0, -74.0)
CLOSE = (40.001, -74.0)


async def _cross(store, ledger, user_id, other_id, at):
    await store.record_location(other_id, *CLOSE, at)
    await store.record_location(user_id, *HERE, at)
    return await ledger.record_crossings(user_id, *HERE, at)


@pytest.mark.asyncio
async def test_counts_at_most_one_crossing_per_pair_per_day():
    store = RedisLocationStore()
    ledger = CrossingLedger(store)

    first = await _cross(store, ledger, "a", "b", NOW)
    assert first.nearby_count == 1
    assert first.counted == ["b"]

    repeat = await _cross(store, ledger, "a", "b", NOW + HOUR_MS)
    assert repeat.nearby_count == 1
    assert repeat.counted == []

    # Either side of the pair shares the same gate.
    reverse = await ledger.record_crossings("b", *CLOSE, NOW + 2 * HOUR_MS)
    assert reverse.counted == []

    next_day = await _cross(store, ledger, "a", "b", NOW + DAY_MS)
    assert next_day.counted == ["b"]
    assert (await ledger.unlock_status("a", "b", NOW + DAY_MS)).count == 2


@pytest.mark.asyncio
async def test_unlock_after_threshold_crossings():
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    threshold = settings.crossing_unlock_threshold

    for i in range(threshold - 1):
        summary = await _cross(store, ledger, "a", "b", NOW + i * DAY_MS)
        assert summary.unlocked == []
    unlocked_at = NOW + (threshold - 1) * DAY_MS
    summary = await _cross(store, ledger, "a", "b", unlocked_at)
    assert summary.unlocked == ["b"]

    status = await ledger.unlock_status("b", "a", unlocked_at + HOUR_MS)
    assert status.count == threshold
    assert status.unlocked is True
    assert status.unlock_expires_at == unlocked_at + settings.crossing_unlock_seconds * 1000
    assert status.remaining_ms == settings.crossing_unlock_seconds * 1000 - HOUR_MS

    # The unlock is granted once; further crossings keep counting.
    summary = await _cross(store, ledger, "a", "b", unlocked_at + DAY_MS)
    assert summary.counted == ["b"]
    assert summary.unlocked == []

    expired = await ledger.unlock_status("a", "b", unlocked_at + 3 * DAY_MS)
    assert expired.count == threshold + 1
    assert expired.unlocked is False
    assert expired.remaining_ms == 0


@pytest.mark.asyncio
async def test_unlock_status_for_strangers():
    status = await CrossingLedger(RedisLocationStore()).unlock_status("a", "z", NOW)
    assert status.count == 0
    assert status.unlocked is False
    assert status.unlock_expires_at is None


@pytest.mark.asyncio
async def test_history_is_newest_first_for_both_users():
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    await _cross(store, ledger, "a", "b", NOW)
    await _cross(store, ledger, "a", "c", NOW + HOUR_MS)

    history = await ledger.history("a", NOW + 2 * HOUR_MS)
    assert [(e.other_user_id, e.created_at) for e in history] == [("c", NOW + HOUR_MS), ("b", NOW)]
    assert [e.other_user_id for e in await ledger.history("b", NOW + 2 * HOUR_MS)] == ["a"]


@pytest.mark.asyncio
async def test_history_is_capped(monkeypatch):
    monkeypatch.setattr(settings, "crossing_history_limit", 3)
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    for i in range(5):
        await store.record_location(f"u{i}", 40.0 + 0.0001 * (i + 1), -74.0, NOW)
    await store.record_location("a", *HERE, NOW)
    summary = await ledger.record_crossings("a", *HERE, NOW)
    assert len(summary.counted) == 5

    history = await ledger.history("a", NOW)
    assert len(history) == 3


@pytest.mark.asyncio
async def test_history_expires():
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    await _cross(store, ledger, "a", "b", NOW)
    later = NOW + settings.crossing_history_ttl_seconds * 1000 + 1
    assert await ledger.history("a", later) == []

    # The next counted crossing trims the expired entry from storage.
    await _cross(store, ledger, "a", "c", later)
    assert await redis_client.zrange("crossings:history:a", 0, -1) == [f"c:{later}"]


@pytest.mark.asyncio
async def test_ledger_keys_carry_expiry():
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    await _cross(store, ledger, "a", "b", NOW)

    tally_ttl_ms = settings.crossing_tally_ttl_seconds * 1000
    history_ttl_ms = settings.crossing_history_ttl_seconds * 1000
    for key in ("crossings:a|b", "crossings:pairs:a", "crossings:pairs:b"):
        assert 0 < await redis_client.pttl(key) <= tally_ttl_ms
    for key in ("crossings:history:a", "crossings:history:b"):
        assert 0 < await redis_client.pttl(key) <= history_ttl_ms


@pytest.mark.asyncio
async def test_crossed_paths_sorted_by_count_then_recency():
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    await _cross(store, ledger, "a", "b", NOW)
    await _cross(store, ledger, "a", "b", NOW + DAY_MS)
    await _cross(store, ledger, "a", "c", NOW + DAY_MS + HOUR_MS)
    await _cross(store, ledger, "a", "d", NOW + DAY_MS + 2 * HOUR_MS)

    now = NOW + 2 * DAY_MS
    entries = await ledger.crossed_paths("a", now)
    assert [(e.other_user_id, e.count) for e in entries] == [("b", 2), ("d", 1), ("c", 1)]
    top = entries[0]
    assert top.last_crossed_at == NOW + DAY_MS
    assert top.unlocked is False
    assert top.remaining_ms == 0
    assert top.progress_to_unlock == pytest.approx(2 / settings.crossing_unlock_threshold)

    assert [e.other_user_id for e in await ledger.crossed_paths("a", now, limit=1)] == ["b"]
    assert [e.other_user_id for e in await ledger.crossed_paths("b", now)] == ["a"]
    assert await ledger.count("a") == 3
    assert await ledger.count("b") == 1
    assert await ledger.count("nobody") == 0


@pytest.mark.asyncio
async def test_crossed_paths_reports_unlock(monkeypatch):
    monkeypatch.setattr(settings, "crossing_unlock_threshold", 2)
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    await _cross(store, ledger, "a", "b", NOW)
    await _cross(store, ledger, "a", "b", NOW + DAY_MS)

    [entry] = await ledger.crossed_paths("b", NOW + DAY_MS + HOUR_MS)
    assert entry.unlocked is True
    assert entry.unlock_expires_at == NOW + DAY_MS + settings.crossing_unlock_seconds * 1000
    assert entry.remaining_ms == settings.crossing_unlock_seconds * 1000 - HOUR_MS
    assert entry.progress_to_unlock == 1.0


@pytest.mark.asyncio
async def test_lapsed_tallies_drop_out_of_the_list():
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    await _cross(store, ledger, "a", "b", NOW)
    await _cross(store, ledger, "a", "c", NOW)
    await redis_client.delete("crossings:a|b")

    assert [e.other_user_id for e in await ledger.crossed_paths("a", NOW)] == ["c"]
    assert await ledger.count("a") == 1
    assert await redis_client.smembers("crossings:pairs:a") == {"c"}


@pytest.mark.asyncio
async def test_blocked_and_stale_users_are_not_counted():
    store = RedisLocationStore()
    ledger = CrossingLedger(store)
    await store.block("a", "blocked")
    await store.record_location("blocked", *CLOSE, NOW)
    await store.record_location("stale", 40.0, -74.001, NOW - 7 * DAY_MS)

    summary = await ledger.record_crossings("a", *HERE, NOW)
    assert summary.nearby_count == 0
    assert summary.counted == []
    assert await ledger.history("a", NOW) == []
