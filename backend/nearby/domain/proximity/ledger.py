"""Crossing tally and history behind the "crossed paths" screen.

Every raw location write scans for other users whose raw location is within
``crossing_radius_m`` and counts at most one crossing per pair per
``crossing_cooldown_seconds``. A pair reaching ``crossing_unlock_threshold``
crossings gets a time-limited unlock. Each counted crossing also lands in a
short per-user history.

Keys:
- ``crossings:{a|b}`` hash per unordered pair (count, last crossing, unlock expiry)
- ``crossings:pairs:{user}`` set of counterparts, so listing never scans keys
- ``crossings:history:{user}`` sorted set of recent crossings

All three are refreshed on every counted crossing and expire when idle.

The ledger never notifies anyone; the identity-free alert is the detector's job.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from redis.exceptions import WatchError

from nearby.domain.proximity import freshness, geo
from nearby.domain.proximity.models import (
	CrossedPathEntry,
	CrossingHistoryEntry,
	CrossingSummary,
	FreshnessTier,
	UnlockStatus,
)
from nearby.domain.proximity.store import LocationStore, pair_key, store_errors
from nearby.infra.redis import RedisProxy, redis_client
from nearby.obs import metrics
from nearby.settings import settings

logger = logging.getLogger(__name__)


def _tally_key(user_a: str, user_b: str) -> str:
	return f"crossings:{pair_key(user_a, user_b)}"


def _pairs_index_key(user_id: str) -> str:
	return f"crossings:pairs:{user_id}"


def _history_key(user_id: str) -> str:
	return f"crossings:history:{user_id}"


def _unlock_view(tally: Dict[str, str], now: int) -> UnlockStatus:
	if not tally:
		return UnlockStatus()
	expires_at = int(tally["unlock_expires_at"]) if tally.get("unlock_expires_at") else None
	unlocked = expires_at is not None and expires_at > now
	return UnlockStatus(
		count=int(tally.get("count") or 0),
		unlocked=unlocked,
		unlock_expires_at=expires_at,
		remaining_ms=expires_at - now if unlocked and expires_at is not None else 0,
	)


class CrossingLedger:
	def __init__(self, store: LocationStore, client: Optional[RedisProxy] = None) -> None:
		self.store = store
		self._redis = client or redis_client

	async def record_crossings(self, user_id: str, lat: float, lng: float, now: int) -> CrossingSummary:
		radius = settings.crossing_radius_m
		records = await self.store.query_nearby(user_id, lat, lng, radius)
		blocked = await self.store.blocked_ids(user_id)
		summary = CrossingSummary()
		for record in records:
			if record.user_id == user_id or record.user_id in blocked:
				continue
			point = record.raw_point
			if point is None:
				continue
			if freshness.classify(record.last_location_updated_at, now) is FreshnessTier.HIDDEN:
				continue
			if geo.distance_meters(lat, lng, point[0], point[1]) > radius:
				continue
			summary.nearby_count += 1
			counted, unlocked = await self._count_pair(user_id, record.user_id, now)
			if counted:
				summary.counted.append(record.user_id)
			if unlocked:
				summary.unlocked.append(record.user_id)
		metrics.inc_crossings(len(summary.counted))
		for _ in summary.unlocked:
			metrics.inc_crossing_unlock()
		return summary

	async def _count_pair(self, user_id: str, other_id: str, now: int) -> tuple[bool, bool]:
		key = _tally_key(user_id, other_id)
		cooldown_ms = settings.crossing_cooldown_seconds * 1000
		tally_ttl_ms = settings.crossing_tally_ttl_seconds * 1000
		history_ttl_ms = settings.crossing_history_ttl_seconds * 1000
		with store_errors("count_pair"):
			async with self._redis.pipeline(transaction=True) as pipe:
				while True:
					try:
						await pipe.watch(key)
						tally = await pipe.hgetall(key)
						last = int(tally["last_crossed_at"]) if tally.get("last_crossed_at") else None
						if last is not None and now - last < cooldown_ms:
							await pipe.unwatch()
							return False, False
						count = int(tally.get("count") or 0) + 1
						unlocked = count >= settings.crossing_unlock_threshold and not tally.get("unlock_expires_at")
						fields = {"count": count, "last_crossed_at": now}
						if unlocked:
							fields["unlock_expires_at"] = now + settings.crossing_unlock_seconds * 1000
						pipe.multi()
						pipe.hset(key, mapping=fields)
						pipe.pexpire(key, tally_ttl_ms)
						for owner, other in ((user_id, other_id), (other_id, user_id)):
							pipe.sadd(_pairs_index_key(owner), other)
							pipe.pexpire(_pairs_index_key(owner), tally_ttl_ms)
							history = _history_key(owner)
							pipe.zadd(history, {f"{other}:{now}": now})
							pipe.zremrangebyscore(history, "-inf", f"({now - history_ttl_ms}")
							# Keep only the newest entries.
							pipe.zremrangebyrank(history, 0, -(settings.crossing_history_limit + 1))
							pipe.pexpire(history, history_ttl_ms)
						await pipe.execute()
						break
					except WatchError:
						continue
		if unlocked:
			logger.info("crossing unlock granted count=%s", count)
		return True, unlocked

	async def history(self, user_id: str, now: int) -> List[CrossingHistoryEntry]:
		"""Newest first, bounded by the history limit and expiry."""
		oldest = now - settings.crossing_history_ttl_seconds * 1000
		with store_errors("history"):
			rows = await self._redis.zrevrangebyscore(
				_history_key(user_id),
				"+inf",
				oldest,
				start=0,
				num=settings.crossing_history_limit,
				withscores=True,
			)
		entries: List[CrossingHistoryEntry] = []
		for member, score in rows:
			other_id, _sep, _ts = str(member).rpartition(":")
			entries.append(CrossingHistoryEntry(other_user_id=other_id, created_at=int(score)))
		return entries

	async def unlock_status(self, user_id: str, other_id: str, now: int) -> UnlockStatus:
		with store_errors("unlock_status"):
			tally = await self._redis.hgetall(_tally_key(user_id, other_id))
		return _unlock_view(tally, now)

	async def _tallies(self, user_id: str) -> List[Tuple[str, Dict[str, str]]]:
		"""Live (counterpart, tally) rows for a user; lapsed index entries are dropped."""
		index = _pairs_index_key(user_id)
		with store_errors("crossed_paths"):
			others = sorted(str(member) for member in await self._redis.smembers(index))
			if not others:
				return []
			async with self._redis.pipeline(transaction=False) as pipe:
				for other in others:
					pipe.hgetall(_tally_key(user_id, other))
				rows = await pipe.execute()
			lapsed = [other for other, row in zip(others, rows) if not row]
			if lapsed:
				await self._redis.srem(index, *lapsed)
		return [(other, row) for other, row in zip(others, rows) if row]

	async def crossed_paths(self, user_id: str, now: int, limit: Optional[int] = None) -> List[CrossedPathEntry]:
		"""Every pair this user has crossed, most crossings first, then most recent."""
		limit = settings.crossed_paths_page_limit if limit is None else limit
		threshold = max(settings.crossing_unlock_threshold, 1)
		entries: List[CrossedPathEntry] = []
		for other_id, tally in await self._tallies(user_id):
			status = _unlock_view(tally, now)
			entries.append(
				CrossedPathEntry(
					other_user_id=other_id,
					count=status.count,
					last_crossed_at=int(tally.get("last_crossed_at") or 0),
					unlocked=status.unlocked,
					unlock_expires_at=status.unlock_expires_at,
					remaining_ms=status.remaining_ms,
					progress_to_unlock=min(status.count / threshold, 1.0),
				)
			)
		entries.sort(key=lambda entry: (-entry.count, -entry.last_crossed_at, entry.other_user_id))
		return entries[:limit]

	async def count(self, user_id: str) -> int:
		return len(await self._tallies(user_id))
