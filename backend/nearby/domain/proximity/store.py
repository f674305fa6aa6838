"""Location storage interface and its Redis implementation.

Layout:
- ``loc:{user}`` hash with the true raw and published coordinates
- ``geo:loc:raw`` / ``geo:loc:published`` GEO sets for range queries
- ``blocks:{user}`` set of users hidden from each other (written symmetrically)
- ``crossed:notified`` sorted set: last crossed-paths alert time per user
- ``crossed:pairs`` sorted set keyed ``{user}|{other}``: when ``user`` was last
  alerted about ``other``. Directional, so alerting one side never silences
  the other.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Set

from redis.exceptions import RedisError, WatchError

from nearby.domain.proximity.models import LocationRecord, PublishResult
from nearby.infra.redis import RedisProxy, location_key, redis_client
from nearby.settings import settings

logger = logging.getLogger(__name__)

RAW_GEO_KEY = "geo:loc:raw"
PUBLISHED_GEO_KEY = "geo:loc:published"
NOTIFIED_KEY = "crossed:notified"
PAIRS_KEY = "crossed:pairs"


class StoreUnavailable(Exception):
	"""Raised when the backing store cannot serve a request."""


def pair_key(user_a: str, user_b: str) -> str:
	"""Unordered pair id; both users map to the same key."""
	first, second = sorted((str(user_a), str(user_b)))
	return f"{first}|{second}"


def alerted_pair_key(user_id: str, other_id: str) -> str:
	return f"{user_id}|{other_id}"


class LocationStore(Protocol):
	async def get_location(self, user_id: str) -> Optional[LocationRecord]:
		...

	async def record_location(self, user_id: str, lat: float, lng: float, now: int) -> None:
		...

	async def publish_location(self, user_id: str, lat: float, lng: float, now: int) -> PublishResult:
		...

	async def query_nearby(
		self,
		viewer_id: str,
		center_lat: float,
		center_lng: float,
		radius_m: float,
		*,
		published: bool = False,
	) -> List[LocationRecord]:
		...

	async def blocked_ids(self, user_id: str) -> Set[str]:
		...

	async def last_crossed_notified_at(self, user_id: str) -> Optional[int]:
		...

	async def pair_notified_at(self, user_id: str, other_ids: Sequence[str]) -> Dict[str, int]:
		...

	async def mark_crossed_notified(self, user_id: str, other_ids: Sequence[str], now: int) -> None:
		...

	async def purge_expired_crossed(self, cutoff: int) -> int:
		...

	async def set_hide_distance(self, user_id: str, hide_distance: bool) -> None:
		...


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
	try:
		yield
	except (RedisError, OSError) as exc:
		raise StoreUnavailable(operation) from exc


def _as_float(value: Optional[str]) -> Optional[float]:
	if value in (None, ""):
		return None
	return float(value)


def _as_int(value: Optional[str]) -> Optional[int]:
	if value in (None, ""):
		return None
	return int(float(value))


def _parse_record(user_id: str, raw: Dict[str, str]) -> LocationRecord:
	return LocationRecord(
		user_id=user_id,
		latitude=_as_float(raw.get("lat")),
		longitude=_as_float(raw.get("lon")),
		last_location_updated_at=_as_int(raw.get("updated_at")),
		published_latitude=_as_float(raw.get("pub_lat")),
		published_longitude=_as_float(raw.get("pub_lon")),
		published_at=_as_int(raw.get("published_at")),
		hide_distance=raw.get("hide_distance") == "1",
	)


class RedisLocationStore:
	"""`LocationStore` backed by redis.asyncio."""

	def __init__(self, client: Optional[RedisProxy] = None, *, publish_window_seconds: Optional[int] = None):
		self._redis = client or redis_client
		self._publish_window_seconds = publish_window_seconds

	@property
	def publish_window_ms(self) -> int:
		seconds = self._publish_window_seconds
		if seconds is None:
			seconds = settings.publish_window_seconds
		return seconds * 1000

	async def get_location(self, user_id: str) -> Optional[LocationRecord]:
		with store_errors("get_location"):
			raw = await self._redis.hgetall(location_key(user_id))
		if not raw:
			return None
		return _parse_record(user_id, raw)

	async def record_location(self, user_id: str, lat: float, lng: float, now: int) -> None:
		with store_errors("record_location"):
			async with self._redis.pipeline(transaction=True) as pipe:
				pipe.hset(location_key(user_id), mapping={"lat": lat, "lon": lng, "updated_at": now})
				pipe.geoadd(RAW_GEO_KEY, [lng, lat, user_id])
				await pipe.execute()

	async def publish_location(self, user_id: str, lat: float, lng: float, now: int) -> PublishResult:
		"""Publish unless the previous publish is younger than the window.

		The gate check and the write share one WATCH transaction, so two racing
		publishes cannot both pass it.
		"""
		key = location_key(user_id)
		window_ms = self.publish_window_ms
		with store_errors("publish_location"):
			async with self._redis.pipeline(transaction=True) as pipe:
				while True:
					try:
						await pipe.watch(key)
						previous_at = _as_int(await pipe.hget(key, "published_at"))
						if previous_at is not None and now - previous_at < window_ms:
							await pipe.unwatch()
							return PublishResult(
								published=False,
								published_at=previous_at,
								next_publish_at=previous_at + window_ms,
							)
						pipe.multi()
						pipe.hset(key, mapping={"pub_lat": lat, "pub_lon": lng, "published_at": now})
						pipe.geoadd(PUBLISHED_GEO_KEY, [lng, lat, user_id])
						await pipe.execute()
						return PublishResult(published=True, published_at=now, next_publish_at=now + window_ms)
					except WatchError:
						logger.debug("publish retry after concurrent write uid=%s", user_id)
						continue

	async def query_nearby(
		self,
		viewer_id: str,
		center_lat: float,
		center_lng: float,
		radius_m: float,
		*,
		published: bool = False,
		limit: Optional[int] = None,
	) -> List[LocationRecord]:
		"""Raw, unfuzzed records within `radius_m` of the center, nearest first."""
		with store_errors("query_nearby"):
			hits = await self._redis.search_radius(
				PUBLISHED_GEO_KEY if published else RAW_GEO_KEY,
				latitude=center_lat,
				longitude=center_lng,
				radius_m=radius_m,
				limit=limit,
			)
			member_ids = [member for member, _dist in hits if member != str(viewer_id)]
			if not member_ids:
				return []
			async with self._redis.pipeline(transaction=False) as pipe:
				for member_id in member_ids:
					pipe.hgetall(location_key(member_id))
				rows = await pipe.execute()
		return [_parse_record(member_id, row) for member_id, row in zip(member_ids, rows) if row]

	async def set_hide_distance(self, user_id: str, hide_distance: bool) -> None:
		with store_errors("set_hide_distance"):
			await self._redis.hset(location_key(user_id), "hide_distance", "1" if hide_distance else "0")

	async def block(self, user_id: str, other_id: str) -> None:
		with store_errors("block"):
			async with self._redis.pipeline(transaction=True) as pipe:
				pipe.sadd(f"blocks:{user_id}", other_id)
				pipe.sadd(f"blocks:{other_id}", user_id)
				await pipe.execute()

	async def blocked_ids(self, user_id: str) -> Set[str]:
		with store_errors("blocked_ids"):
			members = await self._redis.smembers(f"blocks:{user_id}")
		return {str(member) for member in members}

	async def last_crossed_notified_at(self, user_id: str) -> Optional[int]:
		with store_errors("last_crossed_notified_at"):
			score = await self._redis.zscore(NOTIFIED_KEY, user_id)
		return int(score) if score is not None else None

	async def pair_notified_at(self, user_id: str, other_ids: Sequence[str]) -> Dict[str, int]:
		if not other_ids:
			return {}
		with store_errors("pair_notified_at"):
			async with self._redis.pipeline(transaction=False) as pipe:
				for other in other_ids:
					pipe.zscore(PAIRS_KEY, alerted_pair_key(user_id, other))
				scores = await pipe.execute()
		return {other: int(score) for other, score in zip(other_ids, scores) if score is not None}

	async def mark_crossed_notified(self, user_id: str, other_ids: Sequence[str], now: int) -> None:
		"""Record notification times. GT keeps every timestamp monotonic."""
		with store_errors("mark_crossed_notified"):
			async with self._redis.pipeline(transaction=True) as pipe:
				pipe.zadd(NOTIFIED_KEY, {user_id: now}, gt=True)
				if other_ids:
					pipe.zadd(PAIRS_KEY, {alerted_pair_key(user_id, other): now for other in other_ids}, gt=True)
				await pipe.execute()

	async def purge_expired_crossed(self, cutoff: int) -> int:
		"""Drop cooldown timestamps strictly older than `cutoff`; return how many went."""
		with store_errors("purge_expired_crossed"):
			async with self._redis.pipeline(transaction=True) as pipe:
				pipe.zremrangebyscore(NOTIFIED_KEY, "-inf", f"({cutoff}")
				pipe.zremrangebyscore(PAIRS_KEY, "-inf", f"({cutoff}")
				removed_users, removed_pairs = await pipe.execute()
		return int(removed_users) + int(removed_pairs)
