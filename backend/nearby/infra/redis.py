"""Shared Redis client.

`redis_client` is a proxy whose target can be replaced at runtime (fakeredis in
tests), so modules that imported it earlier keep working after the swap.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import redis.asyncio as redis

from nearby.settings import settings


def location_key(user_id: str) -> str:
	return f"loc:{user_id}"


class RedisProxy:
	"""Forward everything to the current client, plus a location-aware radius search."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	async def search_radius(
		self,
		geo_key: str,
		*,
		latitude: float,
		longitude: float,
		radius_m: float,
		limit: Optional[int] = None,
	) -> List[Tuple[str, float]]:
		"""Members of `geo_key` within `radius_m`, nearest first, as (member, meters).

		GEO sets can outlive the `loc:` hash of a deleted user; such members are skipped.
		"""
		rows = await self._client.geosearch(
			geo_key,
			longitude=longitude,
			latitude=latitude,
			radius=radius_m,
			unit="m",
			withdist=True,
			sort="ASC",
			count=limit,
		)
		if not rows:
			return []
		hits = [(str(member), float(dist)) for member, dist in rows]
		async with self._client.pipeline(transaction=False) as pipe:
			for member, _dist in hits:
				pipe.exists(location_key(member))
			present = await pipe.execute()
		return [hit for hit, exists in zip(hits, present) if exists]

	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client: RedisProxy = RedisProxy(redis.from_url(settings.redis_url, decode_responses=True))


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
