"""Notification hand-off. Delivery (push, in-app banner) happens downstream."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping, Optional, Protocol

from redis.exceptions import RedisError

from nearby.infra.redis import RedisProxy, redis_client
from nearby.obs import metrics

logger = logging.getLogger(__name__)

NOTIFICATIONS_STREAM = "x:notifications"
NOTIFICATIONS_MAXLEN = 10_000


class Notifier(Protocol):
	async def notify(self, user_id: str, title: str, body: str, payload: Mapping[str, Any]) -> None:
		...


class RedisStreamNotifier:
	"""Append notifications to a Redis stream consumed by the delivery worker.

	Fire-and-forget: failures are logged and counted, never raised.
	"""

	def __init__(self, client: Optional[RedisProxy] = None, *, stream: str = NOTIFICATIONS_STREAM, kind: str = "generic"):
		self._redis = client or redis_client
		self._stream = stream
		self._kind = kind

	async def notify(self, user_id: str, title: str, body: str, payload: Mapping[str, Any]) -> None:
		fields = {
			"user_id": user_id,
			"kind": self._kind,
			"title": title,
			"body": body,
			"data": json.dumps(dict(payload), separators=(",", ":")),
			"ts": int(time.time() * 1000),
		}
		try:
			await self._redis.xadd(self._stream, fields, maxlen=NOTIFICATIONS_MAXLEN, approximate=True)
		except (RedisError, OSError):
			metrics.inc_notification(self._kind, "failed")
			logger.warning("notification enqueue failed kind=%s user_id=%s", self._kind, user_id, exc_info=True)
			return
		metrics.inc_notification(self._kind, "queued")
