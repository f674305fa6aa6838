"""Detection for the "someone crossed your path" alert.

Runs on the publish path. For the publishing user it decides whether to raise
one identity-free notification, given:

1. a scan of other users' *published* locations within ``crossed_radius_m``,
2. a per-user cooldown (one alert per ``crossed_cooldown_seconds``),
3. a per-(user, counterpart) dedupe: a counterpart this user was already
   alerted about within ``crossed_pair_dedupe_seconds`` cannot fire again.
   Only the user being alerted is stamped, and only for the one counterpart
   that fired the alert.

The cooldown timestamps in the store are the only record of whether an alert
happened, so re-running with unchanged state cannot double-fire. Any store
failure or timeout during the read phase yields ``triggered=False`` without
touching that state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Union

from nearby.domain.proximity import freshness, geo
from nearby.domain.proximity.models import DetectionResult, FreshnessTier
from nearby.domain.proximity.notify import Notifier
from nearby.domain.proximity.store import LocationStore, StoreUnavailable
from nearby.obs import metrics
from nearby.settings import settings

logger = logging.getLogger(__name__)

REASON_TRIGGERED = "triggered"
REASON_COOLDOWN = "cooldown"
REASON_NO_CANDIDATES = "no_candidates"
REASON_DEDUPED = "deduped"
REASON_SCAN_FAILED = "scan_failed"
REASON_COMMIT_FAILED = "commit_failed"


class CrossedPathsDetector:
	def __init__(
		self,
		store: LocationStore,
		notifier: Notifier,
		*,
		radius_m: Optional[int] = None,
		cooldown_seconds: Optional[int] = None,
		pair_dedupe_seconds: Optional[int] = None,
		scan_timeout_seconds: Optional[float] = None,
	) -> None:
		self.store = store
		self.notifier = notifier
		self.radius_m = settings.crossed_radius_m if radius_m is None else radius_m
		self.cooldown_ms = (settings.crossed_cooldown_seconds if cooldown_seconds is None else cooldown_seconds) * 1000
		self.pair_dedupe_ms = (
			settings.crossed_pair_dedupe_seconds if pair_dedupe_seconds is None else pair_dedupe_seconds
		) * 1000
		self.scan_timeout_seconds = (
			settings.crossed_scan_timeout_seconds if scan_timeout_seconds is None else scan_timeout_seconds
		)

	async def detect(self, user_id: str, lat: float, lng: float, now: int) -> DetectionResult:
		try:
			outcome = await asyncio.wait_for(self._scan(user_id, lat, lng, now), self.scan_timeout_seconds)
		except (StoreUnavailable, asyncio.TimeoutError):
			logger.warning("crossed paths scan failed user_id=%s", user_id, exc_info=True)
			return self._decide(DetectionResult(triggered=False, reason=REASON_SCAN_FAILED))
		if isinstance(outcome, DetectionResult):
			return self._decide(outcome)

		survivors = outcome
		# One alert, one stamped counterpart; the rest stay eligible.
		picked = survivors[0]
		try:
			await self.store.mark_crossed_notified(user_id, [picked], now)
		except StoreUnavailable:
			logger.warning("crossed paths cooldown write failed user_id=%s", user_id, exc_info=True)
			return self._decide(DetectionResult(triggered=False, reason=REASON_COMMIT_FAILED))

		# The payload stays empty: the alert must not reveal which counterpart fired it.
		try:
			await self.notifier.notify(
				user_id,
				settings.crossed_notification_title,
				settings.crossed_notification_body,
				{},
			)
		except Exception:
			logger.exception("crossed paths notification hand-off failed user_id=%s", user_id)
		logger.info("crossed paths triggered user_id=%s counterparts=%s", user_id, len(survivors))
		return self._decide(DetectionResult(triggered=True, reason=REASON_TRIGGERED, candidate_count=len(survivors)))

	async def _scan(self, user_id: str, lat: float, lng: float, now: int) -> Union[DetectionResult, List[str]]:
		candidates = await self.eligible_counterparts(user_id, lat, lng, now)
		if not candidates:
			return DetectionResult(triggered=False, reason=REASON_NO_CANDIDATES)

		last_notified = await self.store.last_crossed_notified_at(user_id)
		if last_notified is not None and now - last_notified < self.cooldown_ms:
			return DetectionResult(triggered=False, reason=REASON_COOLDOWN, candidate_count=len(candidates))

		recent_pairs = await self.store.pair_notified_at(user_id, candidates)
		survivors = [
			other
			for other in candidates
			if other not in recent_pairs or now - recent_pairs[other] >= self.pair_dedupe_ms
		]
		if not survivors:
			return DetectionResult(triggered=False, reason=REASON_DEDUPED, candidate_count=len(candidates))
		return survivors

	async def eligible_counterparts(self, user_id: str, lat: float, lng: float, now: int) -> List[str]:
		"""Other users whose published location is fresh, unblocked, and within range."""
		records = await self.store.query_nearby(user_id, lat, lng, self.radius_m, published=True)
		blocked = await self.store.blocked_ids(user_id)
		eligible: List[str] = []
		for record in records:
			if record.user_id == user_id or record.user_id in blocked:
				continue
			point = record.published_point
			if point is None or record.published_at is None:
				continue
			if freshness.classify(record.published_at, now) is FreshnessTier.HIDDEN:
				continue
			if geo.distance_meters(lat, lng, point[0], point[1]) > self.radius_m:
				continue
			eligible.append(record.user_id)
		return eligible

	@staticmethod
	def _decide(result: DetectionResult) -> DetectionResult:
		metrics.inc_crossed_decision(result.reason)
		return result
