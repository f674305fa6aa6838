"""Proximity service: record, publish, crossed-paths detection and nearby lists."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set, Tuple

from nearby.domain.proximity import freshness, fuzz, geo, zoom
from nearby.domain.proximity.crossed_paths import CrossedPathsDetector
from nearby.domain.proximity.ledger import CrossingLedger
from nearby.domain.proximity.models import (
	CrossedPathEntry,
	CrossingHistoryEntry,
	CrossingSummary,
	DetectionResult,
	FreshnessTier,
	LocationRecord,
	NearbyMarker,
	PrivacyContext,
	PublishResult,
	UnlockStatus,
)
from nearby.domain.proximity.notify import Notifier, RedisStreamNotifier
from nearby.domain.proximity.store import LocationStore, RedisLocationStore, StoreUnavailable
from nearby.obs import metrics
from nearby.settings import settings

logger = logging.getLogger(__name__)


class LocationNotFound(LookupError):
	"""The viewer has no stored location to search around."""


def _rank_key(item: Tuple[LocationRecord, FreshnessTier], now: int) -> tuple:
	record, tier = item
	updated = record.last_location_updated_at if record.last_location_updated_at is not None else now
	return (0 if tier is FreshnessTier.SOLID else 1, -updated, record.user_id)


def _skip(reason: str, user_id: str) -> None:
	metrics.inc_nearby_skip(reason)
	logger.debug("nearby candidate skipped reason=%s user_id=%s", reason, user_id)


def build_markers(
	viewer_id: str,
	center: Tuple[float, float],
	records: Iterable[LocationRecord],
	*,
	session_salt: str,
	zoom_bucket: int,
	now: int,
	blocked: Optional[Set[str]] = None,
	display_radius_m: Optional[float] = None,
	limit: Optional[int] = None,
) -> List[NearbyMarker]:
	"""Turn raw candidates into fuzzed markers.

	Order matters: blocked -> hidden tier -> true-distance cutoff -> fuzz -> rank.
	The cutoff uses the true coordinate; fuzzed points are never compared
	against it.
	"""
	blocked = blocked or set()
	cutoff = settings.nearby_display_radius_m if display_radius_m is None else display_radius_m
	center_lat, center_lng = center

	kept: List[Tuple[LocationRecord, NearbyMarker]] = []
	for record in records:
		if record.user_id == viewer_id:
			continue
		if record.user_id in blocked:
			_skip("blocked", record.user_id)
			continue
		point = record.raw_point
		if point is None:
			continue
		tier = freshness.classify(record.last_location_updated_at, now)
		metrics.inc_freshness(tier.value)
		if tier is FreshnessTier.HIDDEN:
			_skip("stale", record.user_id)
			continue
		if geo.distance_meters(center_lat, center_lng, point[0], point[1]) > cutoff:
			_skip("distance", record.user_id)
			continue
		ctx = PrivacyContext(
			viewer_id=viewer_id,
			subject_id=record.user_id,
			session_salt=session_salt,
			zoom_bucket=zoom_bucket,
			hide_distance=record.hide_distance,
		)
		lat, lng = fuzz.fuzz(point[0], point[1], ctx)
		kept.append((record, NearbyMarker(user_id=record.user_id, latitude=lat, longitude=lng, freshness=tier)))

	# Ranking reads the record, never the fuzzed position.
	kept.sort(key=lambda item: _rank_key((item[0], item[1].freshness), now))
	markers = [marker for _record, marker in kept]
	if limit is not None:
		markers = markers[:limit]
	return markers


class ProximityService:
	def __init__(
		self,
		store: Optional[LocationStore] = None,
		notifier: Optional[Notifier] = None,
		*,
		detector: Optional[CrossedPathsDetector] = None,
		ledger: Optional[CrossingLedger] = None,
	) -> None:
		self.store = store or RedisLocationStore()
		self.notifier = notifier or RedisStreamNotifier(kind="crossed_paths")
		self.detector = detector or CrossedPathsDetector(self.store, self.notifier)
		self.ledger = ledger or CrossingLedger(self.store)

	async def record(self, user_id: str, lat: float, lng: float, now: Optional[int] = None) -> CrossingSummary:
		"""Store the raw location (never rate-limited) and update the crossing ledger."""
		now = freshness.now_ms() if now is None else now
		await self.store.record_location(user_id, lat, lng, now)
		metrics.inc_location_record()
		try:
			return await self.ledger.record_crossings(user_id, lat, lng, now)
		except StoreUnavailable:
			logger.warning("crossing ledger update failed user_id=%s", user_id, exc_info=True)
			return CrossingSummary()

	async def publish(self, user_id: str, lat: float, lng: float, now: Optional[int] = None) -> PublishResult:
		"""Publish at most once per window; a fresh publish runs crossed-paths detection.

		Calls inside the window are a silent no-op returning the previous publish time.
		"""
		now = freshness.now_ms() if now is None else now
		result = await self.store.publish_location(user_id, lat, lng, now)
		if not result.published:
			metrics.inc_publish("within_window")
			return result
		metrics.inc_publish("published")
		detection = await self.detect_crossed_users(user_id, lat, lng, now)
		result.nearby_count = detection.candidate_count
		result.triggered = detection.triggered
		return result

	async def detect_crossed_users(
		self, user_id: str, lat: float, lng: float, now: Optional[int] = None
	) -> DetectionResult:
		now = freshness.now_ms() if now is None else now
		return await self.detector.detect(user_id, lat, lng, now)

	async def nearby(
		self,
		viewer_id: str,
		session_salt: str,
		*,
		viewport_span: Optional[float] = None,
		zoom_bucket: Optional[int] = None,
		now: Optional[int] = None,
	) -> List[NearbyMarker]:
		if zoom_bucket is None:
			if viewport_span is None:
				raise ValueError("either viewport_span or zoom_bucket is required")
			zoom_bucket = zoom.bucket(viewport_span)
		now = freshness.now_ms() if now is None else now

		viewer = await self.store.get_location(viewer_id)
		center = (viewer.raw_point or viewer.published_point) if viewer else None
		if center is None:
			raise LocationNotFound(viewer_id)

		records = await self.store.query_nearby(viewer_id, center[0], center[1], settings.nearby_query_radius_m)
		blocked = await self.store.blocked_ids(viewer_id)
		markers = build_markers(
			viewer_id,
			center,
			records,
			session_salt=session_salt,
			zoom_bucket=zoom_bucket,
			now=now,
			blocked=blocked,
			limit=settings.nearby_max_results,
		)
		metrics.observe_nearby(zoom_bucket, len(markers))
		if logger.isEnabledFor(logging.DEBUG):
			logger.debug(
				"nearby viewer=%s bucket=%s candidates=%s shown=%s",
				viewer_id,
				zoom_bucket,
				len(records),
				len(markers),
			)
		return markers

	async def set_hide_distance(self, user_id: str, hide_distance: bool) -> None:
		await self.store.set_hide_distance(user_id, hide_distance)

	async def purge_expired(self, now: Optional[int] = None) -> int:
		"""Drop crossed-paths cooldown timestamps older than the event TTL."""
		now = freshness.now_ms() if now is None else now
		removed = await self.store.purge_expired_crossed(now - settings.crossed_event_ttl_seconds * 1000)
		logger.info("purged crossed paths state removed=%s", removed)
		return removed

	async def history(self, user_id: str, now: Optional[int] = None) -> List[CrossingHistoryEntry]:
		now = freshness.now_ms() if now is None else now
		return await self.ledger.history(user_id, now)

	async def unlock_status(self, user_id: str, other_id: str, now: Optional[int] = None) -> UnlockStatus:
		now = freshness.now_ms() if now is None else now
		return await self.ledger.unlock_status(user_id, other_id, now)

	async def crossed_paths(
		self, user_id: str, now: Optional[int] = None, limit: Optional[int] = None
	) -> List[CrossedPathEntry]:
		now = freshness.now_ms() if now is None else now
		return await self.ledger.crossed_paths(user_id, now, limit)

	async def crossed_paths_count(self, user_id: str) -> int:
		return await self.ledger.count(user_id)
