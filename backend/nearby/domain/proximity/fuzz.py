"""Per-viewer coordinate fuzzing.

The displayed point is the true point moved by a radius and bearing derived
from a hash of (viewer, subject, session salt, zoom bucket). The same tuple
always lands on the same point, so markers hold still while a viewer pans;
a new session or a different zoom bucket draws an unrelated offset, so
sampling repeatedly does not average out to the true position.

Fuzzing happens at read time only. The true coordinate is the only value
ever stored.
"""

from __future__ import annotations

from typing import Optional, Tuple

from nearby.domain.proximity import geo, noise
from nearby.domain.proximity.models import PrivacyContext
from nearby.settings import settings

FLOOR_NUDGE_M = 1e-6


def offset_for(ctx: PrivacyContext, bounds: Optional[Tuple[int, int]] = None) -> Tuple[float, int]:
	"""Return (bearing in radians, radius in meters) for a context."""
	min_r, max_r = bounds if bounds is not None else settings.fuzz_bounds(ctx.hide_distance)
	if min_r < 1:
		raise ValueError("fuzz minimum radius must be at least 1 meter")
	seed_value = noise.seed(ctx.key())
	return noise.angle(seed_value), noise.radius_in_range(seed_value, min_r, max_r)


def fuzz(
	true_lat: float,
	true_lng: float,
	ctx: PrivacyContext,
	*,
	bounds: Optional[Tuple[int, int]] = None,
) -> Tuple[float, float]:
	"""Return the displayed (lat, lng) for a subject as seen by `ctx.viewer_id`.

	The result is never closer to the true point than the tier's minimum radius,
	measured with `geo.distance_meters`.
	"""
	if bounds is None:
		bounds = settings.fuzz_bounds(ctx.hide_distance)
	bearing, radius = offset_for(ctx, bounds)
	lat, lng = geo.offset(true_lat, true_lng, radius, bearing)
	# Float error may land a hair inside the floor; push outward until it holds.
	shortfall = bounds[0] - geo.distance_meters(true_lat, true_lng, lat, lng)
	while shortfall > 0:
		radius += shortfall + FLOOR_NUDGE_M
		lat, lng = geo.offset(true_lat, true_lng, radius, bearing)
		shortfall = bounds[0] - geo.distance_meters(true_lat, true_lng, lat, lng)
	return lat, lng
