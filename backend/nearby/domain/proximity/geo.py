"""Great-circle primitives on a spherical Earth."""

from __future__ import annotations

import math
from typing import Tuple

EARTH_RADIUS_M = 6_371_000


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
	"""Return the great-circle distance between two points in meters."""

	phi1, phi2 = math.radians(lat1), math.radians(lat2)
	dphi = math.radians(lat2 - lat1)
	dlambda = math.radians(lon2 - lon1)
	a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
	return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def offset(lat: float, lng: float, distance_m: float, bearing_rad: float) -> Tuple[float, float]:
	"""Move a point `distance_m` meters along `bearing_rad` (clockwise from north).

	Direct geodesic on the sphere; `distance_meters(p, offset(p, d, b))` recovers `d`.
	"""

	phi1 = math.radians(lat)
	lambda1 = math.radians(lng)
	delta = distance_m / EARTH_RADIUS_M

	phi2 = math.asin(
		math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(bearing_rad)
	)
	lambda2 = lambda1 + math.atan2(
		math.sin(bearing_rad) * math.sin(delta) * math.cos(phi1),
		math.cos(delta) - math.sin(phi1) * math.sin(phi2),
	)
	# Keep longitude in [-180, 180) when the offset crosses the antimeridian.
	lng2 = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
	return math.degrees(phi2), lng2
