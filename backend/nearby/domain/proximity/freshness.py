"""Coarse freshness tiers for location records."""

from __future__ import annotations

import time
from typing import Optional

from nearby.domain.proximity.models import FreshnessTier
from nearby.settings import settings


def now_ms() -> int:
	return int(time.time() * 1000)


def classify(
	last_updated_at: Optional[int],
	now: int,
	*,
	solid_seconds: Optional[int] = None,
	faded_seconds: Optional[int] = None,
) -> FreshnessTier:
	"""Return the tier for a record last updated at `last_updated_at` (epoch ms).

	A missing timestamp counts as updated just now, so a record without history
	stays visible.
	"""

	solid_ms = (settings.freshness_solid_seconds if solid_seconds is None else solid_seconds) * 1000
	faded_ms = (settings.freshness_faded_seconds if faded_seconds is None else faded_seconds) * 1000
	if last_updated_at is None:
		return FreshnessTier.SOLID
	age_ms = now - last_updated_at
	if age_ms <= solid_ms:
		return FreshnessTier.SOLID
	if age_ms <= faded_ms:
		return FreshnessTier.FADED
	return FreshnessTier.HIDDEN
