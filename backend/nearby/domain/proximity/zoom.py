"""Quantise a map viewport into a handful of zoom buckets."""

from __future__ import annotations

from typing import Optional, Sequence

from nearby.settings import settings

MIN_BUCKET = 0


def max_bucket(breakpoints: Optional[Sequence[float]] = None) -> int:
	points = settings.zoom_breakpoints if breakpoints is None else breakpoints
	return len(points)


def bucket(viewport_span_degrees: float, breakpoints: Optional[Sequence[float]] = None) -> int:
	"""Return 0 for the widest spans up to `len(breakpoints)` for the tightest.

	With the default breakpoints: >0.30 -> 0, >0.15 -> 1, >0.08 -> 2, >0.04 -> 3, else 4.
	"""
	points = settings.zoom_breakpoints if breakpoints is None else breakpoints
	for index, threshold in enumerate(points):
		if viewport_span_degrees > threshold:
			return index
	return len(points)
