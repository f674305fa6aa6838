"""Domain models used by the proximity service."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class FreshnessTier(str, Enum):
	SOLID = "solid"
	FADED = "faded"
	# Filter, not a display style: hidden subjects never reach fuzzing or rendering.
	HIDDEN = "hidden"


@dataclass(slots=True)
class LocationRecord:
	"""Stored location state for one user. Coordinates here are true coordinates."""

	user_id: str
	latitude: Optional[float] = None
	longitude: Optional[float] = None
	last_location_updated_at: Optional[int] = None
	published_latitude: Optional[float] = None
	published_longitude: Optional[float] = None
	published_at: Optional[int] = None
	hide_distance: bool = False

	@property
	def raw_point(self) -> Optional[Tuple[float, float]]:
		if self.latitude is None or self.longitude is None:
			return None
		return self.latitude, self.longitude

	@property
	def published_point(self) -> Optional[Tuple[float, float]]:
		if self.published_latitude is None or self.published_longitude is None:
			return None
		return self.published_latitude, self.published_longitude


@dataclass(slots=True, frozen=True)
class PrivacyContext:
	"""Inputs that select one fuzz offset. Built per render and never stored."""

	viewer_id: str
	subject_id: str
	session_salt: str
	zoom_bucket: int
	hide_distance: bool = False

	def key(self) -> str:
		return f"{self.viewer_id}:{self.subject_id}:{self.session_salt}:{self.zoom_bucket}"


@dataclass(slots=True)
class PublishResult:
	published: bool
	published_at: Optional[int] = None
	next_publish_at: Optional[int] = None
	nearby_count: int = 0
	triggered: bool = False


@dataclass(slots=True)
class DetectionResult:
	triggered: bool
	reason: str
	candidate_count: int = 0


@dataclass(slots=True)
class NearbyMarker:
	"""A candidate as a viewer may see it: fuzzed position plus freshness tier."""

	user_id: str
	latitude: float
	longitude: float
	freshness: FreshnessTier


@dataclass(slots=True)
class CrossingHistoryEntry:
	other_user_id: str
	created_at: int


@dataclass(slots=True)
class UnlockStatus:
	count: int = 0
	unlocked: bool = False
	unlock_expires_at: Optional[int] = None
	remaining_ms: int = 0


@dataclass(slots=True)
class CrossedPathEntry:
	"""One pair on a user's crossed-paths list, seen from that user's side."""

	other_user_id: str
	count: int
	last_crossed_at: int
	unlocked: bool = False
	unlock_expires_at: Optional[int] = None
	remaining_ms: int = 0
	progress_to_unlock: float = 0.0


@dataclass(slots=True)
class CrossingSummary:
	nearby_count: int = 0
	counted: list[str] = field(default_factory=list)
	unlocked: list[str] = field(default_factory=list)
