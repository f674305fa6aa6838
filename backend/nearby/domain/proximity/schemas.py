"""Pydantic schemas for proximity endpoints."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class LocationPayload(BaseModel):
	"""Coordinates reported by the client device."""

	lat: float = Field(..., ge=-90.0, le=90.0)
	lng: float = Field(..., ge=-180.0, le=180.0)


class RecordResponse(BaseModel):
	ok: bool = True
	nearby_count: int = 0


class PublishResponse(BaseModel):
	published: bool
	published_at: Optional[int] = None
	next_publish_at: Optional[int] = None
	nearby_count: int = 0
	# Whether a "someone crossed your path" alert fired; never who.
	triggered: bool = False


class NearbyMarkerOut(BaseModel):
	"""A fuzzed marker. True coordinates and true distance are never returned."""

	user_id: str
	lat: float
	lng: float
	freshness: Literal["solid", "faded"]


class NearbyResponse(BaseModel):
	items: list[NearbyMarkerOut]
	zoom_bucket: int


class CrossingHistoryItem(BaseModel):
	other_user_id: str
	created_at: int


class CrossingHistoryResponse(BaseModel):
	items: list[CrossingHistoryItem]


class CrossedPathItem(BaseModel):
	other_user_id: str
	count: int
	last_crossed_at: int
	unlocked: bool = False
	unlock_expires_at: Optional[int] = None
	remaining_ms: int = Field(default=0, ge=0)
	progress_to_unlock: float = Field(default=0.0, ge=0.0, le=1.0)


class CrossedPathsResponse(BaseModel):
	items: list[CrossedPathItem]


class CrossedPathsCountResponse(BaseModel):
	count: int


class UnlockStatusResponse(BaseModel):
	count: int = 0
	unlocked: bool = False
	unlock_expires_at: Optional[int] = None
	remaining_ms: int = Field(default=0, ge=0)


class PrivacyUpdate(BaseModel):
	hide_distance: bool
