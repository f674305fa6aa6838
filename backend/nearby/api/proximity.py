"""REST API surface for proximity features."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from nearby.domain.proximity import zoom
from nearby.domain.proximity.schemas import (
    CrossedPathItem,
    CrossedPathsCountResponse,
    CrossedPathsResponse,
    CrossingHistoryItem,
    CrossingHistoryResponse,
    LocationPayload,
    NearbyMarkerOut,
    NearbyResponse,
    PrivacyUpdate,
    PublishResponse,
    RecordResponse,
    UnlockStatusResponse,
)
from nearby.domain.proximity.service import LocationNotFound, ProximityService
from nearby.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/proximity", tags=["proximity"])

_service = ProximityService()


def get_service() -> ProximityService:
    return _service


@router.post("/location", response_model=RecordResponse)
async def record_location(
    payload: LocationPayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ProximityService = Depends(get_service),
) -> RecordResponse:
    summary = await service.record(auth_user.id, payload.lat, payload.lng)
    return RecordResponse(ok=True, nearby_count=summary.nearby_count)


@router.post("/publish", response_model=PublishResponse)
async def publish_location(
    payload: LocationPayload,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ProximityService = Depends(get_service),
) -> PublishResponse:
    result = await service.publish(auth_user.id, payload.lat, payload.lng)
    return PublishResponse(
        published=result.published,
        published_at=result.published_at,
        next_publish_at=result.next_publish_at,
        nearby_count=result.nearby_count,
        triggered=result.triggered,
    )


@router.get("/nearby", response_model=NearbyResponse)
async def nearby(
    session_salt: str = Query(..., min_length=1, max_length=128),
    span: Optional[float] = Query(default=None, gt=0.0, le=360.0),
    zoom_bucket: Optional[int] = Query(default=None, ge=zoom.MIN_BUCKET),
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ProximityService = Depends(get_service),
) -> NearbyResponse:
    if zoom_bucket is None and span is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "span_or_zoom_bucket_required")
    if zoom_bucket is not None and zoom_bucket > zoom.max_bucket():
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "zoom_bucket_out_of_range")
    bucket = zoom_bucket if zoom_bucket is not None else zoom.bucket(span)  # type: ignore[arg-type]
    try:
        markers = await service.nearby(auth_user.id, session_salt, zoom_bucket=bucket)
    except LocationNotFound:
        # Client shows its retry path instead of an empty map.
        raise HTTPException(status.HTTP_404_NOT_FOUND, "location_not_found")
    return NearbyResponse(
        items=[
            NearbyMarkerOut(user_id=m.user_id, lat=m.latitude, lng=m.longitude, freshness=m.freshness.value)
            for m in markers
        ],
        zoom_bucket=bucket,
    )


@router.get("/crossed", response_model=CrossedPathsResponse)
async def crossed_paths(
    limit: int = Query(default=50, ge=1, le=100),
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ProximityService = Depends(get_service),
) -> CrossedPathsResponse:
    entries = await service.crossed_paths(auth_user.id, limit=limit)
    return CrossedPathsResponse(
        items=[
            CrossedPathItem(
                other_user_id=e.other_user_id,
                count=e.count,
                last_crossed_at=e.last_crossed_at,
                unlocked=e.unlocked,
                unlock_expires_at=e.unlock_expires_at,
                remaining_ms=e.remaining_ms,
                progress_to_unlock=e.progress_to_unlock,
            )
            for e in entries
        ]
    )


@router.get("/crossed/count", response_model=CrossedPathsCountResponse)
async def crossed_paths_count(
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ProximityService = Depends(get_service),
) -> CrossedPathsCountResponse:
    return CrossedPathsCountResponse(count=await service.crossed_paths_count(auth_user.id))


@router.get("/crossed/history", response_model=CrossingHistoryResponse)
async def crossed_history(
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ProximityService = Depends(get_service),
) -> CrossingHistoryResponse:
    entries = await service.history(auth_user.id)
    return CrossingHistoryResponse(
        items=[CrossingHistoryItem(other_user_id=e.other_user_id, created_at=e.created_at) for e in entries]
    )


@router.get("/crossed/{other_id}/unlock", response_model=UnlockStatusResponse)
async def crossed_unlock(
    other_id: str,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ProximityService = Depends(get_service),
) -> UnlockStatusResponse:
    if other_id == auth_user.id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "self_pair")
    status_ = await service.unlock_status(auth_user.id, other_id)
    return UnlockStatusResponse(
        count=status_.count,
        unlocked=status_.unlocked,
        unlock_expires_at=status_.unlock_expires_at,
        remaining_ms=status_.remaining_ms,
    )


@router.put("/privacy", status_code=status.HTTP_204_NO_CONTENT)
async def update_privacy(
    payload: PrivacyUpdate,
    auth_user: AuthenticatedUser = Depends(get_current_user),
    service: ProximityService = Depends(get_service),
) -> None:
    await service.set_hide_distance(auth_user.id, payload.hide_distance)
