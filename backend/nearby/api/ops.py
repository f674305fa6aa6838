"""Operational endpoints: health and Prometheus metrics."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError

from nearby.infra.redis import redis_client
from nearby.settings import settings

router = APIRouter(tags=["ops"])


async def require_metrics_access(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    if settings.obs_metrics_public:
        return
    if not settings.obs_admin_token or x_admin_token != settings.obs_admin_token:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "forbidden")


@router.get("/health/live")
async def health_live() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
async def health_ready() -> Response:
    try:
        await redis_client.ping()
    except (RedisError, OSError):
        return JSONResponse({"status": "degraded", "redis": "down"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return JSONResponse({"status": "ok", "redis": "up"})


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
