"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from nearby.api import ops, proximity
from nearby.api.errors import install_error_handlers
from nearby.infra.redis import redis_client
from nearby.obs import init as obs_init
from nearby.obs.logging import get_logger
from nearby.settings import settings

logger = get_logger("nearby.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
	logger.info("startup env=%s", settings.environment)
	try:
		yield
	finally:
		await redis_client.aclose()


def create_app() -> FastAPI:
	application = FastAPI(title="Nearby", lifespan=lifespan)
	obs_init(application)
	install_error_handlers(application)
	application.include_router(ops.router)
	application.include_router(proximity.router)
	return application


app = create_app()
