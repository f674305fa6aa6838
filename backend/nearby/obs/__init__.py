"""Logging and metrics wiring for the ASGI app."""

from __future__ import annotations

from fastapi import FastAPI

from nearby.obs import logging as obs_logging
from nearby.obs import middleware
from nearby.settings import settings

_configured = False


def init(app: FastAPI) -> None:
	"""Install JSON logging once per process and instrument `app`."""
	global _configured
	if not settings.obs_enabled:
		return
	if not _configured:
		obs_logging.configure_logging()
		_configured = True
	middleware.install(app)


__all__ = ["init"]
