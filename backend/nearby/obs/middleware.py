"""HTTP instrumentation: request ids, bound log context, access logs and request metrics."""

from __future__ import annotations

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from nearby.obs import logging as obs_logging
from nearby.obs import metrics

REQUEST_ID_HEADER = "X-Request-Id"

access_log = obs_logging.get_logger("nearby.http")


def route_label(request: Request) -> str:
	"""Templated path (`/proximity/crossed/{other_id}/unlock`) so metric labels stay bounded."""
	route = request.scope.get("route")
	return getattr(route, "path", None) or request.url.path


class RequestObservabilityMiddleware(BaseHTTPMiddleware):
	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
		request.state.request_id = request_id
		token = obs_logging.bind_context(
			request_id=request_id,
			route=request.url.path,
			user_id=request.headers.get("X-User-Id"),
		)
		started = time.perf_counter()
		try:
			response = await call_next(request)
		except Exception:
			elapsed = time.perf_counter() - started
			metrics.observe_request(route_label(request), request.method, 500, elapsed)
			access_log.exception("request failed", extra={"method": request.method})
			raise
		else:
			elapsed = time.perf_counter() - started
			metrics.observe_request(route_label(request), request.method, response.status_code, elapsed)
			access_log.info(
				"request",
				extra={
					"method": request.method,
					"status": response.status_code,
					"duration_ms": round(elapsed * 1000, 2),
				},
			)
			response.headers.setdefault(REQUEST_ID_HEADER, request_id)
			return response
		finally:
			obs_logging.reset_context(token)


def install(app) -> None:
	app.add_middleware(RequestObservabilityMiddleware)
