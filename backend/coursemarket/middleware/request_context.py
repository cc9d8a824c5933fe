from __future__ import annotations

import logging
import time
import uuid

import sentry_sdk
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..logging_context import pop_request_context, push_request_context

logger = logging.getLogger("coursemarket.access")

REQUEST_ID_HEADER = "X-Request-ID"
_QUIET_PATHS = frozenset({"/healthz", "/readyz", "/metrics"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and emit one access log line when it ends."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        path = request.url.path
        token = push_request_context(request_id, method=request.method, path=path)
        request.state.request_id = request_id
        sentry_sdk.set_tag("request_id", request_id)
        started = time.perf_counter()
        status_code = 500
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
        finally:
            if path not in _QUIET_PATHS:
                logger.info(
                    "%s %s -> %s",
                    request.method,
                    path,
                    status_code,
                    extra={"duration_ms": round((time.perf_counter() - started) * 1000, 1)},
                )
            pop_request_context(token)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response
