"""Access log middleware."""

from __future__ import annotations

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger()

_QUIET_PATHS = frozenset({"/admin/v1/health/live", "/admin/v1/health/ready"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - start) * 1000)

        response.headers["x-captiongate-latency-ms"] = str(latency_ms)
        if request.url.path in _QUIET_PATHS:
            return response

        log = logger.awarning if response.status_code >= 500 else logger.ainfo
        await log(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            latency_ms=latency_ms,
        )
        return response
