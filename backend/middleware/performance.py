"""
Request Timing Middleware for SprintSense
Correlation IDs and per-request timing for the HTTP surface. WebSocket
connections pass straight through; live runs are tagged with their run ID.
"""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from logging_config import set_correlation_id, set_run_id

logger = logging.getLogger(__name__)

# Client-supplied IDs end up in every log line, so only short plain tokens are honored
_CORRELATION_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Polled by probes and scrapers; not worth a log line per hit
QUIET_PATHS = ("/health", "/metrics")


def resolve_correlation_id(header: str) -> str:
    if header and _CORRELATION_ID.match(header):
        return header
    return uuid.uuid4().hex[:8]


class PerformanceMiddleware(BaseHTTPMiddleware):
    """
    Adds X-Correlation-ID and X-Process-Time-Ms to every response and logs
    each request, at WARNING when it exceeds ``slow_request_ms``.
    """

    def __init__(self, app, slow_request_ms: float = 5000.0):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = resolve_correlation_id(request.headers.get("X-Correlation-ID", ""))
        set_correlation_id(correlation_id)
        set_run_id(None)
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"

        path = request.url.path
        if not path.startswith(QUIET_PATHS):
            slow = elapsed_ms > self.slow_request_ms
            logger.log(
                logging.WARNING if slow else logging.INFO,
                f"{request.method} {path} -> {response.status_code} in {elapsed_ms:.1f}ms",
                extra={"status_code": response.status_code, "duration_ms": round(elapsed_ms, 2), "slow": slow},
            )
        return response
