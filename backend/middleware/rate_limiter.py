"""
Rate Limiting for SprintSense
slowapi limits keyed by client IP. Analysis endpoints are CPU bound (a
full run re-integrates every frame), so they carry tighter limits than the
global default.
"""

import logging

from fastapi import FastAPI, Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from config.settings import get_settings

logger = logging.getLogger(__name__)


def client_key(request: Request) -> str:
    """Client IP, taking the first hop of X-Forwarded-For behind a proxy"""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    return first_hop or get_remote_address(request)


def create_limiter(settings=None) -> Limiter:
    settings = settings or get_settings()
    return Limiter(
        key_func=client_key,
        default_limits=[settings.RATE_LIMIT_GLOBAL],
        enabled=settings.RATE_LIMIT_ENABLED,
        storage_uri=settings.RATE_LIMIT_STORAGE,
        strategy="fixed-window",
    )


limiter = create_limiter()


def retry_after_seconds(exc: RateLimitExceeded) -> int:
    """Length of the exceeded window (a "30/hour" limit gives 3600)"""
    return int(exc.limit.limit.get_expiry())


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = retry_after_seconds(exc)
    logger.warning(
        f"Rate limit {exc.detail} exceeded by {client_key(request)} on {request.url.path}",
        extra={"retry_after": retry_after},
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "RATE_LIMIT_EXCEEDED",
            "detail": f"Rate limit exceeded: {exc.detail}",
            "details": {"retry_after_seconds": retry_after},
            "path": request.url.path,
        },
        headers={"Retry-After": str(retry_after), "X-RateLimit-Limit": str(exc.detail)},
    )


def setup_rate_limiting(app: FastAPI) -> None:
    # Decorated endpoints look the limiter up on app state even when it is disabled
    app.state.limiter = limiter
    if not limiter.enabled:
        logger.info("Rate limiting disabled")
        return
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    logger.info("Rate limiting enabled")
