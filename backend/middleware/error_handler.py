"""
Global Error Handlers for SprintSense

Every error leaves the API as ``{"error": CODE, "detail": message, "path": ...}``
plus optional ``details`` (SprintSense errors) or ``validation_errors``
(malformed pose payloads).
"""

import logging
import traceback
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import get_settings
from exceptions import SprintSenseException

logger = logging.getLogger(__name__)


def format_validation_errors(errors) -> list:
    """Flatten pydantic errors, e.g. ``body.frames.3.poses.0.keypoints.5.landmark``"""
    return [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type", "unknown"),
        }
        for error in errors
    ]


def error_response(request: Request, status_code: int, code: str, detail: Any, **extra) -> JSONResponse:
    content: Dict[str, Any] = {"error": code, "detail": detail, **extra, "path": request.url.path}
    return JSONResponse(status_code=status_code, content=content)


def _request_fields(request: Request, **fields) -> Dict[str, Any]:
    return {"path": request.url.path, "method": request.method, **fields}


def setup_error_handlers(app: FastAPI) -> None:
    """Register the exception handlers on ``app``"""
    debug = get_settings().DEBUG

    @app.exception_handler(SprintSenseException)
    async def sprintsense_exception_handler(request: Request, exc: SprintSenseException) -> JSONResponse:
        # 4xx are the caller's problem; only 5xx are ours
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(level, f"{exc.code}: {exc.message}",
                   extra=_request_fields(request, status_code=exc.status_code, details=exc.details))

        body = exc.to_dict()
        return error_response(request, exc.status_code, body.pop("error"), body.pop("detail"), **body)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}", extra=_request_fields(request))
        return error_response(request, exc.status_code, "HTTP_ERROR", exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = format_validation_errors(exc.errors())
        logger.warning(f"Rejected payload on {request.url.path}: {len(errors)} error(s)",
                       extra=_request_fields(request, errors=errors[:5]))
        return error_response(request, 422, "VALIDATION_ERROR", "Request validation failed",
                              validation_errors=errors)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled {type(exc).__name__}: {exc}", exc_info=True,
                     extra=_request_fields(request))

        if not debug:
            return error_response(request, 500, "INTERNAL_SERVER_ERROR", "An unexpected error occurred")
        return error_response(request, 500, "INTERNAL_SERVER_ERROR", str(exc),
                              traceback=traceback.format_exc())
