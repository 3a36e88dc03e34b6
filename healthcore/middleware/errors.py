"""API error handling: domain exceptions → JSON error envelope.

Every error response has the shape ``{"error": {"code": "...", "message": "..."}}``.

Status code mapping:
- ``InvalidQueryError``, ``ConversionError`` → 400 Bad Request
- ``UnknownMetricError`` → 404 Not Found
- ``CanonicalizationConflict`` → 500 with code ``CANONICALIZATION_CONFLICT``
- ``StoreUnavailable`` → 503 Service Unavailable
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from healthcore.errors import (
    CanonicalizationConflict,
    ConversionError,
    InvalidQueryError,
    StoreUnavailable,
    UnknownMetricError,
)
from healthcore.models.base import ErrorDetail, ErrorResponse

logger = logging.getLogger("healthcore.api.errors")


def _envelope(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_invalid_query(request: Request, exc: InvalidQueryError) -> JSONResponse:
    logger.info("Invalid query on %s: %s", request.url.path, exc)
    return _envelope(400, "INVALID_QUERY", str(exc))


async def _handle_conversion_error(request: Request, exc: ConversionError) -> JSONResponse:
    logger.info("Unit conversion failed on %s: %s", request.url.path, exc)
    return _envelope(400, "CONVERSION_ERROR", str(exc))


async def _handle_unknown_metric(request: Request, exc: UnknownMetricError) -> JSONResponse:
    logger.info("Unknown metric type: %s", exc.metric_type)
    return _envelope(404, "UNKNOWN_METRIC", str(exc))


async def _handle_conflict(request: Request, exc: CanonicalizationConflict) -> JSONResponse:
    logger.error("Registry integrity failure on %s: %s", request.url.path, exc)
    return _envelope(500, "CANONICALIZATION_CONFLICT", str(exc))


async def _handle_store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.warning("Store unavailable on %s: %s", request.url.path, exc)
    return _envelope(503, "STORE_UNAVAILABLE", "Health data store is unavailable; retry later")


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """Turn any unhandled exception into a 500 with the standard envelope."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return _envelope(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application.

    Call this from ``create_app()`` after constructing the ``FastAPI`` instance.
    """
    app.add_exception_handler(InvalidQueryError, _handle_invalid_query)  # type: ignore[arg-type]
    app.add_exception_handler(ConversionError, _handle_conversion_error)  # type: ignore[arg-type]
    app.add_exception_handler(UnknownMetricError, _handle_unknown_metric)  # type: ignore[arg-type]
    app.add_exception_handler(CanonicalizationConflict, _handle_conflict)  # type: ignore[arg-type]
    app.add_exception_handler(StoreUnavailable, _handle_store_unavailable)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
