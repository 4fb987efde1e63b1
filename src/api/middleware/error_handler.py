"""Global exception handling."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.domains.compliance.errors import (
    ComplianceError,
    ConflictError,
    NoRateAvailableError,
)

logger = structlog.get_logger()


def _code(exc: Exception, default: str) -> str:
    return exc.code if isinstance(exc, ComplianceError) else default


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ConflictError):
        logger.warning("conflict", request_id=request_id, error=str(exc), code=exc.code)
        return JSONResponse(
            status_code=409,
            content={"error": exc.code, "message": str(exc), "request_id": request_id},
        )

    if isinstance(exc, NoRateAvailableError):
        logger.error("fx_rate_unavailable", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"error": exc.code, "message": str(exc), "request_id": request_id},
        )

    if isinstance(exc, ValueError):
        logger.warning("bad_request", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=400,
            content={
                "error": _code(exc, "bad_request"),
                "message": str(exc),
                "request_id": request_id,
            },
        )

    if isinstance(exc, PermissionError):
        logger.warning("forbidden", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=403,
            content={
                "error": _code(exc, "forbidden"),
                "message": str(exc),
                "request_id": request_id,
            },
        )

    if isinstance(exc, LookupError):
        logger.warning("not_found", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=404,
            content={
                "error": _code(exc, "not_found"),
                "message": str(exc),
                "request_id": request_id,
            },
        )

    logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "request_id": request_id,
        },
    )
