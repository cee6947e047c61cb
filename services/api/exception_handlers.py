"""FastAPI exception handlers for custom exceptions."""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from takeoff.exceptions import (
    AIPipelineError,
    DocumentDecodeError,
    GeometryError,
    MarkupLockedError,
    MeasurementLinkError,
    NotFoundError,
    SessionBusyError,
    TakeoffError,
    ValidationError,
)


def status_for(exc: TakeoffError) -> int:
    """Map an engine exception to an HTTP status code."""
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (MarkupLockedError, SessionBusyError, MeasurementLinkError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, DocumentDecodeError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, AIPipelineError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, (ValidationError, GeometryError)):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def takeoff_exception_handler(request: Request, exc: TakeoffError) -> JSONResponse:
    """Handle takeoff-specific exceptions."""
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Takeoff exception on {path}: {type} - {message}",
        path=request.url.path,
        type=type(exc).__name__,
        message=exc.message,
        details=exc.details,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
        },
    )
