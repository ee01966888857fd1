"""Exception handlers: translate application errors into the error envelope.

Every non-2xx response has the shape ``{"error": true, "message": ..., "statusCode": ...}``.
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinician_assistant.domain.exceptions import (
    AssistantError,
    ConversationNotFoundError,
    EmptyMessageError,
    StoreLookupError,
)

_STATUS_BY_ERROR: tuple[tuple[type[AssistantError], int], ...] = (
    (ConversationNotFoundError, status.HTTP_404_NOT_FOUND),
    (EmptyMessageError, 422),
    (StoreLookupError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": True, "message": message, "statusCode": status_code, **extra},
    )


async def assistant_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map domain errors to their status code; anything unmapped is a 500."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if status_code >= 500:
        logger.error("{} {} failed | {}", request.method, request.url.path, exc)
        message = (
            "The patient records are unavailable right now."
            if isinstance(exc, StoreLookupError)
            else "Internal server error"
        )
    else:
        logger.info("{} {} rejected | {}", request.method, request.url.path, exc)
        message = str(exc)
    return error_response(status_code, message)


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    response = error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Request validation errors, with one entry per offending field."""
    assert isinstance(exc, RequestValidationError)
    details = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("Validation error on {} | {}", request.url.path, details)
    return error_response(
        422, "Validation error", details=details
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(
        "Unhandled exception on {} {}", request.method, request.url.path
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AssistantError, assistant_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
