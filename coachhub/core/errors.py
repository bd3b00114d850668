"""
Exception types and FastAPI handlers.

Every error leaves the API as {"error": message, "code": code, "request_id": id}.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coachhub.core.logging import get_request_id

logger = logging.getLogger(__name__)


class CoachHubError(Exception):
    """Base error carrying an HTTP status and a machine-readable code."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class NotFoundError(CoachHubError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class AccessDeniedError(CoachHubError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACCESS_DENIED"


class AuthenticationError(CoachHubError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"


class InvalidRequestError(CoachHubError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_REQUEST"


class LimitExceededError(CoachHubError):
    """A tier limit or token balance blocks the action."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "LIMIT_EXCEEDED"


class ServiceNotConfiguredError(CoachHubError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_NOT_CONFIGURED"


class ExternalServiceError(CoachHubError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "EXTERNAL_SERVICE_ERROR"


def error_body(message: str, code: str, details: Optional[dict] = None) -> dict:
    body = {"error": message, "code": code}
    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id
    if details:
        body["details"] = details
    return body


async def coachhub_error_handler(request: Request, exc: CoachHubError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), f"HTTP_{exc.status_code}"),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", [])), "message": e.get("msg", "")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body("Request validation failed", "VALIDATION_ERROR", {"errors": errors}),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", "INTERNAL_ERROR"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CoachHubError, coachhub_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
