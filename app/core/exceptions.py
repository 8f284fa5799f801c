import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class DriveError(Exception):
    """Base class for errors that map to a structured API response."""

    kind = "server_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnauthenticatedError(DriveError):
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(DriveError):
    # Also raised for entries owned by someone else
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(DriveError):
    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(DriveError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class StorageFailure(DriveError):
    kind = "storage_failure"
    status_code = status.HTTP_502_BAD_GATEWAY


class ClientDisconnected(DriveError):
    kind = "client_closed_request"
    status_code = 499


def error_body(kind: str, message: str) -> dict:
    return {"error": {"kind": kind, "message": message}}


async def drive_error_handler(request: Request, exc: DriveError):
    headers = None
    if isinstance(exc, UnauthenticatedError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.kind, exc.message),
        headers=headers,
    )


HTTP_ERROR_KINDS = {
    401: UnauthenticatedError.kind,
    404: NotFoundError.kind,
    405: "method_not_allowed",
}


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    kind = HTTP_ERROR_KINDS.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(kind, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=422,
        content=error_body(ValidationError.kind, message),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("server_error", "Internal server error"),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(DriveError, drive_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
