from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from pymongo.errors import PyMongoError


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class InvalidArgumentError(AppError):
    def __init__(self, message: str = "Invalid argument", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_ARGUMENT", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PreconditionFailedError(AppError):
    """A grant's own precondition (already claimed, wrong tier, too early) or gate layer 1."""

    def __init__(self, message: str = "Precondition failed", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="FAILED_PRECONDITION",
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            details=details,
        )


class ResourceExhaustedError(AppError):
    def __init__(self, message: str = "Resource exhausted", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="RESOURCE_EXHAUSTED",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details=details,
        )


class PermissionDeniedError(AppError):
    def __init__(self, message: str = "Permission denied", details: dict[str, Any] | None = None):
        super().__init__(message, code="PERMISSION_DENIED", status_code=status.HTTP_403_FORBIDDEN, details=details)


class InsufficientCreditsError(AppError):
    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, Available: {available}",
            code="INSUFFICIENT_CREDITS",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"required": required, "available": available},
        )


class SystemUnavailableError(AppError):
    """Store unreachable, timed out or too contended; safe for the caller to retry."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(
            message,
            code="SYSTEM_ERROR",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True},
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def store_exception_handler(request: Request, exc: PyMongoError) -> ORJSONResponse:
    from gomi_credits.core.logging import get_logger
    get_logger(__name__).error("store_error", error=str(exc), path=request.url.path)
    return error_response(request, SystemUnavailableError("Credit store unavailable, retry later"))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from gomi_credits.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
