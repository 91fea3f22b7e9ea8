"""Error types shared by every service.

All business failures are raised as ``ServiceError`` (an ``HTTPException``)
so FastAPI renders them as::

    {"detail": {"code": "CUTOFF_PASSED", "message": "...", ...extra}}

Service-layer functions raise these directly; routers let them propagate.
"""

from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from libs.common.logging import get_logger

logger = get_logger(__name__)


class ServiceError(HTTPException):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        headers: Optional[dict[str, str]] = None,
        **extra: Any,
    ):
        self.code = code
        self.message = message
        self.extra = extra
        super().__init__(
            status_code=status_code,
            detail={"code": code, "message": message, **extra},
            headers=headers,
        )


# ---------------------------------------------------------------------------
# Taxonomy helpers
# ---------------------------------------------------------------------------


class ValidationFailed(ServiceError):
    def __init__(self, message: str, **extra: Any):
        super().__init__(
            "VALIDATION_ERROR",
            message,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            **extra,
        )


class NotFound(ServiceError):
    def __init__(self, code: str, message: str, **extra: Any):
        super().__init__(code, message, status.HTTP_404_NOT_FOUND, **extra)


class Conflict(ServiceError):
    def __init__(self, code: str, message: str, **extra: Any):
        super().__init__(code, message, status.HTTP_409_CONFLICT, **extra)


class TooManyRequests(ServiceError):
    def __init__(self, retry_after: int, **extra: Any):
        super().__init__(
            "TOO_MANY_REQUESTS",
            f"Too many requests. Try again in {retry_after} seconds.",
            status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(retry_after)},
            retry_after=retry_after,
            **extra,
        )


class DependencyUnavailable(ServiceError):
    """An external collaborator did not answer in time. Safe to retry."""

    def __init__(self, code: str, message: str, **extra: Any):
        super().__init__(
            code,
            message,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            retryable=True,
            **extra,
        )


def unauthorized(message: str = "Could not validate credentials") -> ServiceError:
    return ServiceError(
        "UNAUTHORIZED",
        message,
        status.HTTP_401_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(message: str) -> ServiceError:
    return ServiceError("FORBIDDEN", message, status.HTTP_403_FORBIDDEN)


def log_integrity_violation(message: str, **fields: Any) -> None:
    """Log a broken invariant. These are alarmed on, never auto-corrected."""
    logger.critical(
        message, extra={"extra_fields": {"integrity": True, **fields}}
    )


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "errors": jsonable_encoder(exc.errors()),
            }
        },
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
    )


def add_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
