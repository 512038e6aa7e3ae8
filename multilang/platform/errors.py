"""
Error taxonomy and HTTP error handling for the multilanguage backend.

Every failure a client can see is an AppError subclass rendered as
{"error": {"code", "message", "details"}} with an X-Correlation-ID header.
Stack traces are NEVER returned to clients.

Status codes:
- 400: missing orgid / code / refresh token, invalid job payloads
- 401: session expired, invalid webhook secret
- 402: quota exhausted
- 409: optimistic update retries exhausted
- 500: metafield job failed upstream
- 502: Haravan token endpoint rejected or did not answer
- 503: Redis unreachable
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class AppError(Exception):
    """
    Base error with a stable code, an HTTP status and client-safe details.

    Subclasses set ``code`` and ``status_code`` as class attributes; both
    can still be overridden per instance.
    """

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST


class MissingParameterError(AppError):
    """orgid, code, refresh token or another required input is absent."""

    code = "MISSING_PARAMETER"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, parameter: str, message: Optional[str] = None):
        super().__init__(message or f"Missing {parameter}", details={"parameter": parameter})
        self.parameter = parameter


class SessionExpiredError(AppError):
    """The tenant has no stored credential or no access token."""

    code = "SESSION_EXPIRED"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Session expired, please login again"):
        super().__init__(message)


class InvalidWebhookSecretError(AppError):
    code = "INVALID_WEBHOOK_SECRET"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self):
        super().__init__("Invalid webhook secret")


class QuotaExceededError(AppError):
    code = "QUOTA_EXCEEDED"
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, tenant_id: str, requested: int, remaining: int):
        super().__init__(
            "Quota exceeded, please upgrade your plan",
            details={"requested": requested, "remaining": remaining},
        )
        self.tenant_id = tenant_id
        self.requested = requested
        self.remaining = remaining


class ConcurrentUpdateError(AppError):
    """A WATCH/MULTI update kept losing to concurrent writers."""

    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, key: str):
        super().__init__("Record was modified concurrently, please retry")
        self.key = key


class JobProcessingError(AppError):
    """A queued metafield mutation could not be applied."""

    code = "JOB_PROCESSING_FAILURE"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class UpstreamAuthError(AppError):
    """The Haravan token endpoint or identity token was unusable."""

    code = "UPSTREAM_AUTH_FAILURE"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str = "Upstream authorization failed", details: Optional[dict[str, Any]] = None):
        super().__init__(message, details=details)


class StoreUnavailableError(AppError):
    code = "SERVICE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Credential store temporarily unavailable"):
        super().__init__(message)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """Incoming X-Correlation-ID, else the one set by the middleware, else a new one."""
    return (
        request.headers.get(CORRELATION_HEADER)
        or getattr(request.state, "correlation_id", None)
        or generate_correlation_id()
    )


def _request_context(request: Request, correlation_id: str, **fields) -> dict:
    context = {
        "correlation_id": correlation_id,
        "path": request.url.path,
        "method": request.method,
    }
    context.update(fields)
    return context


def render_app_error(request: Request, error: AppError, correlation_id: str) -> JSONResponse:
    logger.warning(
        "Application error",
        extra=_request_context(
            request, correlation_id, error_code=error.code, status_code=error.status_code
        ),
    )
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers={CORRELATION_HEADER: correlation_id},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Exception handler for AppError raised in routes and dependencies."""
    return render_app_error(request, exc, get_correlation_id(request))


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation ID to every request and converts anything that
    escapes the app into the standard error shape.

    IMPORTANT: unexpected exceptions are logged with their traceback and
    answered with a generic INTERNAL_ERROR body.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
        except AppError as e:
            return render_app_error(request, e, correlation_id)
        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra=_request_context(request, correlation_id, error_type=type(e).__name__),
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={CORRELATION_HEADER: correlation_id},
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
