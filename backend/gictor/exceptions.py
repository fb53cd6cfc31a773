"""Custom exceptions for the generation backend.

Every failure of the generation saga is one of these. Each carries a
machine-readable code (see constants/error_codes.py), an HTTP status and
optional structured details, and renders itself as an ErrorInfo.
"""

from decimal import Decimal
from typing import Any

from gictor.constants.error_codes import get_error_spec
from gictor.schemas.envelope import ErrorInfo, FieldIssue


class GictorError(Exception):
    """Base exception for all application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details or {}
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    @property
    def headers(self) -> dict[str, str] | None:
        return None

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            details=self.details,
        )


# =============================================================================
# Rejections before any side effect
# =============================================================================


class UnauthenticatedError(GictorError):
    code = "UNAUTHENTICATED"
    status_code = 401
    message = "Unauthorized"

    @property
    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class RateLimitedError(GictorError):
    code = "RATE_LIMITED"
    status_code = 429
    message = "Rate limit exceeded"

    def __init__(self, retry_after: int):
        self.retry_after = max(1, retry_after)
        super().__init__(details={"retry_after": self.retry_after})

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after), "X-RateLimit-Remaining": "0"}


class InvalidInputError(GictorError):
    """Request payload failed schema validation."""

    code = "INVALID_INPUT"
    status_code = 400
    message = "Invalid request. Please check your input and try again."

    def __init__(self, issues: list[FieldIssue], message: str | None = None):
        self.issues = issues
        super().__init__(message)

    def to_error_info(self) -> ErrorInfo:
        info = super().to_error_info()
        info.issues = self.issues
        return info


class InsufficientCreditsError(GictorError):
    code = "INSUFFICIENT_CREDITS"
    status_code = 402
    message = "Insufficient credits"

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        super().__init__(details={"required": float(required), "available": float(available)})


class DuplicateRequestError(GictorError):
    code = "DUPLICATE_REQUEST"
    status_code = 409
    message = "Generation request already exists"

    def __init__(self, request_id: str | None = None):
        message = f"Generation request already exists: {request_id}" if request_id else self.message
        super().__init__(message)


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class ResourceNotFoundError(GictorError):
    status_code = 404
    code = "NOT_FOUND"


class GenerationNotFoundError(ResourceNotFoundError):
    code = "GENERATION_NOT_FOUND"
    message = "Generation request not found"

    def __init__(self, request_id: str | None = None):
        message = f"Generation request not found: {request_id}" if request_id else self.message
        super().__init__(message)


class PipelineNotFoundError(ResourceNotFoundError):
    code = "PIPELINE_NOT_FOUND"
    message = "Pipeline not found"

    def __init__(self, pipeline_id: str | None = None):
        message = f"Pipeline not found: {pipeline_id}" if pipeline_id else self.message
        super().__init__(message)


class CreditAccountNotFoundError(ResourceNotFoundError):
    code = "CREDIT_ACCOUNT_NOT_FOUND"
    message = "Credit account not found"

    def __init__(self, user_id: str | None = None):
        message = f"Credit account not found: {user_id}" if user_id else self.message
        super().__init__(message)


# =============================================================================
# Worker Errors (credit already refunded when raised by the dispatcher)
# =============================================================================


class WorkerUnavailableError(GictorError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 502
    message = "Generation service error"

    def __init__(self, message: str | None = None, *, upstream_status: int | None = None):
        self.upstream_status = upstream_status
        details = {"upstream_status": upstream_status} if upstream_status is not None else None
        super().__init__(message, details=details)


class WorkerTimeoutError(GictorError):
    code = "TIMEOUT"
    status_code = 504
    message = "Request timed out"


# =============================================================================
# Callback authentication
# =============================================================================


class UnauthorizedCallbackError(GictorError):
    code = "UNAUTHORIZED"
    status_code = 401
    message = "Unauthorized"


# =============================================================================
# System Errors (500/503)
# =============================================================================


class InternalError(GictorError):
    code = "INTERNAL_ERROR"
    status_code = 500
    message = "Internal server error"


class ServiceConfigurationError(GictorError):
    code = "SERVICE_CONFIGURATION_ERROR"
    status_code = 500
    message = "Service configuration error"


class StorageError(GictorError):
    """Persistent store failure. Retryable; side effects may be partial."""

    code = "STORAGE_ERROR"
    status_code = 503
    message = "Storage error"
