from typing import Any

from pydantic import BaseModel, Field


class FieldIssue(BaseModel):
    field: str
    message: str


class ErrorInfo(BaseModel):
    code: str
    message: str
    retryable: bool = False
    suggested_fix: str | None = None  # Human-readable fix suggestion
    issues: list[FieldIssue] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Wire format of every failed request: `{success: false, error, ...}`."""

    success: bool = False
    error: str
    code: str
    retryable: bool = False
    suggested_fix: str | None = None
    issues: list[FieldIssue] | None = None
    request_id: str | None = None

    # Flattened details (e.g. required/available for insufficient credits)
    model_config = {"extra": "allow"}

    @classmethod
    def from_error_info(cls, info: ErrorInfo, request_id: str | None = None) -> "ErrorResponse":
        return cls(
            error=info.message,
            code=info.code,
            retryable=info.retryable,
            suggested_fix=info.suggested_fix,
            issues=info.issues or None,
            request_id=request_id,
            **info.details,
        )
