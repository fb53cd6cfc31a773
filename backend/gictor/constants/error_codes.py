"""Error codes dictionary for the generation API.

Single source of truth for every error code, whether a client may retry it,
and the message shown to help the user recover.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str
    retry_after_seconds: int


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Rejected before any side effect (fix the cause, then retry)
    # ==========================================================================
    "UNAUTHENTICATED": {
        "retryable": False,
        "suggested_fix": "Sign in again and retry the request.",
    },
    "RATE_LIMITED": {
        "retryable": True,
        "suggested_fix": "Too many generation requests. Wait a minute and try again.",
        "retry_after_seconds": 60,
    },
    "INVALID_INPUT": {
        "retryable": False,
        "suggested_fix": "Correct the listed fields and submit again.",
    },
    "INSUFFICIENT_CREDITS": {
        "retryable": False,
        "suggested_fix": "You do not have enough credits for this generation. Purchase more credits to continue.",
    },
    "DUPLICATE_REQUEST": {
        "retryable": False,
        "suggested_fix": "A generation with this id already exists. Use a new file id.",
    },
    "GENERATION_NOT_FOUND": {
        "retryable": False,
    },
    "PIPELINE_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Refresh the project and select an existing pipeline.",
    },
    "CREDIT_ACCOUNT_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Sign in once to open a credit account, then retry.",
    },
    # ==========================================================================
    # Dispatch failed after reservation (already refunded, safe to retry)
    # ==========================================================================
    "SERVICE_UNAVAILABLE": {
        "retryable": True,
        "suggested_fix": "The generation service is unavailable. Your credits were refunded; please try again.",
    },
    "TIMEOUT": {
        "retryable": True,
        "suggested_fix": "The generation service did not respond in time. Your credits were refunded; please try again.",
    },
    # ==========================================================================
    # Infrastructure
    # ==========================================================================
    "STORAGE_ERROR": {
        "retryable": True,
        "suggested_fix": "A temporary storage problem occurred. Please try again shortly.",
    },
    "SERVICE_CONFIGURATION_ERROR": {
        "retryable": False,
    },
    "INTERNAL_ERROR": {
        "retryable": True,
    },
    # ==========================================================================
    # Callback authentication (security event, never retried)
    # ==========================================================================
    "UNAUTHORIZED": {
        "retryable": False,
    },
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "BAD_REQUEST": {
        "retryable": False,
    },
    "NOT_FOUND": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested fix
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    return get_error_spec(code).get("retryable", False)
