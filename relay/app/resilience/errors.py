"""Error taxonomy for calls against the remote platform API.

Every failure leaving an operation is normalized into a ClassifiedError:
a small enumerated type plus a retry-eligibility flag. Classification is
metadata only; the original failure is kept in ``original_error``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    """Closed set of failure categories."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    API_ERROR = "api_error"
    UNKNOWN = "unknown"


# Transient categories retried by default
DEFAULT_RETRYABLE_TYPES = frozenset(
    {ErrorType.RATE_LIMIT, ErrorType.NETWORK, ErrorType.API_ERROR}
)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ClassifiedError:
    """A failure normalized into the error taxonomy.

    Attributes:
        type: Error category
        code: HTTP status when one was observed, 0 for network failures
        message: Human-readable description
        retryable: Whether the failure is transient
        retry_after_seconds: Server-provided wait hint for rate limits
        timestamp: ISO-8601 time of classification
        details: Extra context (error code, response body, ...)
        original_error: The raw failure that was classified
    """

    type: ErrorType
    code: int
    message: str
    retryable: bool
    retry_after_seconds: Optional[float] = None
    timestamp: str = field(default_factory=_utc_timestamp)
    details: Dict[str, Any] = field(default_factory=dict)
    original_error: Any = field(default=None, repr=False, compare=False)


_GUIDANCE = {
    ErrorType.AUTHENTICATION: (
        "Verify your API credentials are correct and have not expired. "
        "Re-authenticate if necessary."
    ),
    ErrorType.RATE_LIMIT: (
        "Reduce the frequency of API requests or add delays between operations. "
        "The platform allows 1000 requests per hour per account."
    ),
    ErrorType.NETWORK: (
        "Check your internet connection and firewall settings. "
        "Ensure the API endpoints are reachable."
    ),
    ErrorType.VALIDATION: (
        "Review the input parameters and ensure all required fields are "
        "provided with valid values."
    ),
    ErrorType.NOT_FOUND: (
        "Check that the requested blog or post exists and is accessible "
        "to the authenticated account."
    ),
}


def get_troubleshooting_guidance(error: ClassifiedError) -> str:
    """Return a short remediation hint for a classified error."""
    if error.type == ErrorType.API_ERROR:
        if error.retryable:
            return (
                "This appears to be a temporary server issue. "
                "The operation will be retried automatically."
            )
        return (
            "Check the API documentation for the specific endpoint "
            "requirements and limitations."
        )
    return _GUIDANCE.get(
        error.type,
        "Check the error details and consult the API documentation for more information.",
    )


def format_error_message(error: ClassifiedError) -> str:
    """Format a classified error for display, with troubleshooting guidance."""
    base = f"API Error ({error.type.value}): {error.message}"
    guidance = get_troubleshooting_guidance(error)
    return f"{base}\n\nTroubleshooting: {guidance}" if guidance else base
