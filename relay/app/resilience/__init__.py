"""Resilience layer for calls against the remote platform API.

This package provides:
- Error taxonomy and classification (ErrorType, ClassifiedError, ErrorClassifier)
- Per-tenant fixed-window admission control (RateLimiter)
- Retry with exponential backoff and jitter (RetryPolicy, RetryOrchestrator)
- Sequential batch execution (BatchExecutor)
"""

from relay.app.resilience.batch import BatchExecutor
from relay.app.resilience.classifier import (
    ErrorClassifier,
    FailurePattern,
    detect_failure_pattern,
)
from relay.app.resilience.errors import (
    DEFAULT_RETRYABLE_TYPES,
    ClassifiedError,
    ErrorType,
    format_error_message,
    get_troubleshooting_guidance,
)
from relay.app.resilience.rate_limit import (
    RateLimiter,
    RateLimitStatistics,
    RateLimitStatus,
    TenantWindow,
)
from relay.app.resilience.retry import (
    CancellationToken,
    DispatchStatistics,
    RetryOrchestrator,
    RetryPolicy,
    calculate_backoff_delay,
)

__all__ = [
    # Errors
    "DEFAULT_RETRYABLE_TYPES",
    "ClassifiedError",
    "ErrorType",
    "format_error_message",
    "get_troubleshooting_guidance",
    # Classifier
    "ErrorClassifier",
    "FailurePattern",
    "detect_failure_pattern",
    # Rate limiting
    "RateLimiter",
    "RateLimitStatistics",
    "RateLimitStatus",
    "TenantWindow",
    # Retry
    "CancellationToken",
    "DispatchStatistics",
    "RetryOrchestrator",
    "RetryPolicy",
    "calculate_backoff_delay",
    # Batch
    "BatchExecutor",
]
