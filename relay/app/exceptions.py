"""Custom exceptions for the relay application."""


class RelayException(Exception):
    """Base class for relay exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code so the error classifier can map them
    like any other status-bearing failure.
    """
    status_code: int = 500

    def __init__(self, message: str = "Relay error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(RelayException):
    """Raised when a tenant's local request window is exhausted.

    Produced by admission control before any request leaves the process.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        tenant_id: str | None = None,
        retry_after: int | None = None,
        detail: str | None = None,
    ):
        self.tenant_id = tenant_id
        self.retry_after = retry_after
        super().__init__(detail or "Rate limit exceeded - too many requests")


class RetryCancelledError(RelayException):
    """Raised when a cancellation token aborts an in-flight retry loop.

    Maps to HTTP 499 Client Closed Request.
    """
    status_code = 499

    def __init__(self, attempt: int = 0, detail: str | None = None):
        self.attempt = attempt
        super().__init__(detail or f"Retry loop cancelled before attempt {attempt}")
