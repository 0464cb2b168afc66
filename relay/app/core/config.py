from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_error_types(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set, frozenset)):
        items = [str(v).strip().lower() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    # Accept "rate_limit,network" as well as "rate_limit network"
    parts = [p.strip().lower() for p in raw.replace(",", " ").split()]
    seen: set[str] = set()
    result: list[str] = []
    for part in parts:
        if part and part not in seen:
            seen.add(part)
            result.append(part)
    return result


class Settings(BaseSettings):
    """Relay settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Retry policy defaults
    retry_max_retries: int = 3
    retry_base_delay_ms: float = 1000.0
    retry_max_delay_ms: float = 30000.0
    retry_backoff_multiplier: float = 2.0
    retry_retryable_types: Annotated[list[str], NoDecode] = [
        "rate_limit",
        "network",
        "api_error",
    ]

    # Remote quota: 1000 requests per hour per tenant
    rate_limit_requests_per_window: int = 1000
    rate_limit_window_seconds: float = 3600.0
    rate_limit_default_delay_ms: float = 60000.0  # used when no Retry-After hint

    # Pacing between batch operations
    batch_inter_op_delay_ms: float = 100.0

    # Remote platform API
    api_base_url: str = "https://api.tumblr.com/v2"

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 30.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 60.0
    httpx_max_connections: int = 10
    httpx_max_keepalive_connections: int = 5

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("retry_retryable_types", mode="before")
    @classmethod
    def decode_retryable_types(cls, v: Any) -> list[str]:
        return _parse_error_types(v)

    @field_validator("retry_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max retries is not negative."""
        if v < 0:
            raise ValueError("retry_max_retries must not be negative")
        return v

    @field_validator(
        "retry_base_delay_ms",
        "retry_max_delay_ms",
        "rate_limit_default_delay_ms",
        "batch_inter_op_delay_ms",
    )
    @classmethod
    def validate_delay_non_negative(cls, v: float) -> float:
        """Validate delays are not negative."""
        if v < 0:
            raise ValueError("Delay values must not be negative")
        return v

    @field_validator("retry_backoff_multiplier")
    @classmethod
    def validate_backoff_multiplier(cls, v: float) -> float:
        """Validate the backoff multiplier never shrinks the delay."""
        if v < 1:
            raise ValueError("retry_backoff_multiplier must be at least 1")
        return v

    @field_validator("rate_limit_requests_per_window")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_window_seconds")
    @classmethod
    def validate_window_positive(cls, v: float) -> float:
        """Validate the rate limit window is positive."""
        if v <= 0:
            raise ValueError("rate_limit_window_seconds must be positive")
        return v

    @field_validator("httpx_connect_timeout", "httpx_read_timeout", "httpx_write_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
