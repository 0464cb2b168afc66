"""Per-tenant admission control for the remote API quota.

The remote platform allows a fixed number of requests per account per hour.
RateLimiter mirrors that quota locally with a fixed-window counter so calls
are held back before they would be rejected remotely.

A fixed window admits up to ``2 * limit`` requests clustered around a window
boundary (a full quota at the end of one window, then a full quota at the
start of the next). The remote quota is tracked only approximately.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from relay.app.core.config import settings
from relay.app.core.logging import get_log_context, get_logger

logger = get_logger(__name__)


@dataclass
class TenantWindow:
    """Fixed-window counter for one tenant."""
    tenant_id: str
    request_count: int
    window_reset_at: float
    limit: int


@dataclass
class RateLimitStatus:
    """Read-only snapshot of a tenant's window."""
    tenant_id: str
    request_count: int
    reset_time: float
    limit: int


@dataclass
class RateLimitStatistics:
    """Aggregate view over all tracked tenants."""
    total_tenants: int
    active_tenants: int
    total_requests: int


class RateLimiter:
    """Fixed-window request counter keyed by tenant.

    Windows are created lazily on the first check and live until
    ``reset`` or ``clear_all``. All methods are synchronous so a window's
    read-modify-write can never interleave with another coroutine.

    Usage:
        limiter = RateLimiter(limit=1000, window_seconds=3600)
        if limiter.check_rate_limit("acct-1"):
            limiter.record_request("acct-1")
            ...
    """

    def __init__(
        self,
        limit: int = 1000,
        window_seconds: float = 3600.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the limiter.

        Args:
            limit: Maximum requests per tenant per window
            window_seconds: Window duration in seconds
            clock: Time source returning seconds (default: time.time)
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock or time.time
        self._windows: Dict[str, TenantWindow] = {}

    @classmethod
    def from_settings(cls, clock: Optional[Callable[[], float]] = None) -> "RateLimiter":
        """Build a limiter from the relay settings."""
        return cls(
            limit=settings.rate_limit_requests_per_window,
            window_seconds=settings.rate_limit_window_seconds,
            clock=clock,
        )

    def check_rate_limit(self, tenant_id: str) -> bool:
        """Return True if the tenant may send another request now.

        Creates the tenant's window on first use and starts a fresh window
        once the current one has expired.
        """
        now = self._clock()
        window = self._windows.get(tenant_id)
        if window is None or now >= window.window_reset_at:
            window = TenantWindow(
                tenant_id=tenant_id,
                request_count=0,
                window_reset_at=now + self.window_seconds,
                limit=self.limit,
            )
            self._windows[tenant_id] = window

        allowed = window.request_count < window.limit
        if not allowed:
            logger.debug(
                f"Rate limit reached for tenant {tenant_id}: "
                f"{window.request_count}/{window.limit}",
                extra=get_log_context(tenant_id=tenant_id),
            )
        return allowed

    def record_request(self, tenant_id: str) -> None:
        """Count one dispatched request against the tenant's window."""
        window = self._windows.get(tenant_id)
        if window is None:
            window = TenantWindow(
                tenant_id=tenant_id,
                request_count=0,
                window_reset_at=self._clock() + self.window_seconds,
                limit=self.limit,
            )
            self._windows[tenant_id] = window
        window.request_count += 1

    def get_status(self, tenant_id: str) -> RateLimitStatus:
        """Snapshot of the tenant's window without modifying it."""
        window = self._windows.get(tenant_id)
        if window is None:
            return RateLimitStatus(
                tenant_id=tenant_id,
                request_count=0,
                reset_time=self._clock() + self.window_seconds,
                limit=self.limit,
            )
        return RateLimitStatus(
            tenant_id=tenant_id,
            request_count=window.request_count,
            reset_time=window.window_reset_at,
            limit=window.limit,
        )

    def seconds_until_reset(self, tenant_id: str) -> int:
        """Whole seconds until the tenant's window resets (never negative)."""
        window = self._windows.get(tenant_id)
        if window is None:
            return 0
        return math.ceil(max(0.0, window.window_reset_at - self._clock()))

    def reset(self, tenant_id: str) -> None:
        """Drop the stored window for one tenant."""
        self._windows.pop(tenant_id, None)

    def clear_all(self) -> None:
        """Drop every stored window."""
        self._windows.clear()

    def get_statistics(self) -> RateLimitStatistics:
        """Summarize all tracked tenants."""
        now = self._clock()
        windows = list(self._windows.values())
        return RateLimitStatistics(
            total_tenants=len(windows),
            active_tenants=sum(1 for w in windows if w.window_reset_at > now),
            total_requests=sum(w.request_count for w in windows),
        )
