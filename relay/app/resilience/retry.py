"""Retry orchestration with exponential backoff for remote API calls.

RetryOrchestrator drives one zero-argument operation through attempts:
admission control against the tenant's window, dispatch, classification of
any failure, and a backoff wait before the next attempt.
"""

import asyncio
import math
import random
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Optional, TypeVar

from relay.app.core.config import settings
from relay.app.core.logging import get_log_context, get_logger
from relay.app.exceptions import RateLimitExceededError, RetryCancelledError
from relay.app.resilience.classifier import ErrorClassifier
from relay.app.resilience.errors import (
    DEFAULT_RETRYABLE_TYPES,
    ClassifiedError,
    ErrorType,
)
from relay.app.resilience.rate_limit import RateLimiter

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_RATE_LIMIT_DELAY_MS = 60000.0

# Dispatch durations kept for the running average
RESPONSE_TIME_WINDOW = 100


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of retries after the first attempt (default: 3)
        base_delay_ms: Delay before the first retry in milliseconds (default: 1000)
        max_delay_ms: Upper bound for any backoff delay in milliseconds (default: 30000)
        backoff_multiplier: Growth factor per attempt (default: 2.0)
        retryable_types: Error types that trigger a retry

    Example:
        >>> policy = RetryPolicy(max_retries=5, base_delay_ms=500)
        >>> calculate_backoff_delay(3, policy, rng=lambda: 0.0)
        2000.0
    """

    max_retries: int = 3
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 30000.0
    backoff_multiplier: float = 2.0
    retryable_types: FrozenSet[ErrorType] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_TYPES
    )

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must not be negative")
        # Accept any iterable of ErrorType or their string values
        object.__setattr__(
            self,
            "retryable_types",
            frozenset(ErrorType(t) for t in self.retryable_types),
        )

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        """Build the default policy from the relay settings."""
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            backoff_multiplier=settings.retry_backoff_multiplier,
            retryable_types=frozenset(
                ErrorType(t) for t in settings.retry_retryable_types
            ),
        )


def calculate_backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    rng: Callable[[], float] = random.random,
) -> float:
    """Calculate the delay after a failed attempt.

    delay = min(max_delay_ms, base_delay_ms * backoff_multiplier^(attempt-1) + jitter)
    where jitter is drawn uniformly from [0, 0.1 * exponential part] so that
    many tenants failing together do not retry in lockstep.

    Args:
        attempt: The attempt that just failed (1-indexed)
        policy: Retry policy supplying the schedule
        rng: Source of uniform floats in [0, 1)

    Returns:
        Delay in milliseconds
    """
    try:
        exponential = policy.base_delay_ms * (policy.backoff_multiplier ** (attempt - 1))
    except OverflowError:
        exponential = math.inf if policy.base_delay_ms else 0.0
    if exponential >= policy.max_delay_ms:
        return policy.max_delay_ms
    jitter = rng() * 0.1 * exponential
    return min(policy.max_delay_ms, exponential + jitter)


class CancellationToken:
    """Cooperative cancellation for in-flight retry loops.

    The token is checked before every attempt and races every backoff
    wait. Cancelling never interrupts an operation that is already running.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds; return True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass
class DispatchStatistics:
    """Counters over every operation the orchestrator has dispatched."""
    total_requests: int
    failed_requests: int
    average_response_ms: float


def _attach_classification(error: BaseException, classified: ClassifiedError) -> None:
    try:
        error.classification = classified  # type: ignore[attr-defined]
    except AttributeError:
        # Exceptions with __slots__ cannot carry extra attributes
        logger.debug(f"Could not attach classification to {type(error).__name__}")


class RetryOrchestrator:
    """Runs operations with admission control and retry.

    Usage:
        orchestrator = RetryOrchestrator(RateLimiter(), ErrorClassifier())
        result = await orchestrator.execute_with_retry(
            lambda: client.get("/user/info"), tenant_id="acct-1"
        )
    """

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        classifier: Optional[ErrorClassifier] = None,
        sleep: Optional[Sleep] = None,
        default_rate_limit_delay_ms: float = DEFAULT_RATE_LIMIT_DELAY_MS,
        rng: Callable[[], float] = random.random,
        timer: Callable[[], float] = time.perf_counter,
    ):
        """Initialize the orchestrator.

        Args:
            rate_limiter: Tenant window store (a fresh one if omitted)
            classifier: Error classifier (a fresh one if omitted)
            sleep: Coroutine taking seconds (default: asyncio.sleep)
            default_rate_limit_delay_ms: Wait used for rate limits without a hint
            rng: Jitter source
            timer: Monotonic seconds source used to time dispatches
        """
        self.rate_limiter = rate_limiter or RateLimiter.from_settings()
        self.classifier = classifier or ErrorClassifier()
        self._sleep = sleep or asyncio.sleep
        self.default_rate_limit_delay_ms = default_rate_limit_delay_ms
        self._rng = rng
        self._timer = timer
        self._total_requests = 0
        self._failed_requests = 0
        self._response_times: deque = deque(maxlen=RESPONSE_TIME_WINDOW)

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "RetryOrchestrator":
        kwargs.setdefault("rate_limiter", RateLimiter.from_settings())
        kwargs.setdefault(
            "default_rate_limit_delay_ms", settings.rate_limit_default_delay_ms
        )
        return cls(**kwargs)

    def get_dispatch_statistics(self) -> DispatchStatistics:
        """Dispatch counts and the average duration of the last 100 dispatches."""
        times = self._response_times
        return DispatchStatistics(
            total_requests=self._total_requests,
            failed_requests=self._failed_requests,
            average_response_ms=sum(times) / len(times) if times else 0.0,
        )

    def reset_dispatch_statistics(self) -> None:
        self._total_requests = 0
        self._failed_requests = 0
        self._response_times.clear()

    def _record_dispatch(self, started: float, failed: bool) -> None:
        self._total_requests += 1
        if failed:
            self._failed_requests += 1
        self._response_times.append((self._timer() - started) * 1000)

    def rate_limit_delay_ms(self, classified: ClassifiedError) -> float:
        """Delay for a RATE_LIMIT failure: the server hint, else the default."""
        if classified.retry_after_seconds is not None:
            return classified.retry_after_seconds * 1000
        return self.default_rate_limit_delay_ms

    def should_retry(self, classified: ClassifiedError, policy: RetryPolicy) -> bool:
        """Whether a classified failure is eligible for another attempt."""
        if classified.type not in policy.retryable_types:
            return False
        # Transient categories may still carry a permanent instance (4xx API errors)
        if classified.type in DEFAULT_RETRYABLE_TYPES:
            return classified.retryable
        return True

    async def pause(
        self,
        delay_ms: float,
        attempt: int,
        cancel_token: Optional[CancellationToken],
        detail: Optional[str] = None,
    ) -> None:
        """Wait ``delay_ms``, raising RetryCancelledError if the token fires first."""
        seconds = delay_ms / 1000
        if cancel_token is None:
            await self._sleep(seconds)
            return
        if await cancel_token.wait(seconds):
            raise RetryCancelledError(attempt=attempt, detail=detail)

    async def execute_with_retry(
        self,
        operation: Operation[T],
        policy: Optional[RetryPolicy] = None,
        tenant_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> T:
        """Execute an operation, retrying transient failures.

        Args:
            operation: Zero-argument callable returning an awaitable
            policy: Retry policy (defaults from settings if omitted)
            tenant_id: Tenant whose window admits each attempt
            cancel_token: Optional token that aborts the loop between attempts

        Returns:
            The operation's result

        Raises:
            The operation's last exception, unchanged apart from a
            ``classification`` attribute, when it is not retryable or retries
            are exhausted. RateLimitExceededError when admission is still
            denied on the final iteration. RetryCancelledError when the token
            fires.
        """
        policy = policy or RetryPolicy.from_settings()
        max_iterations = policy.max_retries + 1
        attempt = 1

        for iteration in range(1, max_iterations + 1):
            if cancel_token is not None and cancel_token.cancelled:
                raise RetryCancelledError(attempt=attempt)

            # Local admission denial waits without consuming a retry slot,
            # but still counts toward the iteration ceiling.
            if tenant_id is not None and not self.rate_limiter.check_rate_limit(tenant_id):
                denial = RateLimitExceededError(
                    tenant_id=tenant_id,
                    retry_after=self.rate_limiter.seconds_until_reset(tenant_id),
                )
                classified = self.classifier.classify(denial)
                _attach_classification(denial, classified)
                if iteration >= max_iterations:
                    logger.warning(
                        f"Rate limit still exceeded for tenant {tenant_id} "
                        f"after {iteration} iterations",
                        extra=get_log_context(
                            tenant_id=tenant_id,
                            attempt=attempt,
                            error_type=classified.type.value,
                        ),
                    )
                    raise denial
                delay_ms = self.rate_limit_delay_ms(classified)
                logger.warning(
                    f"Rate limit exceeded for tenant {tenant_id}. "
                    f"Waiting {delay_ms:.0f}ms before retry...",
                    extra=get_log_context(
                        tenant_id=tenant_id,
                        attempt=attempt,
                        error_type=classified.type.value,
                        delay_ms=delay_ms,
                    ),
                )
                await self.pause(delay_ms, attempt, cancel_token)
                continue

            if tenant_id is not None:
                self.rate_limiter.record_request(tenant_id)

            started = self._timer()
            try:
                result = await operation()
            except Exception as e:
                self._record_dispatch(started, failed=True)
                classified = self.classifier.classify(e)
                _attach_classification(e, classified)

                if not self.should_retry(classified, policy):
                    logger.debug(
                        f"Non-retryable {classified.type.value} error on attempt "
                        f"{attempt}: {type(e).__name__}: {classified.message}",
                        extra=get_log_context(
                            tenant_id=tenant_id,
                            attempt=attempt,
                            error_type=classified.type.value,
                        ),
                    )
                    raise

                if attempt > policy.max_retries or iteration >= max_iterations:
                    logger.warning(
                        f"Max retries ({policy.max_retries}) exceeded: "
                        f"{type(e).__name__}: {classified.message}",
                        extra=get_log_context(
                            tenant_id=tenant_id,
                            attempt=attempt,
                            error_type=classified.type.value,
                        ),
                    )
                    raise

                if classified.type == ErrorType.RATE_LIMIT:
                    delay_ms = self.rate_limit_delay_ms(classified)
                else:
                    delay_ms = calculate_backoff_delay(attempt, policy, self._rng)
                logger.warning(
                    f"Retry {attempt}/{policy.max_retries} after "
                    f"{type(e).__name__}: {classified.message}. Waiting {delay_ms:.0f}ms...",
                    extra=get_log_context(
                        tenant_id=tenant_id,
                        attempt=attempt,
                        error_type=classified.type.value,
                        delay_ms=delay_ms,
                    ),
                )
            else:
                self._record_dispatch(started, failed=False)
                return result

            await self.pause(delay_ms, attempt, cancel_token)
            attempt += 1

        # Unreachable: every iteration returns, raises or continues
        raise RuntimeError("retry loop exited without a result")
