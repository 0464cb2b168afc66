"""Sequential batch execution on top of RetryOrchestrator."""

import functools
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from relay.app.core.config import settings
from relay.app.core.logging import get_log_context, get_logger
from relay.app.resilience.retry import (
    CancellationToken,
    Operation,
    RetryOrchestrator,
    RetryPolicy,
)

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchExecutor:
    """Runs a sequence of operations one at a time.

    Operations are never dispatched concurrently: a tenant's quota is a single
    shared counter. A pause of ``inter_op_delay_ms`` precedes every operation
    except the first. The first operation whose retries are exhausted aborts
    the batch and its error propagates; no partial results are returned.
    """

    def __init__(
        self,
        orchestrator: RetryOrchestrator,
        inter_op_delay_ms: Optional[float] = None,
    ):
        """Initialize the executor.

        Args:
            orchestrator: Orchestrator every operation is routed through
            inter_op_delay_ms: Default pause between operations
                (settings.batch_inter_op_delay_ms if omitted)
        """
        self.orchestrator = orchestrator
        self.inter_op_delay_ms = (
            settings.batch_inter_op_delay_ms
            if inter_op_delay_ms is None
            else inter_op_delay_ms
        )

    async def execute_batch(
        self,
        operations: Sequence[Operation[T]],
        policy: Optional[RetryPolicy] = None,
        tenant_id: Optional[str] = None,
        inter_op_delay_ms: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[T]:
        """Execute operations in order and return their results in order.

        Args:
            operations: Zero-argument callables returning awaitables
            policy: Retry policy applied to each operation
            tenant_id: Tenant charged for every request
            inter_op_delay_ms: Pause before each operation after the first
            cancel_token: Optional token checked by every retry loop

        Returns:
            Results in the same order as ``operations``
        """
        delay_ms = self.inter_op_delay_ms if inter_op_delay_ms is None else inter_op_delay_ms
        results: List[T] = []

        for index, operation in enumerate(operations):
            if index > 0:
                await self.orchestrator.pause(
                    delay_ms,
                    0,
                    cancel_token,
                    detail=f"Batch cancelled before operation {index + 1}/{len(operations)}",
                )
            try:
                result = await self.orchestrator.execute_with_retry(
                    operation, policy, tenant_id, cancel_token
                )
            except Exception:
                logger.warning(
                    f"Batch aborted at operation {index + 1}/{len(operations)}",
                    extra=get_log_context(tenant_id=tenant_id, operation=f"batch[{index}]"),
                )
                raise
            results.append(result)

        return results

    def create_rate_limited_function(
        self,
        fn: Callable[..., Awaitable[R]],
        policy: Optional[RetryPolicy] = None,
        tenant_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Callable[..., Awaitable[R]]:
        """Wrap an async function so every call goes through execute_with_retry.

        Example:
            >>> get_posts = executor.create_rate_limited_function(api.get_posts, tenant_id="acct-1")
            >>> posts = await get_posts("staff.tumblr.com", limit=20)
        """

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> R:
            return await self.orchestrator.execute_with_retry(
                lambda: fn(*args, **kwargs), policy, tenant_id, cancel_token
            )

        return wrapper
