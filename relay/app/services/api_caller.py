"""Remote platform API caller routed through the resilience layer."""

from typing import Any, Dict, Optional

import httpx

from relay.app.core.logging import get_log_context, get_logger
from relay.app.resilience.retry import (
    CancellationToken,
    RetryOrchestrator,
    RetryPolicy,
)

logger = get_logger(__name__)


class PlatformApiCaller:
    """Issues HTTP requests against the platform API with retry and quota control.

    The caller only packages a request into a zero-argument operation; every
    retry and rate-limit decision belongs to the orchestrator.

    Usage:
        async with create_http_client() as client:
            caller = PlatformApiCaller(client, RetryOrchestrator.from_settings())
            info = await caller.request("GET", "/user/info", tenant_id="acct-1")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        orchestrator: RetryOrchestrator,
        default_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the caller.

        Args:
            http_client: Client carrying base URL, timeouts and credentials
            orchestrator: Orchestrator all requests are routed through
            default_policy: Policy used when a call does not supply one
        """
        self._client = http_client
        self._orchestrator = orchestrator
        self._default_policy = default_policy

    async def request(
        self,
        method: str,
        path: str,
        tenant_id: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        cancel_token: Optional[CancellationToken] = None,
        **kwargs: Any,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the client's base URL
            tenant_id: Tenant whose quota the request is charged to
            policy: Retry policy for this call
            cancel_token: Optional token that aborts the retry loop
            **kwargs: Passed to httpx.AsyncClient.request (params, json, headers...)

        Returns:
            The JSON response body

        Raises:
            httpx.HTTPStatusError: If the API keeps returning an error status
            httpx.TransportError: If the API stays unreachable
        """

        async def operation() -> Any:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp.json()

        logger.debug(
            f"{method} {path}",
            extra=get_log_context(tenant_id=tenant_id, operation=f"{method} {path}"),
        )
        return await self._orchestrator.execute_with_retry(
            operation,
            policy or self._default_policy,
            tenant_id,
            cancel_token,
        )

    async def get(self, path: str, tenant_id: Optional[str] = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, tenant_id=tenant_id, **kwargs)

    async def post(
        self,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        return await self.request("POST", path, tenant_id=tenant_id, json=data, **kwargs)
