"""HTTP client construction for calls against the remote platform API."""

import httpx

from relay.app.core.config import settings


def create_http_client(**kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        **kwargs: Override default settings. Can include:
            - base_url: Base URL for relative request paths
            - timeout: Single timeout value (overrides all granular timeouts)
            - connect_timeout, read_timeout, write_timeout, pool_timeout
            - max_connections, max_keepalive_connections, keepalive_expiry
            - transport: Custom transport (e.g. httpx.MockTransport in tests)

    Returns:
        A new httpx.AsyncClient instance with granular timeout configuration.
    """
    timeout_override = kwargs.get("timeout")
    if timeout_override is not None:
        timeout = httpx.Timeout(timeout_override)
    else:
        timeout = httpx.Timeout(
            connect=kwargs.get("connect_timeout", settings.httpx_connect_timeout),
            read=kwargs.get("read_timeout", settings.httpx_read_timeout),
            write=kwargs.get("write_timeout", settings.httpx_write_timeout),
            pool=kwargs.get("pool_timeout", settings.httpx_pool_timeout),
        )

    config = {
        "base_url": kwargs.get("base_url", settings.api_base_url),
        "timeout": timeout,
        "limits": httpx.Limits(
            max_connections=kwargs.get(
                "max_connections", settings.httpx_max_connections
            ),
            max_keepalive_connections=kwargs.get(
                "max_keepalive_connections", settings.httpx_max_keepalive_connections
            ),
            keepalive_expiry=kwargs.get(
                "keepalive_expiry", settings.httpx_keepalive_expiry
            ),
        ),
    }
    if kwargs.get("transport") is not None:
        config["transport"] = kwargs["transport"]
    return httpx.AsyncClient(**config)
