"""HTTP client factory for collaborator APIs.

Provides per-service HTTP clients with connection pooling, timeouts,
and proper resource management.
"""

import httpx

# Default timeout configuration (seconds)
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_TIMEOUT = 10.0
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 5.0

# Module-level client storage, one client per collaborator
_clients: dict[str, httpx.AsyncClient] = {}


def create_http_client(
    base_url: str = "",
    max_connections: int = 20,
    max_keepalive_connections: int = 10,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    read_timeout: float = DEFAULT_READ_TIMEOUT,
    write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    pool_timeout: float = DEFAULT_POOL_TIMEOUT,
    headers: dict[str, str] | None = None,
) -> httpx.AsyncClient:
    """Create a configured async HTTP client.

    Args:
        base_url: Base URL for all requests (empty string for none)
        max_connections: Maximum number of concurrent connections
        max_keepalive_connections: Maximum idle connections to keep alive
        connect_timeout: Timeout for establishing connection
        read_timeout: Timeout for reading response
        write_timeout: Timeout for sending request
        pool_timeout: Timeout for acquiring connection from pool
        headers: Default headers sent with every request

    Returns:
        Configured httpx.AsyncClient instance
    """
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=write_timeout,
            pool=pool_timeout,
        ),
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
        ),
    )


def get_service_client(
    name: str, base_url: str, headers: dict[str, str] | None = None
) -> httpx.AsyncClient:
    """Get the singleton HTTP client for a named collaborator.

    Clients are created lazily and shared for the process lifetime. They
    are closed via close_http_clients() during application shutdown.
    """
    client = _clients.get(name)
    if client is None:
        client = create_http_client(base_url=base_url, headers=headers)
        _clients[name] = client
    return client


async def close_http_clients() -> None:
    """Close all collaborator HTTP clients and release resources."""
    while _clients:
        _, client = _clients.popitem()
        await client.aclose()
