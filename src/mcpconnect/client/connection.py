# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""High-level client entrypoint.

`open_connection` wraps transport selection and :class:`~mcpconnect.client.MCPClient`
so applications can talk to an MCP server with a single ``async with`` block.

The helper keeps the surface tiny: callers choose a transport via
``transport=`` (defaulting to streamable HTTP) and receive an
:class:`~mcpconnect.client.MCPClient` whose session is already ``READY``.
Hosts that want to drive ``PENDING_AUTH`` or ``FAILED`` themselves should use
``MCPClient`` directly.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Mapping
from contextlib import asynccontextmanager
from datetime import timedelta

import httpx
from mcp import types
from mcp.shared._httpx_utils import McpHttpClientFactory, create_mcp_http_client

from ..config import ClientConfig, ServerEndpoint
from ..errors import AuthError, CatalogError, ConnectError, ConnectionLost, ErrorKind, SessionError
from .auth import AuthFlow
from .core import MCPClient
from .state import SessionState
from .transports import create_transport


@asynccontextmanager
async def open_connection(
    url: str,
    *,
    transport: str = "streamable-http",
    headers: Mapping[str, str] | None = None,
    timeout: float | timedelta = 30,
    sse_read_timeout: float | timedelta = 300,
    httpx_client_factory: McpHttpClientFactory | Callable[..., httpx.AsyncClient] = create_mcp_http_client,
    auth: AuthFlow | None = None,
    config: ClientConfig | None = None,
    capabilities: types.ClientCapabilities | None = None,
    client_name: str = "mcpconnect",
    client_version: str = "0.1.0",
    **transport_kwargs,
) -> AsyncGenerator[MCPClient, None]:
    """Open an MCP session and yield it once it is ready.

    Args:
        url: Fully qualified MCP endpoint (for example, ``"http://127.0.0.1:8000/mcp"``).
        transport: Transport name. Defaults to ``"streamable-http"``; accepts aliases like
            ``"shttp"`` and ``"sse"``.
        headers: Optional HTTP headers merged into every transport request.
        timeout: Total request timeout passed to the underlying transport.
        sse_read_timeout: Streaming read timeout for Server-Sent Events.
        httpx_client_factory: Factory used to build the HTTPX clients.
        auth: Flow run automatically when the server requires authorization.
        config: Engine timeouts and reconnection policy.
        capabilities: Client capabilities advertised during initialization.
        client_name: Name reported in ``clientInfo``.
        client_version: Version reported in ``clientInfo``.
        transport_kwargs: Transport-specific keyword arguments.

    Yields:
        MCPClient: A client in the ``READY`` state.

    Raises:
        SessionError: The session did not reach ``READY``; the exception type
            matches :attr:`MCPClient.last_error`.
    """
    config = config or ClientConfig()
    selected = create_transport(
        transport,
        headers=headers,
        timeout=timeout,
        sse_read_timeout=sse_read_timeout,
        discovery_timeout=config.discovery_timeout,
        httpx_client_factory=httpx_client_factory,
        **transport_kwargs,
    )
    endpoint = ServerEndpoint(url, client_name, client_version)

    async with MCPClient(selected, auth=auth, config=config, capabilities=capabilities) as client:
        state = await client.connect(endpoint)
        if state is SessionState.PENDING_AUTH:
            if auth is None:
                raise AuthError(f"{url} requires authorization; pass auth= to open_connection")
            state = await client.authenticate()
        if state is not SessionState.READY:
            raise _session_error(client)
        yield client


_ERRORS_BY_KIND: dict[ErrorKind, type[SessionError]] = {
    ErrorKind.CONNECT: ConnectError,
    ErrorKind.AUTH: AuthError,
    ErrorKind.CATALOG: CatalogError,
    ErrorKind.CONNECTION_LOST: ConnectionLost,
}


def _session_error(client: MCPClient) -> SessionError:
    info = client.last_error
    if info is None:
        return ConnectError(f"Session ended in state {client.state.value}")
    return _ERRORS_BY_KIND.get(info.kind, ConnectError)(info.message, cause=info.cause)


__all__ = ["open_connection"]
