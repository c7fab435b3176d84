# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Transports used by :class:`~mcpconnect.client.MCPClient`.

A transport does two things for the engine:

* ``discover(endpoint)`` fetches the server's OAuth protected-resource metadata
  (RFC 9728, served by openmcp at ``/.well-known/oauth-protected-resource``) to
  learn whether a credential is needed before connecting.
* ``open(endpoint, credential)`` is an async context manager yielding a
  :class:`Connection`: one duplex channel that carries JSON-RPC frames
  (``mcp.types.JSONRPCMessage``) in both directions.

The HTTP transports reuse the reference SDK's stream plumbing
(``streamablehttp_client`` and ``sse_client``), which already speaks the
framing described in ``docs/mcp/core/transports/streamable-http.md``.  Both
produce a pair of anyio memory streams; :class:`StreamConnection` adapts that
pair to the engine's ``send``/``receive``/``aclose`` contract.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Callable, Mapping
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from urllib.parse import urlparse

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
import httpx
from mcp import types
from mcp.client.sse import sse_client
from mcp.client.streamable_http import MCP_PROTOCOL_VERSION, streamablehttp_client
from mcp.shared._httpx_utils import McpHttpClientFactory, create_mcp_http_client
from mcp.shared.auth import ProtectedResourceMetadata
from mcp.shared.message import SessionMessage
from pydantic import ValidationError

from ..errors import AuthRejected, ConnectError, ConnectionClosed, MCPConnectError, SendError
from ..utils import get_logger
from ..versioning import REQUESTED_PROTOCOL_VERSION


if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..config import ServerEndpoint
    from .auth import Credential


logger = get_logger("mcpconnect.transport")

PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"

StreamableHTTPNames = {"streamable-http", "streamable_http", "shttp", "http"}
SSENames = {"sse", "http+sse"}

HTTP_UNAUTHORIZED = 401
HTTP_NOT_FOUND = 404


@dataclass(frozen=True, slots=True)
class Discovery:
    """Outcome of the pre-connect discovery request."""

    auth_required: bool
    metadata: ProtectedResourceMetadata | None = None

    @property
    def authorization_servers(self) -> list[str]:
        if self.metadata is None:
            return []
        return [str(server) for server in self.metadata.authorization_servers]

    @property
    def scopes(self) -> list[str]:
        if self.metadata is None or not self.metadata.scopes_supported:
            return []
        return list(self.metadata.scopes_supported)


NO_AUTH = Discovery(auth_required=False)


@runtime_checkable
class Connection(Protocol):
    """One open channel to a server."""

    async def send(self, frame: types.JSONRPCMessage) -> None:
        """Write one frame; raise :class:`SendError` if the channel is unusable."""

    def receive(self) -> AsyncIterator[types.JSONRPCMessage]:
        """Yield inbound frames until the channel closes.

        Raises :class:`ConnectionClosed` when the peer drops the channel and
        ends normally after :meth:`aclose`.
        """

    async def aclose(self) -> None:
        """Release the channel.  Safe to call more than once."""


@runtime_checkable
class Transport(Protocol):
    """Factory for :class:`Connection` objects plus the discovery request."""

    async def discover(self, endpoint: ServerEndpoint) -> Discovery:  # pragma: no cover - protocol
        ...

    def open(
        self, endpoint: ServerEndpoint, credential: Credential | None = None
    ) -> AbstractAsyncContextManager[Connection]:  # pragma: no cover - protocol
        ...


class StreamConnection:
    """:class:`Connection` over a pair of anyio memory object streams.

    The read side may carry ``SessionMessage`` wrappers (as produced by the
    SDK), bare ``JSONRPCMessage`` objects, or exceptions.  An exception on the
    read side means the underlying channel failed and ends :meth:`receive`
    with :class:`ConnectionClosed`.
    """

    def __init__(
        self,
        read_stream: MemoryObjectReceiveStream[Any],
        write_stream: MemoryObjectSendStream[Any],
        *,
        get_session_id: Callable[[], str | None] | None = None,
    ) -> None:
        self._read_stream = read_stream
        self._write_stream = write_stream
        self._get_session_id = get_session_id
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def session_id(self) -> str | None:
        return self._get_session_id() if self._get_session_id is not None else None

    async def send(self, frame: types.JSONRPCMessage) -> None:
        if self._closed:
            raise SendError("Connection is closed")
        try:
            await self._write_stream.send(SessionMessage(frame))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
            raise SendError("Transport stream is no longer writable", cause=exc) from exc

    async def receive(self) -> AsyncGenerator[types.JSONRPCMessage, None]:
        while not self._closed:
            try:
                item = await self._read_stream.receive()
            except (anyio.EndOfStream, anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
                if self._closed:
                    return
                raise ConnectionClosed("Server closed the connection", cause=exc) from exc

            if self._closed:
                return
            if isinstance(item, Exception):
                raise _closed_by(item)
            yield item.message if isinstance(item, SessionMessage) else item

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._write_stream.aclose()


def _closed_by(exc: Exception) -> ConnectionClosed:
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == HTTP_UNAUTHORIZED:
        return AuthRejected("Server rejected the credential (HTTP 401)", cause=exc)
    if isinstance(exc, ConnectionClosed):
        return exc
    return ConnectionClosed(f"Transport failed: {exc}", cause=exc)


def protected_resource_urls(url: str) -> list[str]:
    """Candidate metadata URLs for *url*, path-specific first (RFC 9728 §3)."""
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    path = parsed.path.rstrip("/")
    candidates = []
    if path:
        candidates.append(f"{origin}{PROTECTED_RESOURCE_PATH}{path}")
    candidates.append(f"{origin}{PROTECTED_RESOURCE_PATH}")
    return candidates


class _HTTPStreamTransport:
    """Shared behaviour for transports built on the SDK's HTTP stream clients."""

    name = "http"

    def __init__(
        self,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | timedelta = 30,
        sse_read_timeout: float | timedelta = 300,
        discovery_timeout: float = 10.0,
        httpx_client_factory: McpHttpClientFactory | Callable[..., httpx.AsyncClient] = create_mcp_http_client,
    ) -> None:
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._sse_read_timeout = sse_read_timeout
        self._discovery_timeout = discovery_timeout
        self._httpx_client_factory = httpx_client_factory

    def request_headers(self, credential: Credential | None = None) -> dict[str, str]:
        # ``MCP-Protocol-Version`` is required on every request; caller headers may override it.
        headers = {MCP_PROTOCOL_VERSION: REQUESTED_PROTOCOL_VERSION}
        headers.update(self._headers)
        if credential is not None:
            headers["Authorization"] = credential.authorization_header()
        return headers

    async def discover(self, endpoint: ServerEndpoint) -> Discovery:
        """Fetch protected-resource metadata for *endpoint*.

        Raises:
            ConnectError: The server could not be reached or answered 5xx.
        """
        async with self._httpx_client_factory(
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(self._discovery_timeout),
        ) as client:
            for url in protected_resource_urls(endpoint.url):
                try:
                    response = await client.get(url)
                except httpx.HTTPError as exc:
                    raise ConnectError(f"Could not reach {endpoint.url}: {exc}", cause=exc) from exc

                if response.status_code >= 500:
                    raise ConnectError(f"Discovery request failed with HTTP {response.status_code}")
                if response.status_code != 200:
                    continue
                try:
                    metadata = ProtectedResourceMetadata.model_validate_json(response.content)
                except ValidationError as exc:
                    logger.warning("Ignoring malformed protected-resource metadata at %s: %s", url, exc)
                    continue
                logger.debug("Protected-resource metadata found at %s", url)
                return Discovery(auth_required=True, metadata=metadata)
        return NO_AUTH

    def _client_context(self, url: str, headers: dict[str, str]) -> AbstractAsyncContextManager[tuple[Any, ...]]:
        raise NotImplementedError

    @asynccontextmanager
    async def open(
        self, endpoint: ServerEndpoint, credential: Credential | None = None
    ) -> AsyncGenerator[StreamConnection, None]:
        headers = self.request_headers(credential)
        entered = False
        try:
            async with self._client_context(endpoint.url, headers) as streams:
                entered = True
                read_stream, write_stream = streams[0], streams[1]
                get_session_id = streams[2] if len(streams) > 2 else None
                connection = StreamConnection(read_stream, write_stream, get_session_id=get_session_id)
                try:
                    yield connection
                finally:
                    await connection.aclose()
        except MCPConnectError:
            raise
        except Exception as exc:
            if entered:
                raise
            raise ConnectError(f"Could not open {self.name} transport to {endpoint.url}: {exc}", cause=exc) from exc


class StreamableHTTPTransport(_HTTPStreamTransport):
    """Streamable HTTP (``docs/mcp/core/transports/streamable-http.md``)."""

    name = "streamable-http"

    def __init__(self, *, terminate_on_close: bool = True, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._terminate_on_close = terminate_on_close

    def _client_context(self, url: str, headers: dict[str, str]) -> AbstractAsyncContextManager[tuple[Any, ...]]:
        return streamablehttp_client(
            url,
            headers=headers,
            timeout=self._timeout,
            sse_read_timeout=self._sse_read_timeout,
            terminate_on_close=self._terminate_on_close,
            httpx_client_factory=self._httpx_client_factory,
        )


class SSETransport(_HTTPStreamTransport):
    """Legacy HTTP+SSE transport: POST for requests, one SSE stream for responses."""

    name = "sse"

    def _client_context(self, url: str, headers: dict[str, str]) -> AbstractAsyncContextManager[tuple[Any, ...]]:
        return sse_client(
            url,
            headers=headers,
            timeout=_seconds(self._timeout),
            sse_read_timeout=_seconds(self._sse_read_timeout),
            httpx_client_factory=self._httpx_client_factory,
        )


def _seconds(value: float | timedelta) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


def create_transport(name: str = "streamable-http", **kwargs: Any) -> _HTTPStreamTransport:
    """Build a transport by name.

    Accepts ``"streamable-http"`` (aliases ``"shttp"``, ``"http"``) and
    ``"sse"``.  Keyword arguments go to the transport constructor.
    """
    selected = name.lower()
    if selected in StreamableHTTPNames:
        return StreamableHTTPTransport(**kwargs)
    if selected in SSENames:
        return SSETransport(**kwargs)
    raise ValueError(f"Unsupported transport '{name}'")


__all__ = [
    "Connection",
    "Discovery",
    "NO_AUTH",
    "SSETransport",
    "StreamConnection",
    "StreamableHTTPTransport",
    "Transport",
    "create_transport",
    "protected_resource_urls",
]
