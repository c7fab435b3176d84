# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any

import anyio
import httpx
from mcp.client.streamable_http import MCP_PROTOCOL_VERSION
from mcp.shared.message import SessionMessage
import pytest

from mcpconnect import types
from mcpconnect.client.auth import Credential
from mcpconnect.client.transports import (
    NO_AUTH,
    SSETransport,
    StreamConnection,
    StreamableHTTPTransport,
    create_transport,
    protected_resource_urls,
)
from mcpconnect.config import ServerEndpoint
from mcpconnect.errors import AuthRejected, ConnectError, ConnectionClosed, SendError
from mcpconnect.versioning import REQUESTED_PROTOCOL_VERSION


METADATA = {
    "resource": "http://testserver/mcp",
    "authorization_servers": ["https://auth.example.com"],
    "scopes_supported": ["mcp:tools", "mcp:resources"],
}


def _factory(handler: Callable[[httpx.Request], httpx.Response], seen: list[str] | None = None):
    def recording(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(str(request.url))
        return handler(request)

    def factory(**kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(recording), **kwargs)

    return factory


def _ping_frame(request_id: int = 1) -> types.JSONRPCMessage:
    return types.JSONRPCMessage(types.JSONRPCRequest(jsonrpc="2.0", id=request_id, method="ping"))


# ---------------------------------------------------------------------------
# Factory and helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("name", ["streamable-http", "streamable_http", "shttp", "HTTP"])
def test_create_transport_streamable_aliases(name: str) -> None:
    assert isinstance(create_transport(name), StreamableHTTPTransport)


def test_create_transport_sse() -> None:
    assert isinstance(create_transport("sse"), SSETransport)


def test_create_transport_unknown() -> None:
    with pytest.raises(ValueError, match="Unsupported transport"):
        create_transport("carrier-pigeon")


def test_protected_resource_urls_prefers_path() -> None:
    assert protected_resource_urls("https://example.com/api/mcp/") == [
        "https://example.com/.well-known/oauth-protected-resource/api/mcp",
        "https://example.com/.well-known/oauth-protected-resource",
    ]
    assert protected_resource_urls("https://example.com") == [
        "https://example.com/.well-known/oauth-protected-resource",
    ]


def test_request_headers_include_version_and_credential() -> None:
    transport = StreamableHTTPTransport(headers={"X-Trace": "abc"})

    headers = transport.request_headers(Credential(token="t0k"))

    assert headers[MCP_PROTOCOL_VERSION] == REQUESTED_PROTOCOL_VERSION
    assert headers["X-Trace"] == "abc"
    assert headers["Authorization"] == "Bearer t0k"
    assert "Authorization" not in transport.request_headers()


def test_request_headers_allow_version_override() -> None:
    transport = StreamableHTTPTransport(headers={MCP_PROTOCOL_VERSION: "2025-03-26"})
    assert transport.request_headers()[MCP_PROTOCOL_VERSION] == "2025-03-26"


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_discover_without_metadata_needs_no_auth(endpoint: ServerEndpoint) -> None:
    seen: list[str] = []
    transport = StreamableHTTPTransport(httpx_client_factory=_factory(lambda r: httpx.Response(404), seen))

    assert await transport.discover(endpoint) is NO_AUTH
    assert seen == [
        "http://testserver/.well-known/oauth-protected-resource/mcp",
        "http://testserver/.well-known/oauth-protected-resource",
    ]


@pytest.mark.anyio
async def test_discover_path_specific_metadata(endpoint: ServerEndpoint) -> None:
    transport = StreamableHTTPTransport(httpx_client_factory=_factory(lambda r: httpx.Response(200, json=METADATA)))

    discovery = await transport.discover(endpoint)

    assert discovery.auth_required
    assert [server.rstrip("/") for server in discovery.authorization_servers] == ["https://auth.example.com"]
    assert discovery.scopes == ["mcp:tools", "mcp:resources"]


@pytest.mark.anyio
async def test_discover_falls_back_to_root_metadata(endpoint: ServerEndpoint) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/mcp"):
            return httpx.Response(404)
        return httpx.Response(200, json=METADATA)

    discovery = await StreamableHTTPTransport(httpx_client_factory=_factory(handler)).discover(endpoint)

    assert discovery.auth_required


@pytest.mark.anyio
async def test_discover_ignores_malformed_metadata(endpoint: ServerEndpoint) -> None:
    transport = StreamableHTTPTransport(
        httpx_client_factory=_factory(lambda r: httpx.Response(200, json={"unexpected": True}))
    )
    assert await transport.discover(endpoint) is NO_AUTH


@pytest.mark.anyio
async def test_discover_server_error_is_connect_error(endpoint: ServerEndpoint) -> None:
    transport = StreamableHTTPTransport(httpx_client_factory=_factory(lambda r: httpx.Response(503)))

    with pytest.raises(ConnectError, match="503"):
        await transport.discover(endpoint)


@pytest.mark.anyio
async def test_discover_unreachable_is_connect_error(endpoint: ServerEndpoint) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ConnectError, match="Could not reach"):
        await StreamableHTTPTransport(httpx_client_factory=_factory(handler)).discover(endpoint)


# ---------------------------------------------------------------------------
# Opening
# ---------------------------------------------------------------------------


class StubStreamTransport(StreamableHTTPTransport):
    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.headers_seen: list[dict[str, str]] = []
        self.fail_with: Exception | None = None

    def _client_context(self, url: str, headers: dict[str, str]):
        self.headers_seen.append(headers)

        @asynccontextmanager
        async def streams():
            if self.fail_with is not None:
                raise self.fail_with
            send, receive = anyio.create_memory_object_stream[Any](10)
            yield receive, send, lambda: "session-1"

        return streams()


@pytest.mark.anyio
async def test_open_yields_connection_with_auth_header(endpoint: ServerEndpoint) -> None:
    transport = StubStreamTransport()

    async with transport.open(endpoint, Credential(token="abc")) as connection:
        assert isinstance(connection, StreamConnection)
        assert connection.session_id == "session-1"

    assert connection.closed
    assert transport.headers_seen[0]["Authorization"] == "Bearer abc"


@pytest.mark.anyio
async def test_open_failure_is_connect_error(endpoint: ServerEndpoint) -> None:
    transport = StubStreamTransport()
    transport.fail_with = httpx.ConnectError("refused")

    with pytest.raises(ConnectError, match="Could not open streamable-http transport"):
        async with transport.open(endpoint):
            pass


# ---------------------------------------------------------------------------
# StreamConnection
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_stream_connection_round_trip() -> None:
    outbound_send, outbound_receive = anyio.create_memory_object_stream[Any](10)
    inbound_send, inbound_receive = anyio.create_memory_object_stream[Any](10)
    connection = StreamConnection(inbound_receive, outbound_send)

    await connection.send(_ping_frame(7))
    sent = outbound_receive.receive_nowait()
    assert isinstance(sent, SessionMessage)
    assert sent.message.root.id == 7

    await inbound_send.send(SessionMessage(_ping_frame(8)))
    await inbound_send.send(_ping_frame(9))
    frames = connection.receive()
    assert (await frames.__anext__()).root.id == 8
    assert (await frames.__anext__()).root.id == 9
    await frames.aclose()


@pytest.mark.anyio
async def test_stream_connection_peer_close_raises() -> None:
    outbound_send, _outbound_receive = anyio.create_memory_object_stream[Any](10)
    inbound_send, inbound_receive = anyio.create_memory_object_stream[Any](10)
    connection = StreamConnection(inbound_receive, outbound_send)

    await inbound_send.aclose()
    with pytest.raises(ConnectionClosed):
        async for _ in connection.receive():
            pass


@pytest.mark.anyio
async def test_stream_connection_maps_http_401() -> None:
    outbound_send, _outbound_receive = anyio.create_memory_object_stream[Any](10)
    inbound_send, inbound_receive = anyio.create_memory_object_stream[Any](10)
    connection = StreamConnection(inbound_receive, outbound_send)

    request = httpx.Request("POST", "http://testserver/mcp")
    await inbound_send.send(
        httpx.HTTPStatusError("unauthorized", request=request, response=httpx.Response(401, request=request))
    )
    with pytest.raises(AuthRejected):
        async for _ in connection.receive():
            pass


@pytest.mark.anyio
async def test_stream_connection_local_close() -> None:
    outbound_send, _outbound_receive = anyio.create_memory_object_stream[Any](10)
    _inbound_send, inbound_receive = anyio.create_memory_object_stream[Any](10)
    connection = StreamConnection(inbound_receive, outbound_send)

    await connection.aclose()
    await connection.aclose()

    assert [frame async for frame in connection.receive()] == []
    with pytest.raises(SendError):
        await connection.send(_ping_frame())


@pytest.mark.anyio
async def test_stream_connection_broken_writer() -> None:
    outbound_send, outbound_receive = anyio.create_memory_object_stream[Any](10)
    _inbound_send, inbound_receive = anyio.create_memory_object_stream[Any](10)
    connection = StreamConnection(inbound_receive, outbound_send)

    await outbound_receive.aclose()
    with pytest.raises(SendError):
        await connection.send(_ping_frame())
