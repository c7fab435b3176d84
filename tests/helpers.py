# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Shared test helpers: a scripted in-memory MCP server and transport."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
import json
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
import httpx
from mcp.shared.message import SessionMessage

from mcpconnect import types
from mcpconnect.client.auth import Credential
from mcpconnect.client.transports import NO_AUTH, Discovery, StreamConnection
from mcpconnect.config import ServerEndpoint
from mcpconnect.errors import AuthRejected


Handler = Callable[[dict[str, Any]], dict[str, Any]]


def make_tool(name: str, schema: dict[str, Any] | None = None) -> types.Tool:
    return types.Tool(name=name, inputSchema=schema or {"type": "object"})


def make_resource(uri: str, name: str | None = None) -> types.Resource:
    return types.Resource(uri=uri, name=name or uri.rsplit("/", 1)[-1])


def make_prompt(name: str, *required: str) -> types.Prompt:
    return types.Prompt(
        name=name,
        arguments=[types.PromptArgument(name=arg, required=True) for arg in required],
    )


SEARCH_TOOL = make_tool(
    "search",
    {"type": "object", "properties": {"query": {"type": "string"}}, "required": ["query"]},
)


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


class FakeServer:
    """In-memory MCP server speaking JSON-RPC over anyio memory streams.

    Defaults answer ``initialize``, the three list calls (paginated by
    ``page_size``), ``tools/call``, ``resources/read``, ``prompts/get`` and
    ``ping``.  Tests tweak behaviour through ``handlers``, ``errors``, ``hold``
    (never answered), ``gate()`` (answered once the returned event is set)
    and ``drop_on`` (drop the connection on receipt).
    """

    def __init__(
        self,
        *,
        tools: list[types.Tool] | None = None,
        resources: list[types.Resource] | None = None,
        prompts: list[types.Prompt] | None = None,
        capabilities: types.ServerCapabilities | None = None,
        protocol_version: str = types.LATEST_PROTOCOL_VERSION,
        page_size: int | None = None,
    ) -> None:
        self.tools = list(tools if tools is not None else [SEARCH_TOOL])
        self.resources = list(resources if resources is not None else [make_resource("file:///docs/readme.md")])
        self.prompts = list(prompts if prompts is not None else [make_prompt("summarize", "topic")])
        self.capabilities = capabilities or types.ServerCapabilities(
            tools=types.ToolsCapability(listChanged=True),
            resources=types.ResourcesCapability(listChanged=True),
            prompts=types.PromptsCapability(listChanged=True),
        )
        self.protocol_version = protocol_version
        self.page_size = page_size

        self.handlers: dict[str, Handler] = {}
        self.errors: dict[str, types.ErrorData] = {}
        self.hold: set[str] = set()
        self.gates: dict[str, anyio.Event] = {}
        self.drop_on: set[str] = set()

        self.requests: list[types.JSONRPCRequest] = []
        self.notifications: list[types.JSONRPCNotification] = []
        self.client_replies: list[types.JSONRPCResponse | types.JSONRPCError] = []
        self.connections = 0

        self._outbound: MemoryObjectSendStream[Any] | None = None
        self._drop = anyio.Event()

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def methods(self) -> list[str]:
        return [request.method for request in self.requests]

    def count(self, method: str) -> int:
        return self.methods().count(method)

    # ------------------------------------------------------------------
    # Server-initiated traffic
    # ------------------------------------------------------------------

    async def push(self, item: Any) -> None:
        assert self._outbound is not None, "no open connection"
        await self._outbound.send(item)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        await self.push(types.JSONRPCMessage(types.JSONRPCNotification(jsonrpc="2.0", method=method, params=params)))

    async def ask(self, request_id: int, method: str, params: dict[str, Any] | None = None) -> None:
        await self.push(
            types.JSONRPCMessage(types.JSONRPCRequest(jsonrpc="2.0", id=request_id, method=method, params=params))
        )

    async def reject_credential(self) -> None:
        request = httpx.Request("POST", "http://testserver/mcp")
        response = httpx.Response(401, request=request)
        await self.push(httpx.HTTPStatusError("Unauthorized", request=request, response=response))

    def gate(self, method: str) -> anyio.Event:
        event = self.gates[method] = anyio.Event()
        return event

    def drop(self) -> None:
        self._drop.set()

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    async def serve(self, read_stream: MemoryObjectReceiveStream[Any], write_stream: MemoryObjectSendStream[Any]) -> None:
        self.connections += 1
        self._drop = anyio.Event()
        self._outbound = write_stream
        async with read_stream, write_stream:
            async with anyio.create_task_group() as tg:

                async def watch_drop() -> None:
                    await self._drop.wait()
                    tg.cancel_scope.cancel()

                tg.start_soon(watch_drop)
                async for item in read_stream:
                    message = item.message.root if isinstance(item, SessionMessage) else item.root
                    if isinstance(message, types.JSONRPCRequest):
                        self.requests.append(message)
                        tg.start_soon(self._answer, message)
                    elif isinstance(message, types.JSONRPCNotification):
                        self.notifications.append(message)
                    else:
                        self.client_replies.append(message)
                tg.cancel_scope.cancel()
        self._outbound = None

    async def _answer(self, request: types.JSONRPCRequest) -> None:
        method = request.method
        if method in self.drop_on:
            self.drop()
            return
        if method in self.hold:
            await anyio.sleep_forever()
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()

        params = request.params or {}
        if method in self.errors:
            reply: Any = types.JSONRPCError(jsonrpc="2.0", id=request.id, error=self.errors[method])
        else:
            handler = self.handlers.get(method) or getattr(self, "_on_" + method.replace("/", "_"), None)
            if handler is None:
                error = types.ErrorData(code=types.METHOD_NOT_FOUND, message=f"Method not found: {method}")
                reply = types.JSONRPCError(jsonrpc="2.0", id=request.id, error=error)
            else:
                reply = types.JSONRPCResponse(jsonrpc="2.0", id=request.id, result=handler(params))

        if self._outbound is not None:
            await self._outbound.send(SessionMessage(types.JSONRPCMessage(reply)))

    # ------------------------------------------------------------------
    # Default handlers
    # ------------------------------------------------------------------

    def _on_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        return _dump(
            types.InitializeResult(
                protocolVersion=self.protocol_version,
                capabilities=self.capabilities,
                serverInfo=types.Implementation(name="fake-server", version="1.0.0"),
            )
        )

    def _page(self, items: list[Any], field: str, params: dict[str, Any]) -> dict[str, Any]:
        start = int(params.get("cursor") or 0)
        size = self.page_size or len(items) or 1
        page = items[start : start + size]
        result: dict[str, Any] = {field: [_dump(item) for item in page]}
        if start + size < len(items):
            result["nextCursor"] = str(start + size)
        return result

    def _on_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._page(self.tools, "tools", params)

    def _on_resources_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._page(self.resources, "resources", params)

    def _on_prompts_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._page(self.prompts, "prompts", params)

    def _on_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        text = f"{params['name']}:{json.dumps(params.get('arguments') or {}, sort_keys=True)}"
        return _dump(types.CallToolResult(content=[types.TextContent(type="text", text=text)]))

    def _on_resources_read(self, params: dict[str, Any]) -> dict[str, Any]:
        uri = params["uri"]
        return _dump(
            types.ReadResourceResult(contents=[types.TextResourceContents(uri=uri, text=f"contents of {uri}")])
        )

    def _on_prompts_get(self, params: dict[str, Any]) -> dict[str, Any]:
        arguments = params.get("arguments") or {}
        text = f"{params['name']} about {arguments.get('topic', '?')}"
        message = types.PromptMessage(role="user", content=types.TextContent(type="text", text=text))
        return _dump(types.GetPromptResult(messages=[message]))

    def _on_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds or *timeout* expires."""
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.01)


class FakeTransport:
    """Transport that connects the engine to a :class:`FakeServer`."""

    def __init__(
        self,
        server: FakeServer | None = None,
        *,
        discovery: Discovery = NO_AUTH,
        required_token: str | None = None,
    ) -> None:
        self.server = server or FakeServer()
        self.discovery = discovery
        self.required_token = required_token
        self.discover_error: Exception | None = None
        self.open_error: Exception | None = None
        self.discover_calls = 0
        self.opened: list[Credential | None] = []
        self.closed = 0

    async def discover(self, endpoint: ServerEndpoint) -> Discovery:
        self.discover_calls += 1
        await anyio.lowlevel.checkpoint()
        if self.discover_error is not None:
            raise self.discover_error
        return self.discovery

    @asynccontextmanager
    async def open(self, endpoint: ServerEndpoint, credential: Credential | None = None) -> AsyncIterator[StreamConnection]:
        self.opened.append(credential)
        if self.open_error is not None:
            raise self.open_error
        if self.required_token is not None and (credential is None or credential.token != self.required_token):
            raise AuthRejected("Server rejected the credential (HTTP 401)")

        client_send, server_receive = anyio.create_memory_object_stream[Any](100)
        server_send, client_receive = anyio.create_memory_object_stream[Any](100)
        connection = StreamConnection(client_receive, client_send)
        async with anyio.create_task_group() as tg:
            tg.start_soon(self.server.serve, server_receive, server_send)
            try:
                yield connection
            finally:
                self.closed += 1
                await connection.aclose()
                client_receive.close()
                tg.cancel_scope.cancel()


__all__ = [
    "FakeServer",
    "FakeTransport",
    "SEARCH_TOOL",
    "eventually",
    "make_prompt",
    "make_resource",
    "make_tool",
]
