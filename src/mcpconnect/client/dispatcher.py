# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Correlates capability invocations with server responses.

Every outbound request gets a fresh integer id from a per-session counter and
a :class:`PendingInvocation` parked in ``_pending`` until the response with
that id arrives, the deadline passes, or the caller cancels.  Retired ids are
never reused, so a late response can only be dropped, never delivered to the
wrong caller.

The capability entry points (``start_tool_call`` and friends) refuse to send
anything unless the session is ``READY`` and the target is in the current
catalog.  The dispatcher reads both but never changes them.

Cancellation follows ``docs/mcp/core/cancellation/index.md``: the id is retired
locally and ``notifications/cancelled`` is sent as a courtesy; the server may
still finish the work.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
import itertools
from typing import Any, Generic, TypeVar

import anyio
from mcp import types
from pydantic import BaseModel, ValidationError

from ..errors import (
    Cancelled,
    ConnectionLost,
    ErrorInfo,
    InvalidArguments,
    InvocationError,
    MCPConnectError,
    NotReady,
    RemoteError,
    SendError,
    Timeout,
    UnknownCapability,
)
from ..utils import get_logger
from ..utils.schema import ArgumentValidationError, validate_prompt_arguments, validate_tool_arguments
from .catalog import CapabilityCatalog
from .state import SessionState
from .transports import Connection


logger = get_logger("mcpconnect.dispatcher")

T_Payload = TypeVar("T_Payload", bound=BaseModel)


class InvocationKind(str, Enum):
    TOOL_CALL = "tools/call"
    RESOURCE_READ = "resources/read"
    PROMPT_GET = "prompts/get"

    @property
    def result_type(self) -> type[BaseModel]:
        return _RESULT_TYPES[self]


_RESULT_TYPES: dict[InvocationKind, type[BaseModel]] = {
    InvocationKind.TOOL_CALL: types.CallToolResult,
    InvocationKind.RESOURCE_READ: types.ReadResourceResult,
    InvocationKind.PROMPT_GET: types.GetPromptResult,
}


@dataclass(frozen=True, slots=True)
class InvocationRequest:
    id: int
    kind: InvocationKind
    target: str
    arguments: dict[str, Any] | None = None

    def params(self) -> dict[str, Any]:
        if self.kind is InvocationKind.RESOURCE_READ:
            return {"uri": self.target}
        params: dict[str, Any] = {"name": self.target}
        if self.arguments is not None:
            params["arguments"] = self.arguments
        return params


@dataclass(frozen=True, slots=True)
class Success(Generic[T_Payload]):
    payload: T_Payload


@dataclass(frozen=True, slots=True)
class Failure:
    error: ErrorInfo


@dataclass(frozen=True, slots=True)
class InvocationResult(Generic[T_Payload]):
    """Outcome of one invocation, handed to the caller and then discarded."""

    request_id: int
    outcome: Success[T_Payload] | Failure

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def payload(self) -> T_Payload:
        if isinstance(self.outcome, Failure):
            raise ValueError(f"Invocation {self.request_id} failed: {self.outcome.error}")
        return self.outcome.payload

    @property
    def error(self) -> ErrorInfo | None:
        return self.outcome.error if isinstance(self.outcome, Failure) else None


class PendingInvocation:
    """An in-flight request awaiting its response."""

    def __init__(
        self,
        request_id: int,
        method: str,
        *,
        deadline: float,
        request: InvocationRequest | None = None,
        on_retire: Callable[[int], None],
    ) -> None:
        self.id = request_id
        self.method = method
        self.request = request
        self.deadline = deadline
        self.started_at = anyio.current_time()
        self._on_retire = on_retire
        self._event = anyio.Event()
        self._result: dict[str, Any] | None = None
        self._error: MCPConnectError | None = None

    @property
    def done(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return not self.done and anyio.current_time() >= self.deadline

    def resolve(self, result: dict[str, Any]) -> None:
        if not self.done:
            self._result = result
            self._event.set()

    def expire(self) -> None:
        self.fail(Timeout(f"{self.method} #{self.id} timed out", request_id=self.id))

    def fail(self, error: MCPConnectError) -> None:
        if not self.done:
            if isinstance(error, InvocationError) and error.request_id is None:
                error.request_id = self.id
            self._error = error
            self._event.set()

    async def wait(self) -> dict[str, Any]:
        """Return the raw ``result`` object or raise the failure."""
        try:
            with anyio.move_on_after(max(self.deadline - anyio.current_time(), 0)):
                await self._event.wait()
        finally:
            if not self.done:
                # Deadline passed or the waiting task was cancelled.
                self._on_retire(self.id)
        if not self.done:
            self.expire()

        if self._error is not None:
            raise self._error
        assert self._result is not None
        return self._result

    async def result(self) -> InvocationResult[Any]:
        """Wait for the typed payload; failures raise :class:`InvocationError`."""
        if self.request is None:
            raise TypeError("Raw protocol requests have no typed result; use wait()")
        raw = await self.wait()
        result_type = self.request.kind.result_type
        try:
            payload = result_type.model_validate(raw)
        except ValidationError as exc:
            raise RemoteError(
                f"Malformed {self.method} result", code=types.INTERNAL_ERROR, request_id=self.id
            ) from exc
        return InvocationResult(request_id=self.id, outcome=Success(payload))

    async def settle(self) -> InvocationResult[Any]:
        """Like :meth:`result` but reports failures as a ``Failure`` outcome."""
        try:
            return await self.result()
        except InvocationError as exc:
            return InvocationResult(request_id=self.id, outcome=Failure(exc.info))
        except ConnectionLost as exc:
            return InvocationResult(request_id=self.id, outcome=Failure(exc.info))


class Dispatcher:
    """Owns request ids and pending invocations for one session."""

    def __init__(
        self,
        *,
        catalog: CapabilityCatalog,
        state: Callable[[], SessionState],
        request_timeout: float = 30.0,
    ) -> None:
        self._catalog = catalog
        self._state = state
        self._request_timeout = request_timeout
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingInvocation] = {}
        self._connection: Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def attach(self, connection: Connection) -> None:
        self._connection = connection

    def detach(self) -> None:
        self._connection = None

    def fail_pending(self, error_factory: Callable[[], MCPConnectError]) -> int:
        """Fail and retire every in-flight request; return how many there were."""
        pending = list(self._pending.values())
        self._pending.clear()
        for invocation in pending:
            invocation.fail(error_factory())
        return len(pending)

    @property
    def in_flight(self) -> tuple[int, ...]:
        self._expire_overdue()
        return tuple(self._pending)

    def _expire_overdue(self) -> None:
        overdue = [invocation for invocation in self._pending.values() if invocation.expired]
        for invocation in overdue:
            del self._pending[invocation.id]
            invocation.expire()

    # ------------------------------------------------------------------
    # Raw protocol traffic
    # ------------------------------------------------------------------

    async def send_request(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
        request: InvocationRequest | None = None,
    ) -> PendingInvocation:
        """Send a request and return its :class:`PendingInvocation` without waiting."""
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        connection = self._require_connection()
        request_id = request.id if request is not None else next(self._ids)
        invocation = PendingInvocation(
            request_id,
            method,
            deadline=anyio.current_time() + (timeout if timeout is not None else self._request_timeout),
            request=request,
            on_retire=self._retire,
        )
        self._pending[request_id] = invocation

        frame = types.JSONRPCMessage(
            types.JSONRPCRequest(
                jsonrpc="2.0",
                id=request_id,
                method=method,
                params=dict(params) if params is not None else None,
            )
        )
        try:
            await connection.send(frame)
        except SendError as exc:
            self._retire(request_id)
            raise ConnectionLost(f"Could not send {method}: {exc}", cause=exc) from exc
        logger.debug("Sent %s #%d", method, request_id)
        return invocation

    async def request(
        self, method: str, params: Mapping[str, Any] | None = None, *, timeout: float | None = None
    ) -> dict[str, Any]:
        """Send a request and wait for its raw ``result`` object."""
        invocation = await self.send_request(method, params, timeout=timeout)
        return await invocation.wait()

    async def notify(self, method: str, params: Mapping[str, Any] | None = None) -> None:
        connection = self._require_connection()
        frame = types.JSONRPCMessage(
            types.JSONRPCNotification(
                jsonrpc="2.0", method=method, params=dict(params) if params is not None else None
            )
        )
        try:
            await connection.send(frame)
        except SendError as exc:
            raise ConnectionLost(f"Could not send {method}: {exc}", cause=exc) from exc

    async def respond(self, request_id: types.RequestId, result: Mapping[str, Any]) -> None:
        await self._send_reply(types.JSONRPCResponse(jsonrpc="2.0", id=request_id, result=dict(result)))

    async def respond_error(self, request_id: types.RequestId, code: int, message: str) -> None:
        await self._send_reply(
            types.JSONRPCError(jsonrpc="2.0", id=request_id, error=types.ErrorData(code=code, message=message))
        )

    async def _send_reply(self, reply: types.JSONRPCResponse | types.JSONRPCError) -> None:
        connection = self._connection
        if connection is None:
            return
        try:
            await connection.send(types.JSONRPCMessage(reply))
        except SendError as exc:
            logger.debug("Could not answer server request %s: %s", reply.id, exc)

    def handle_response(self, message: types.JSONRPCResponse | types.JSONRPCError) -> bool:
        """Deliver *message* to its pending invocation; return ``False`` if dropped."""
        request_id = _normalise_id(message.id)
        invocation = self._pending.pop(request_id, None) if request_id is not None else None
        if invocation is None:
            logger.debug("Dropping response for unknown or retired request id %r", message.id)
            return False
        if invocation.expired:
            invocation.expire()
            logger.debug("Dropping late response for %s #%d", invocation.method, invocation.id)
            return False

        elapsed_ms = (anyio.current_time() - invocation.started_at) * 1000
        if isinstance(message, types.JSONRPCError):
            error = message.error
            logger.debug(
                "%s #%d failed with %d", invocation.method, invocation.id, error.code, extra={"duration_ms": elapsed_ms}
            )
            invocation.fail(RemoteError(error.message, code=error.code, data=error.data, request_id=invocation.id))
        else:
            logger.debug("%s #%d completed", invocation.method, invocation.id, extra={"duration_ms": elapsed_ms})
            invocation.resolve(message.result)
        return True

    def _retire(self, request_id: int) -> None:
        self._pending.pop(request_id, None)

    def _require_connection(self) -> Connection:
        if self._connection is None:
            raise NotReady("No open connection")
        return self._connection

    # ------------------------------------------------------------------
    # Capability invocations
    # ------------------------------------------------------------------

    async def start_tool_call(
        self, name: str, arguments: Mapping[str, Any] | None = None, *, timeout: float | None = None
    ) -> PendingInvocation:
        self._require_ready()
        tool = self._catalog.snapshot.find_tool(name)
        if tool is None:
            raise UnknownCapability(f"Unknown tool '{name}'")
        try:
            validate_tool_arguments(tool, arguments)
        except ArgumentValidationError as exc:
            raise InvalidArguments(str(exc)) from exc
        return await self._start(InvocationKind.TOOL_CALL, name, dict(arguments or {}), timeout)

    async def start_resource_read(self, uri: str, *, timeout: float | None = None) -> PendingInvocation:
        self._require_ready()
        resource = self._catalog.snapshot.find_resource(uri)
        if resource is None:
            raise UnknownCapability(f"Unknown resource '{uri}'")
        return await self._start(InvocationKind.RESOURCE_READ, str(resource.uri), None, timeout)

    async def start_prompt_get(
        self, name: str, arguments: Mapping[str, Any] | None = None, *, timeout: float | None = None
    ) -> PendingInvocation:
        self._require_ready()
        prompt = self._catalog.snapshot.find_prompt(name)
        if prompt is None:
            raise UnknownCapability(f"Unknown prompt '{name}'")
        try:
            coerced = validate_prompt_arguments(prompt, arguments)
        except ArgumentValidationError as exc:
            raise InvalidArguments(str(exc)) from exc
        return await self._start(InvocationKind.PROMPT_GET, name, coerced or None, timeout)

    async def cancel(self, request_id: int, *, reason: str | None = None) -> bool:
        """Retire *request_id* locally and tell the server; ``False`` if it was not in flight."""
        invocation = self._pending.pop(request_id, None)
        if invocation is None:
            return False
        invocation.fail(Cancelled(reason or f"{invocation.method} #{request_id} cancelled", request_id=request_id))

        params: dict[str, Any] = {"requestId": request_id}
        if reason:
            params["reason"] = reason
        try:
            await self.notify("notifications/cancelled", params)
        except (ConnectionLost, NotReady) as exc:
            logger.debug("Cancellation notice for #%d not delivered: %s", request_id, exc)
        return True

    def _require_ready(self) -> None:
        state = self._state()
        if state is not SessionState.READY or self._connection is None:
            raise NotReady(f"Session is {state.value}; capabilities can only be invoked when ready")

    async def _start(
        self,
        kind: InvocationKind,
        target: str,
        arguments: dict[str, Any] | None,
        timeout: float | None,
    ) -> PendingInvocation:
        request = InvocationRequest(id=next(self._ids), kind=kind, target=target, arguments=arguments)
        return await self.send_request(kind.value, request.params(), timeout=timeout, request=request)


def _normalise_id(value: types.RequestId) -> int | None:
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "Dispatcher",
    "Failure",
    "InvocationKind",
    "InvocationRequest",
    "InvocationResult",
    "PendingInvocation",
    "Success",
]
