# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Session state machine and the public client facade.

`MCPClient` drives one session through discovery, optional authorization, the
``initialize`` handshake and the capability fetch, then keeps the connection
serviced until it drops or the host disconnects.  The lifecycle follows
``docs/mcp/core/lifecycle/lifecycle-phases.md``; the states and legal moves
live in :mod:`mcpconnect.client.state`.

Every change to the session goes through :meth:`MCPClient._transition`, which
validates the move, publishes a new immutable :class:`Session` snapshot in a
single assignment and notifies subscribers.  It never awaits, so a reader can
never observe a half-applied transition.

The connection itself lives in a background task hosted by the client's task
group, because SDK transports must be entered and exited from the same task.
Lifecycle calls (``connect``, ``retry``, ``authenticate``) start that task and
return once the attempt settles in ``PENDING_AUTH``, ``READY`` or ``FAILED``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
import inspect
import logging
from typing import Any

import anyio
from anyio.abc import TaskGroup
from mcp import types
from pydantic import ValidationError

from ..config import ClientConfig, ServerEndpoint
from ..errors import (
    AlreadyConnected,
    AlreadyConnecting,
    AuthError,
    AuthRejected,
    Cancelled,
    CatalogError,
    ConnectError,
    ConnectionClosed,
    ConnectionLost,
    ErrorInfo,
    InvalidTransition,
    InvocationError,
    NotReady,
    SessionError,
)
from ..utils import get_logger
from ..versioning import REQUESTED_PROTOCOL_VERSION, ServerFeatures, negotiate_version
from .auth import AuthFlow, Credential
from .catalog import CapabilityCatalog, CatalogSnapshot
from .dispatcher import Dispatcher, InvocationResult, PendingInvocation
from .state import IDLE_SESSION, Session, SessionState, check_transition
from .transports import Connection, Discovery, NO_AUTH, StreamableHTTPTransport, Transport


logger = get_logger("mcpconnect.client")

SessionListener = Callable[[Session], Awaitable[None] | None]

LIST_CHANGED_NOTIFICATIONS = frozenset(
    {
        "notifications/tools/list_changed",
        "notifications/resources/list_changed",
        "notifications/prompts/list_changed",
    }
)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}

_KEEP: Any = object()


class _Phase(Enum):
    DISCOVER = "discover"
    AUTHENTICATE = "authenticate"


class _ConnectionRun:
    """Book-keeping for one open connection; the first failure wins."""

    def __init__(self) -> None:
        self.failure: SessionError | None = None
        self.task_group: TaskGroup | None = None

    def fail(self, error: SessionError) -> None:
        if self.failure is None:
            self.failure = error
        if self.task_group is not None:
            self.task_group.cancel_scope.cancel()


class MCPClient:
    """Client-side MCP session engine.

    Use as an async context manager::

        async with MCPClient(auth=StaticTokenAuth(token)) as client:
            await client.connect(ServerEndpoint("https://example.com/mcp", "inspector"))
            if client.state is SessionState.READY:
                result = await client.call_tool("search", {"query": "x"})

    Parameters:
        transport: Connection factory; defaults to streamable HTTP.
        auth: Flow used when discovery reports that authorization is required.
        config: Timeouts and reconnection policy.
        capabilities: Client capabilities advertised during ``initialize``.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        auth: AuthFlow | None = None,
        config: ClientConfig | None = None,
        capabilities: types.ClientCapabilities | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._transport: Transport = transport or StreamableHTTPTransport(
            timeout=self._config.handshake_timeout, discovery_timeout=self._config.discovery_timeout
        )
        self._auth = auth
        self._capabilities = capabilities or types.ClientCapabilities()

        self._session: Session = IDLE_SESSION
        self._catalog = CapabilityCatalog()
        self._dispatcher: Dispatcher | None = None
        self._discovery: Discovery | None = None
        self._features: ServerFeatures | None = None
        self.initialize_result: types.InitializeResult | None = None

        self._task_group: TaskGroup | None = None
        self._lifecycle_lock = anyio.Lock()
        self._attempt_scope: anyio.CancelScope | None = None
        self._attempt_done: anyio.Event | None = None
        self._run: _ConnectionRun | None = None
        self._settled = anyio.Event()
        self._changed = anyio.Event()
        self._listeners: list[SessionListener] = []
        self._reload_requested = False
        self._reconnect_attempts = 0

    # ---------------------------------------------------------------------
    # Async context manager
    # ---------------------------------------------------------------------

    async def __aenter__(self) -> "MCPClient":
        task_group = anyio.create_task_group()
        await task_group.__aenter__()
        self._task_group = task_group
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool | None:
        task_group = self._task_group
        if task_group is None:
            return None
        try:
            with anyio.CancelScope(shield=True):
                await self.disconnect()
        finally:
            self._task_group = None
            task_group.cancel_scope.cancel()
            # The body's exception stays with the caller instead of being
            # folded into the group's ExceptionGroup.
            await task_group.__aexit__(None, None, None)
        return None

    # ---------------------------------------------------------------------
    # Observable state
    # ---------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def last_error(self) -> ErrorInfo | None:
        return self._session.last_error

    @property
    def endpoint(self) -> ServerEndpoint | None:
        return self._session.endpoint

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def catalog(self) -> CatalogSnapshot:
        return self._catalog.snapshot

    @property
    def tools(self) -> tuple[types.Tool, ...]:
        return self._catalog.tools

    @property
    def resources(self) -> tuple[types.Resource, ...]:
        return self._catalog.resources

    @property
    def prompts(self) -> tuple[types.Prompt, ...]:
        return self._catalog.prompts

    @property
    def discovery(self) -> Discovery | None:
        return self._discovery

    @property
    def in_flight(self) -> tuple[int, ...]:
        return self._dispatcher.in_flight if self._dispatcher is not None else ()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call *listener* with every new :class:`Session` snapshot.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_for(self, *states: SessionState, timeout: float | None = None) -> SessionState:
        """Block until the session is in one of *states*."""
        with anyio.fail_after(timeout):
            while self.state not in states:
                await self._changed.wait()
        return self.state

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    async def connect(
        self,
        endpoint: ServerEndpoint | str,
        *,
        client_name: str | None = None,
        replace: bool = False,
    ) -> SessionState:
        """Start a session against *endpoint*.

        Returns once the attempt settles in ``PENDING_AUTH``, ``READY`` or
        ``FAILED``.  Failures are reported through :attr:`last_error`, not
        raised.

        Raises:
            AlreadyConnecting: Another attempt is in progress.
            AlreadyConnected: A session exists; pass ``replace=True`` to tear it
                down first.
        """
        self._require_task_group()
        if isinstance(endpoint, str):
            endpoint = ServerEndpoint(endpoint, client_name) if client_name else ServerEndpoint(endpoint)
        if replace:
            await self.disconnect()

        async with self._lifecycle_lock:
            state = self.state
            if state.is_in_progress:
                raise AlreadyConnecting(f"A connection attempt is already {state.value}")
            if state is not SessionState.IDLE:
                raise AlreadyConnected(f"Session is {state.value}; disconnect() before connecting again")

            self._dispatcher = Dispatcher(
                catalog=self._catalog, state=lambda: self.state, request_timeout=self._config.request_timeout
            )
            self._discovery = None
            self._reconnect_attempts = 0
            settled = self._arm_settled()
            self._transition(SessionState.DISCOVERING, endpoint=endpoint)
            self._spawn(endpoint, _Phase.DISCOVER)

        await settled.wait()
        return self.state

    async def retry(self) -> SessionState:
        """Restart a failed session from discovery without a new ``connect``."""
        async with self._lifecycle_lock:
            if self.state is not SessionState.FAILED:
                raise InvalidTransition(f"retry() requires a failed session, not {self.state.value}")
            await self._stop_attempt()
            endpoint = self._require_endpoint()
            self._reconnect_attempts = 0
            settled = self._arm_settled()
            self._transition(SessionState.DISCOVERING)
            self._spawn(endpoint, _Phase.DISCOVER)

        await settled.wait()
        return self.state

    async def authenticate(self) -> SessionState:
        """Run the auth flow for a session waiting in ``PENDING_AUTH`` (or ``FAILED``)."""
        async with self._lifecycle_lock:
            if self.state not in (SessionState.PENDING_AUTH, SessionState.FAILED):
                raise InvalidTransition(f"authenticate() is not allowed while {self.state.value}")
            await self._stop_attempt()
            endpoint = self._require_endpoint()
            settled = self._arm_settled()
            self._transition(SessionState.AUTHENTICATING)
            self._spawn(endpoint, _Phase.AUTHENTICATE)

        await settled.wait()
        return self.state

    async def disconnect(self, *, logout: bool = False) -> None:
        """Tear down the session and return to ``IDLE``.

        Outstanding invocations fail with :class:`Cancelled`.  Stored
        credentials are kept unless *logout* is true.
        """
        async with self._lifecycle_lock:
            endpoint = self.endpoint
            await self._stop_attempt()

            if self._dispatcher is not None:
                self._dispatcher.fail_pending(lambda: Cancelled("Session disconnected"))
                self._dispatcher = None
            if logout:
                self.clear_storage(endpoint.url if endpoint is not None else None)

            self._discovery = None
            self._features = None
            self.initialize_result = None
            if self.state is not SessionState.IDLE:
                self._transition(SessionState.IDLE)
            self._settled.set()

    async def logout(self) -> None:
        await self.disconnect(logout=True)

    def clear_storage(self, url: str | None = None) -> None:
        """Forget stored credentials.  Always succeeds."""
        if self._auth is not None:
            self._auth.clear_storage(url)

    async def refresh(self) -> CatalogSnapshot:
        """Re-fetch the capability catalog of a ready session.

        Raises:
            NotReady: The session is not ``READY``.
            CatalogError: The fetch failed; the session moves to ``FAILED``.
        """
        run = self._run
        if self.state is not SessionState.READY or run is None:
            raise NotReady(f"Session is {self.state.value}; refresh requires a ready session")
        await self._reload_catalog(run)
        if self.state is not SessionState.READY:
            raise run.failure or CatalogError("Capability refresh did not complete")
        return self._catalog.snapshot

    # ---------------------------------------------------------------------
    # Invocations
    # ---------------------------------------------------------------------

    async def call_tool(
        self, name: str, arguments: Mapping[str, Any] | None = None, *, timeout: float | None = None
    ) -> InvocationResult[types.CallToolResult]:
        """Invoke tool *name* and wait for its result."""
        pending = await self.start_tool_call(name, arguments, timeout=timeout)
        return await pending.result()

    async def read_resource(self, uri: str, *, timeout: float | None = None) -> InvocationResult[types.ReadResourceResult]:
        """Read resource *uri* and wait for its contents."""
        pending = await self.start_resource_read(uri, timeout=timeout)
        return await pending.result()

    async def get_prompt(
        self, name: str, arguments: Mapping[str, Any] | None = None, *, timeout: float | None = None
    ) -> InvocationResult[types.GetPromptResult]:
        """Render prompt *name* with *arguments*."""
        pending = await self.start_prompt_get(name, arguments, timeout=timeout)
        return await pending.result()

    async def start_tool_call(
        self, name: str, arguments: Mapping[str, Any] | None = None, *, timeout: float | None = None
    ) -> PendingInvocation:
        return await self._require_dispatcher().start_tool_call(name, arguments, timeout=timeout)

    async def start_resource_read(self, uri: str, *, timeout: float | None = None) -> PendingInvocation:
        return await self._require_dispatcher().start_resource_read(uri, timeout=timeout)

    async def start_prompt_get(
        self, name: str, arguments: Mapping[str, Any] | None = None, *, timeout: float | None = None
    ) -> PendingInvocation:
        return await self._require_dispatcher().start_prompt_get(name, arguments, timeout=timeout)

    async def cancel(self, request_id: int, *, reason: str | None = None) -> bool:
        """Cancel an in-flight invocation; ``False`` if it already finished."""
        if self._dispatcher is None:
            return False
        return await self._dispatcher.cancel(request_id, reason=reason)

    def _require_dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            raise NotReady("No session; call connect() first")
        return self._dispatcher

    # ---------------------------------------------------------------------
    # Transitions
    # ---------------------------------------------------------------------

    def _transition(
        self,
        target: SessionState,
        *,
        error: SessionError | None = None,
        endpoint: ServerEndpoint | None = None,
        credential: Credential | None = _KEEP,
    ) -> None:
        previous = self._session
        check_transition(previous.state, target)

        if target is SessionState.IDLE:
            session = IDLE_SESSION
        else:
            changes: dict[str, Any] = {"state": target}
            if endpoint is not None:
                changes["endpoint"] = endpoint
            if credential is not _KEEP:
                changes["credential"] = credential
            if target is SessionState.FAILED:
                changes["last_error"] = error.info if error is not None else None
            elif target is SessionState.DISCOVERING:
                changes["last_error"] = None
            session = previous.evolve(**changes)

        if target in (SessionState.IDLE, SessionState.DISCOVERING, SessionState.FAILED):
            self._catalog.clear()

        self._session = session

        if target is SessionState.FAILED and error is not None:
            logger.warning("Session %s -> failed: %s", previous.state.value, error.info)
        else:
            logger.info("Session %s -> %s", previous.state.value, target.value)

        if target.is_settled:
            self._settled.set()
        changed, self._changed = self._changed, anyio.Event()
        changed.set()
        self._notify(session)

    def _notify(self, session: Session) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(session)
            except Exception:
                logger.exception("Session listener raised")
                continue
            if not inspect.iscoroutine(outcome):
                continue
            if self._task_group is None:
                outcome.close()
            else:
                self._task_group.start_soon(_await_listener, outcome)

    def _fail(self, error: SessionError) -> None:
        self._transition(SessionState.FAILED, error=error)

    def _arm_settled(self) -> anyio.Event:
        self._settled = anyio.Event()
        return self._settled

    def _require_endpoint(self) -> ServerEndpoint:
        endpoint = self.endpoint
        if endpoint is None:
            raise InvalidTransition("No endpoint configured; call connect() first")
        return endpoint

    # ---------------------------------------------------------------------
    # Attempt task
    # ---------------------------------------------------------------------

    def _require_task_group(self) -> TaskGroup:
        if self._task_group is None:
            raise RuntimeError("MCPClient not started; use 'async with MCPClient(...)' first.")
        return self._task_group

    def _spawn(self, endpoint: ServerEndpoint, phase: _Phase) -> None:
        task_group = self._require_task_group()
        scope = anyio.CancelScope()
        done = anyio.Event()
        self._attempt_scope, self._attempt_done = scope, done

        async def runner() -> None:
            try:
                with scope:
                    await self._drive(endpoint, phase)
            finally:
                done.set()

        task_group.start_soon(runner)

    async def _stop_attempt(self) -> None:
        scope, done = self._attempt_scope, self._attempt_done
        self._attempt_scope = self._attempt_done = None
        if scope is not None:
            scope.cancel()
        if done is not None:
            await done.wait()
        self._run = None

    async def _drive(self, endpoint: ServerEndpoint, phase: _Phase) -> None:
        error = await self._attempt(endpoint, phase)
        reconnecting = False
        while self._should_reconnect(error, reconnecting):
            reconnecting = True
            self._reconnect_attempts += 1
            logger.info(
                "Reconnecting to %s in %.1fs (attempt %d/%d)",
                endpoint.url,
                self._config.reconnect_delay,
                self._reconnect_attempts,
                self._config.max_reconnect_attempts,
            )
            await anyio.sleep(self._config.reconnect_delay)
            if self.state is not SessionState.FAILED:
                return
            self._transition(SessionState.DISCOVERING)
            error = await self._attempt(endpoint, _Phase.DISCOVER)

    def _should_reconnect(self, error: SessionError | None, reconnecting: bool) -> bool:
        if error is None or not self._config.auto_reconnect:
            return False
        if self._reconnect_attempts >= self._config.max_reconnect_attempts:
            return False
        if isinstance(error, ConnectionLost):
            return True
        return reconnecting and isinstance(error, ConnectError)

    async def _attempt(self, endpoint: ServerEndpoint, phase: _Phase) -> SessionError | None:
        credential: Credential | None = None
        if phase is _Phase.DISCOVER:
            try:
                discovery = await self._discover(endpoint)
            except ConnectError as exc:
                self._fail(exc)
                return exc
            self._discovery = discovery
            if discovery.auth_required:
                credential = self._auth.load(endpoint.url) if self._auth is not None else None
                if credential is None:
                    self._transition(SessionState.PENDING_AUTH)
                    return None
                logger.debug("Reusing stored credential for %s", endpoint.url)
        else:
            try:
                credential = await self._obtain_credential(endpoint)
            except AuthError as exc:
                self._fail(exc)
                return exc

        self._transition(SessionState.CONNECTING, credential=credential)
        error = await self._serve(endpoint, credential)
        if error is not None:
            if isinstance(error, AuthError) and credential is not None:
                self.clear_storage(endpoint.url)
            self._fail(error)
        return error

    async def _discover(self, endpoint: ServerEndpoint) -> Discovery:
        try:
            with anyio.fail_after(self._config.discovery_timeout):
                return await self._transport.discover(endpoint)
        except TimeoutError as exc:
            raise ConnectError(f"Discovery against {endpoint.url} timed out", cause=exc) from exc
        except ConnectError:
            raise
        except Exception as exc:
            raise ConnectError(f"Discovery against {endpoint.url} failed: {exc}", cause=exc) from exc

    async def _obtain_credential(self, endpoint: ServerEndpoint) -> Credential:
        if self._auth is None:
            raise AuthError("Server requires authorization but no auth flow is configured")
        discovery = self._discovery
        if discovery is None:
            try:
                discovery = self._discovery = await self._discover(endpoint)
            except ConnectError as exc:
                raise AuthError(f"Could not locate the authorization server: {exc.message}", cause=exc) from exc
        try:
            return await self._auth.authenticate(endpoint.url, discovery or NO_AUTH)
        except AuthError:
            raise
        except Exception as exc:
            raise AuthError(f"Authentication failed: {exc}", cause=exc) from exc

    # ---------------------------------------------------------------------
    # Connection
    # ---------------------------------------------------------------------

    async def _serve(self, endpoint: ServerEndpoint, credential: Credential | None) -> SessionError | None:
        """Open the transport and service it; return the failure that ended it."""
        run = _ConnectionRun()
        self._run = run
        try:
            async with self._transport.open(endpoint, credential) as connection:
                await self._run_connection(connection, endpoint, run)
        except AuthRejected as exc:
            run.fail(AuthError(exc.message, cause=exc))
        except ConnectionClosed as exc:
            run.fail(self._drop_error(exc))
        except SessionError as exc:
            run.fail(exc)
        except Exception as exc:
            run.fail(self._drop_error(ConnectionClosed(str(exc), cause=exc)))
        finally:
            if self._run is run:
                self._run = None
        return run.failure or self._drop_error(ConnectionClosed("Connection ended"))

    async def _run_connection(self, connection: Connection, endpoint: ServerEndpoint, run: _ConnectionRun) -> None:
        dispatcher = self._require_dispatcher()
        dispatcher.attach(connection)
        self._reload_requested = False
        try:
            async with anyio.create_task_group() as tg:
                run.task_group = tg
                tg.start_soon(self._pump, connection, run)
                try:
                    await self._handshake(endpoint)
                    await self._catalog.refresh(dispatcher.request, self._features)
                except SessionError as exc:
                    run.fail(exc)
                else:
                    self._reconnect_attempts = 0
                    self._transition(SessionState.READY)
                    if self._reload_requested:
                        # A list_changed arrived while the first fetch was running.
                        tg.start_soon(self._reload_catalog, run)
        finally:
            run.task_group = None
            dispatcher.detach()

    async def _handshake(self, endpoint: ServerEndpoint) -> None:
        params = {
            "protocolVersion": REQUESTED_PROTOCOL_VERSION,
            "capabilities": self._capabilities.model_dump(by_alias=True, exclude_none=True, mode="json"),
            "clientInfo": {"name": endpoint.client_name, "version": endpoint.client_version},
        }
        dispatcher = self._require_dispatcher()
        try:
            raw = await dispatcher.request("initialize", params, timeout=self._config.handshake_timeout)
            result = types.InitializeResult.model_validate(raw)
            negotiate_version(result)
            await dispatcher.notify("notifications/initialized")
        except ConnectError:
            raise
        except ValidationError as exc:
            raise ConnectError("Server sent a malformed initialize result", cause=exc) from exc
        except (InvocationError, ConnectionLost) as exc:
            raise ConnectError(f"Handshake failed: {exc}", cause=exc) from exc

        self.initialize_result = result
        self._features = ServerFeatures.from_capabilities(result.capabilities)
        logger.info(
            "Connected to %s %s (protocol %s)",
            result.serverInfo.name,
            result.serverInfo.version,
            result.protocolVersion,
        )
        self._transition(SessionState.LOADING_CAPABILITIES)

    async def _pump(self, connection: Connection, run: _ConnectionRun) -> None:
        try:
            async for frame in connection.receive():
                self._on_frame(frame, run)
        except ConnectionClosed as exc:
            error = self._drop_error(exc)
        else:
            error = self._drop_error(ConnectionClosed("Server ended the stream"))

        dispatcher = self._dispatcher
        if dispatcher is not None:
            dispatcher.fail_pending(lambda: ConnectionLost("Connection dropped before a response arrived"))
        run.fail(error)

    def _drop_error(self, closed: ConnectionClosed) -> SessionError:
        if isinstance(closed, AuthRejected):
            return AuthError(closed.message, cause=closed)
        state = self.state
        if state in (SessionState.CONNECTING, SessionState.DISCOVERING, SessionState.AUTHENTICATING):
            return ConnectError(closed.message, cause=closed)
        if state is SessionState.LOADING_CAPABILITIES and not self._catalog.snapshot.initialized:
            return CatalogError(f"Connection dropped while loading capabilities: {closed.message}", cause=closed)
        return ConnectionLost(closed.message, cause=closed)

    def _on_frame(self, frame: types.JSONRPCMessage, run: _ConnectionRun) -> None:
        message = frame.root
        dispatcher = self._dispatcher
        if dispatcher is None or run.task_group is None:
            return

        if isinstance(message, (types.JSONRPCResponse, types.JSONRPCError)):
            dispatcher.handle_response(message)
        elif isinstance(message, types.JSONRPCRequest):
            run.task_group.start_soon(self._answer_server_request, dispatcher, message)
        elif isinstance(message, types.JSONRPCNotification):
            self._on_notification(message, run)

    def _on_notification(self, message: types.JSONRPCNotification, run: _ConnectionRun) -> None:
        method = message.method
        if method in LIST_CHANGED_NOTIFICATIONS:
            logger.debug("Server pushed %s", method)
            if self.state in (SessionState.READY, SessionState.LOADING_CAPABILITIES) and run.task_group is not None:
                run.task_group.start_soon(self._reload_catalog, run)
        elif method == "notifications/message":
            params = message.params or {}
            level = _LOG_LEVELS.get(str(params.get("level", "info")), logging.INFO)
            source = params.get("logger") or "server"
            logger.log(level, "[%s] %s", source, params.get("data"))
        else:
            logger.debug("Ignoring server notification %s", method)

    async def _answer_server_request(self, dispatcher: Dispatcher, message: types.JSONRPCRequest) -> None:
        if message.method == "ping":
            await dispatcher.respond(message.id, {})
        else:
            await dispatcher.respond_error(message.id, types.METHOD_NOT_FOUND, f"Method not found: {message.method}")

    async def _reload_catalog(self, run: _ConnectionRun) -> None:
        if self.state is SessionState.LOADING_CAPABILITIES:
            self._reload_requested = True
            return
        self._reload_requested = True
        while self._reload_requested and self.state is SessionState.READY and run.failure is None:
            self._reload_requested = False
            self._transition(SessionState.LOADING_CAPABILITIES)
            try:
                await self._catalog.refresh(self._require_dispatcher().request, self._features)
            except (CatalogError, NotReady) as exc:
                run.fail(exc if isinstance(exc, CatalogError) else CatalogError(str(exc), cause=exc))
                return
            if run.failure is not None:
                return
            self._transition(SessionState.READY)


async def _await_listener(outcome: Awaitable[None]) -> None:
    try:
        await outcome
    except Exception:
        logger.exception("Session listener raised")


__all__ = ["MCPClient", "SessionListener"]
