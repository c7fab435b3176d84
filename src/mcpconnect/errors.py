# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Error taxonomy for the client engine.

Failures fall into three families:

* :class:`SessionError` – transport and protocol failures.  The state machine
  captures them into ``MCPClient.last_error`` and moves the session to
  ``FAILED``; they never escape ``connect()`` or ``retry()``.
* :class:`InvocationError` – raised directly to the caller of ``call_tool``,
  ``read_resource`` or ``get_prompt``.  Session state is untouched.
* :class:`LifecycleError` – misuse of the lifecycle API (connecting twice,
  illegal transitions).

Transport implementations raise :class:`SendError`, :class:`ConnectionClosed`
and :class:`AuthRejected`; the engine translates those into session errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    CONNECT = "connect_error"
    AUTH = "auth_error"
    CATALOG = "catalog_error"
    CONNECTION_LOST = "connection_lost"
    NOT_READY = "not_ready"
    UNKNOWN_CAPABILITY = "unknown_capability"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INVALID_ARGUMENTS = "invalid_arguments"
    REMOTE = "remote_error"


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """Inspectable description of a failure.

    Attributes:
        kind: Taxonomy bucket.
        message: Human-readable cause.
        cause: Underlying exception, when one exists.
    """

    kind: ErrorKind
    message: str
    cause: BaseException | None = None

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class MCPConnectError(Exception):
    """Base class for every error raised by :mod:`mcpconnect`."""

    kind: ErrorKind | None = None

    def __init__(self, message: str = "", *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    @property
    def info(self) -> ErrorInfo:
        if self.kind is None:
            raise TypeError(f"{type(self).__name__} is not part of the error taxonomy")
        return ErrorInfo(kind=self.kind, message=self.message or type(self).__name__, cause=self.__cause__)


# ---------------------------------------------------------------------------
# Session-level failures
# ---------------------------------------------------------------------------


class SessionError(MCPConnectError):
    """Failure that moves the session to ``FAILED``."""


class ConnectError(SessionError):
    """Transport could not be opened or the handshake failed."""

    kind = ErrorKind.CONNECT


class AuthError(SessionError):
    """Credential could not be obtained, or was rejected or expired."""

    kind = ErrorKind.AUTH


class CatalogError(SessionError):
    """One of the capability list operations failed."""

    kind = ErrorKind.CATALOG


class ConnectionLost(SessionError):
    """The transport dropped after the session became ready."""

    kind = ErrorKind.CONNECTION_LOST


# ---------------------------------------------------------------------------
# Invocation-level failures
# ---------------------------------------------------------------------------


class InvocationError(MCPConnectError):
    """Failure returned to a single capability invocation."""

    def __init__(
        self,
        message: str = "",
        *,
        request_id: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.request_id = request_id


class NotReady(InvocationError):
    kind = ErrorKind.NOT_READY


class UnknownCapability(InvocationError):
    kind = ErrorKind.UNKNOWN_CAPABILITY


class Timeout(InvocationError):
    kind = ErrorKind.TIMEOUT


class Cancelled(InvocationError):
    kind = ErrorKind.CANCELLED


class InvalidArguments(InvocationError):
    """Arguments do not satisfy the capability's declared schema."""

    kind = ErrorKind.INVALID_ARGUMENTS


class RemoteError(InvocationError):
    """The server answered with a JSON-RPC error object."""

    kind = ErrorKind.REMOTE

    def __init__(
        self,
        message: str = "",
        *,
        code: int,
        data: Any = None,
        request_id: int | None = None,
    ) -> None:
        super().__init__(message, request_id=request_id)
        self.code = code
        self.data = data


# ---------------------------------------------------------------------------
# Lifecycle misuse
# ---------------------------------------------------------------------------


class LifecycleError(MCPConnectError):
    """The lifecycle API was used from a state that does not allow it."""


class AlreadyConnecting(LifecycleError):
    pass


class AlreadyConnected(LifecycleError):
    pass


class InvalidTransition(LifecycleError):
    pass


# ---------------------------------------------------------------------------
# Transport signals
# ---------------------------------------------------------------------------


class TransportError(MCPConnectError):
    """Base class for failures reported by a transport."""


class SendError(TransportError):
    """A frame could not be written to the channel."""


class ConnectionClosed(TransportError):
    """The peer closed the channel; distinct from a caller-initiated close."""


class AuthRejected(ConnectionClosed):
    """The server refused the request with HTTP 401."""


__all__ = [
    "ErrorKind",
    "ErrorInfo",
    "MCPConnectError",
    "SessionError",
    "ConnectError",
    "AuthError",
    "CatalogError",
    "ConnectionLost",
    "InvocationError",
    "NotReady",
    "UnknownCapability",
    "Timeout",
    "Cancelled",
    "InvalidArguments",
    "RemoteError",
    "LifecycleError",
    "AlreadyConnecting",
    "AlreadyConnected",
    "InvalidTransition",
    "TransportError",
    "SendError",
    "ConnectionClosed",
    "AuthRejected",
]
