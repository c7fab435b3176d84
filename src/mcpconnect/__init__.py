# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""mcpconnect: client-side MCP session engine."""

from __future__ import annotations

from . import types
from .client import (
    ClientCredentialsAuth,
    DeviceAuthorizationAuth,
    FileCredentialStore,
    InMemoryCredentialStore,
    MCPClient,
    SessionState,
    StaticTokenAuth,
    open_connection,
)
from .config import ClientConfig, ServerEndpoint
from .errors import (
    AuthError,
    Cancelled,
    CatalogError,
    ConnectError,
    ConnectionLost,
    ErrorInfo,
    ErrorKind,
    InvalidArguments,
    MCPConnectError,
    NotReady,
    RemoteError,
    Timeout,
    UnknownCapability,
)
from .utils import get_logger, setup_logger


__all__ = [
    "MCPClient",
    "open_connection",
    "ServerEndpoint",
    "ClientConfig",
    "SessionState",
    "StaticTokenAuth",
    "ClientCredentialsAuth",
    "DeviceAuthorizationAuth",
    "InMemoryCredentialStore",
    "FileCredentialStore",
    "ErrorInfo",
    "ErrorKind",
    "MCPConnectError",
    "ConnectError",
    "AuthError",
    "CatalogError",
    "ConnectionLost",
    "NotReady",
    "UnknownCapability",
    "Timeout",
    "Cancelled",
    "InvalidArguments",
    "RemoteError",
    "types",
    "setup_logger",
    "get_logger",
]
