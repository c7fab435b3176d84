# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Public client-side engine for mcpconnect.

The implementation details live in :mod:`mcpconnect.client.core` and related
modules; this wrapper exposes the pieces that most applications use.
"""

from __future__ import annotations

from .auth import (
    AuthFlow,
    ClientCredentialsAuth,
    Credential,
    CredentialStore,
    DeviceAuthorizationAuth,
    FileCredentialStore,
    InMemoryCredentialStore,
    StaticTokenAuth,
)
from .catalog import CapabilityCatalog, CapabilityKind, CatalogSnapshot, UNINITIALIZED
from .connection import open_connection
from .core import MCPClient, SessionListener
from .dispatcher import Failure, InvocationKind, InvocationRequest, InvocationResult, PendingInvocation, Success
from .state import Session, SessionState
from .transports import (
    Connection,
    Discovery,
    SSETransport,
    StreamConnection,
    StreamableHTTPTransport,
    Transport,
    create_transport,
)


__all__ = [
    "MCPClient",
    "SessionListener",
    "open_connection",
    "Session",
    "SessionState",
    "CapabilityCatalog",
    "CapabilityKind",
    "CatalogSnapshot",
    "UNINITIALIZED",
    "InvocationKind",
    "InvocationRequest",
    "InvocationResult",
    "PendingInvocation",
    "Success",
    "Failure",
    "Connection",
    "Discovery",
    "Transport",
    "StreamConnection",
    "StreamableHTTPTransport",
    "SSETransport",
    "create_transport",
    "AuthFlow",
    "Credential",
    "CredentialStore",
    "InMemoryCredentialStore",
    "FileCredentialStore",
    "StaticTokenAuth",
    "ClientCredentialsAuth",
    "DeviceAuthorizationAuth",
]
