# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Endpoint and engine configuration.

Both objects are plain dataclasses so hosts can build them directly; the
``from_env`` constructors mirror the ``MCP_SERVER_URL`` convention used by the
example clients and the ``MCPCONNECT_*`` prefix used for logging.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from typing import Final
from urllib.parse import urlparse


ENV_SERVER_URL: Final[str] = "MCP_SERVER_URL"
ENV_CLIENT_NAME: Final[str] = "MCP_CLIENT_NAME"
ENV_PREFIX: Final[str] = "MCPCONNECT_"

DEFAULT_CLIENT_NAME: Final[str] = "mcpconnect"
DEFAULT_CLIENT_VERSION: Final[str] = "0.1.0"

_ALLOWED_SCHEMES = {"http", "https"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True, slots=True)
class ServerEndpoint:
    """Identifies the remote MCP server and the client presenting itself to it."""

    url: str
    client_name: str = DEFAULT_CLIENT_NAME
    client_version: str = DEFAULT_CLIENT_VERSION

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ValueError("Server URL must not be empty")
        parsed = urlparse(self.url)
        if parsed.scheme not in _ALLOWED_SCHEMES or not parsed.netloc:
            raise ValueError(f"Unsupported server URL '{self.url}'")
        if not self.client_name or not self.client_name.strip():
            raise ValueError("Client name must not be empty")

    @property
    def origin(self) -> str:
        parsed = urlparse(self.url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ServerEndpoint":
        env = os.environ if environ is None else environ
        url = env.get(ENV_SERVER_URL)
        if not url:
            raise ValueError(f"{ENV_SERVER_URL} is not set")
        return cls(url=url, client_name=env.get(ENV_CLIENT_NAME) or DEFAULT_CLIENT_NAME)


@dataclass(slots=True)
class ClientConfig:
    """Tunables for :class:`~mcpconnect.client.MCPClient`.

    Attributes:
        request_timeout: Default deadline in seconds for each capability call.
        handshake_timeout: Deadline for opening the transport plus ``initialize``.
        discovery_timeout: Deadline for the protected-resource metadata request.
        auto_reconnect: Retry automatically after a ``ConnectionLost`` failure.
        reconnect_delay: Seconds to wait before each automatic retry.
        max_reconnect_attempts: Automatic retries allowed before giving up.
    """

    request_timeout: float = 30.0
    handshake_timeout: float = 30.0
    discovery_timeout: float = 10.0
    auto_reconnect: bool = False
    reconnect_delay: float = 1.0
    max_reconnect_attempts: int = 3

    def __post_init__(self) -> None:
        for name in ("request_timeout", "handshake_timeout", "discovery_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must not be negative")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ClientConfig":
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name in ("request_timeout", "handshake_timeout", "discovery_timeout", "reconnect_delay"):
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = _parse_float(name, raw)
        raw = env.get(ENV_PREFIX + "AUTO_RECONNECT")
        if raw is not None:
            values["auto_reconnect"] = _parse_bool("auto_reconnect", raw)
        raw = env.get(ENV_PREFIX + "MAX_RECONNECT_ATTEMPTS")
        if raw is not None:
            try:
                values["max_reconnect_attempts"] = int(raw)
            except ValueError:
                raise ValueError(f"Invalid integer for max_reconnect_attempts: {raw!r}") from None
        return cls(**values)  # type: ignore[arg-type]


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid number for {name}: {raw!r}") from None


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {name}: {raw!r}")


__all__ = ["ServerEndpoint", "ClientConfig"]
