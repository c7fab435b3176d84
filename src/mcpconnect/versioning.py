# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Protocol version negotiation for the client handshake.

The client always offers ``LATEST_PROTOCOL_VERSION`` in ``initialize``.  The
server may answer with a different revision; the session only proceeds when
that revision is one the reference SDK understands.  Feature switches derived
from the server's advertised capabilities tell the catalog which lists to
fetch and which change notifications to expect.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from mcp import types
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS as _SDK_SUPPORTED

from .errors import ConnectError


REQUESTED_PROTOCOL_VERSION: Final[str] = types.LATEST_PROTOCOL_VERSION
SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = tuple(_SDK_SUPPORTED)


@dataclass(frozen=True)
class ServerFeatures:
    """What the server said it offers during ``initialize``."""

    tools: bool
    resources: bool
    prompts: bool
    tools_list_changed: bool
    resources_list_changed: bool
    prompts_list_changed: bool

    @classmethod
    def from_capabilities(cls, capabilities: types.ServerCapabilities) -> "ServerFeatures":
        tools = capabilities.tools
        resources = capabilities.resources
        prompts = capabilities.prompts
        return cls(
            tools=tools is not None,
            resources=resources is not None,
            prompts=prompts is not None,
            tools_list_changed=bool(tools and tools.listChanged),
            resources_list_changed=bool(resources and resources.listChanged),
            prompts_list_changed=bool(prompts and prompts.listChanged),
        )


def negotiate_version(result: types.InitializeResult) -> str:
    """Return the server's protocol version or raise if the client cannot speak it."""
    version = str(result.protocolVersion)
    if version not in SUPPORTED_PROTOCOL_VERSIONS:
        raise ConnectError(
            f"Server selected unsupported protocol version {version!r}; "
            f"supported: {', '.join(SUPPORTED_PROTOCOL_VERSIONS)}"
        )
    return version


__all__ = [
    "REQUESTED_PROTOCOL_VERSION",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "ServerFeatures",
    "negotiate_version",
]
