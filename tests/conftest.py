from __future__ import annotations

import pytest

from mcpconnect.config import ServerEndpoint


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def endpoint() -> ServerEndpoint:
    return ServerEndpoint("http://testserver/mcp", "test-client")
