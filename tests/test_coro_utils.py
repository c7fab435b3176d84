# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Tests for coroutine utility functions.

Exercises maybe_await and maybe_await_with_args, which the engine uses to
call session listeners and device-flow prompts that may be sync or async.
"""

from __future__ import annotations

import anyio
import pytest

from mcpconnect.utils import maybe_await, maybe_await_with_args


@pytest.mark.anyio
async def test_maybe_await_with_direct_value() -> None:
    """maybe_await returns plain values unchanged."""
    assert await maybe_await(42) == 42
    assert await maybe_await(None) is None


@pytest.mark.anyio
async def test_maybe_await_with_coroutine() -> None:
    """maybe_await awaits coroutines."""

    async def async_fn() -> int:
        await anyio.sleep(0)
        return 42

    assert await maybe_await(async_fn()) == 42


@pytest.mark.anyio
async def test_maybe_await_with_args_sync_callable() -> None:
    """maybe_await_with_args calls sync functions with arguments."""

    def add(a: int, b: int) -> int:
        return a + b

    assert await maybe_await_with_args(add, 2, 3) == 5


@pytest.mark.anyio
async def test_maybe_await_with_args_async_callable() -> None:
    """maybe_await_with_args awaits async functions."""

    async def add_async(a: int, b: int) -> int:
        await anyio.sleep(0)
        return a + b

    assert await maybe_await_with_args(add_async, 4, 7) == 11


@pytest.mark.anyio
async def test_maybe_await_with_args_kwargs() -> None:
    async def compute(a: int, b: int = 10) -> int:
        return a * b

    assert await maybe_await_with_args(compute, a=3, b=5) == 15


@pytest.mark.anyio
async def test_maybe_await_with_args_propagates_errors() -> None:
    async def broken(code: str, uri: str) -> None:
        raise RuntimeError(f"{code}@{uri}")

    with pytest.raises(RuntimeError, match="ABC@https://example.com"):
        await maybe_await_with_args(broken, "ABC", "https://example.com")
