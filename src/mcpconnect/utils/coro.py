# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Helpers for callbacks that may be plain functions or coroutines."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import inspect
from typing import Any, TypeVar


T = TypeVar("T")


async def maybe_await(value: Awaitable[T] | T) -> T:
    """Await *value* when it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value  # type: ignore[no-any-return]
    return value  # type: ignore[return-value]


async def maybe_await_with_args(func: Callable[..., Awaitable[T] | T], *args: Any, **kwargs: Any) -> T:
    """Call *func* and await the result if needed."""
    return await maybe_await(func(*args, **kwargs))


__all__ = ["maybe_await", "maybe_await_with_args"]
