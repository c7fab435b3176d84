# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Session lifecycle states and the table of legal transitions.

``SessionState`` values match the strings hosts already render
(``"pending_auth"``, ``"ready"``...).  :data:`TRANSITIONS` is the single source
of truth consulted by the state machine before every move; anything not listed
raises :class:`~mcpconnect.errors.InvalidTransition`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import ErrorInfo, InvalidTransition


if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..config import ServerEndpoint
    from .auth import Credential


class SessionState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    PENDING_AUTH = "pending_auth"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    LOADING_CAPABILITIES = "loading_capabilities"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_settled(self) -> bool:
        """States in which a connection attempt waits for the caller."""
        return self in _SETTLED

    @property
    def is_in_progress(self) -> bool:
        return self in _IN_PROGRESS


_SETTLED = frozenset({SessionState.PENDING_AUTH, SessionState.READY, SessionState.FAILED})
_IN_PROGRESS = frozenset(
    {
        SessionState.DISCOVERING,
        SessionState.PENDING_AUTH,
        SessionState.AUTHENTICATING,
        SessionState.CONNECTING,
        SessionState.LOADING_CAPABILITIES,
    }
)


TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.DISCOVERING}),
    SessionState.DISCOVERING: frozenset(
        {SessionState.PENDING_AUTH, SessionState.CONNECTING, SessionState.FAILED}
    ),
    SessionState.PENDING_AUTH: frozenset({SessionState.AUTHENTICATING}),
    SessionState.AUTHENTICATING: frozenset({SessionState.CONNECTING, SessionState.FAILED}),
    SessionState.CONNECTING: frozenset({SessionState.LOADING_CAPABILITIES, SessionState.FAILED}),
    SessionState.LOADING_CAPABILITIES: frozenset({SessionState.READY, SessionState.FAILED}),
    SessionState.READY: frozenset({SessionState.LOADING_CAPABILITIES, SessionState.FAILED}),
    SessionState.FAILED: frozenset({SessionState.DISCOVERING, SessionState.AUTHENTICATING}),
}
"""Allowed moves, excluding ``disconnect`` which returns any state to ``IDLE``."""


def check_transition(current: SessionState, target: SessionState) -> None:
    """Raise :class:`InvalidTransition` unless ``current -> target`` is legal."""
    if target is SessionState.IDLE:
        return
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(f"Illegal session transition {current.value} -> {target.value}")


@dataclass(frozen=True, slots=True)
class Session:
    """Immutable view of the active session published after each transition."""

    endpoint: ServerEndpoint | None = None
    state: SessionState = SessionState.IDLE
    last_error: ErrorInfo | None = None
    credential: Credential | None = None

    def evolve(self, **changes: object) -> "Session":
        return replace(self, **changes)  # type: ignore[arg-type]


IDLE_SESSION = Session()


__all__ = ["SessionState", "TRANSITIONS", "Session", "IDLE_SESSION", "check_transition"]
