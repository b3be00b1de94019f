"""Session state machine and lock-protected transitions."""

from __future__ import annotations

import asyncio
from enum import Enum

from .exceptions import InvalidTransitionError


class SessionState(str, Enum):
    """Finite state machine for one client session."""

    IDLE = "IDLE"
    COMPOSING = "COMPOSING"
    SENDING = "SENDING"
    RECONCILING = "RECONCILING"
    CONFIRMING_DELETE = "CONFIRMING_DELETE"


ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset(
        {SessionState.COMPOSING, SessionState.SENDING, SessionState.CONFIRMING_DELETE}
    ),
    SessionState.COMPOSING: frozenset(
        {SessionState.IDLE, SessionState.SENDING, SessionState.CONFIRMING_DELETE}
    ),
    # A failed send returns to IDLE directly.
    SessionState.SENDING: frozenset({SessionState.RECONCILING, SessionState.IDLE}),
    SessionState.RECONCILING: frozenset({SessionState.IDLE}),
    SessionState.CONFIRMING_DELETE: frozenset({SessionState.IDLE}),
}

SEND_READY_STATES = frozenset({SessionState.IDLE, SessionState.COMPOSING})


class StateManager:
    """Manage state transitions with async lock semantics."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        """Unlocked snapshot of the current state."""
        return self._state

    async def transition_to(self, new_state: SessionState) -> SessionState:
        """Transition to a new state, rejecting moves outside the table."""
        async with self._lock:
            if new_state != self._state and new_state not in ALLOWED_TRANSITIONS[self._state]:
                raise InvalidTransitionError(
                    f"Cannot move from {self._state.value} to {new_state.value}."
                )
            self._state = new_state
            return self._state

    async def transition_if(
        self,
        expected_states: SessionState | frozenset[SessionState],
        new_state: SessionState,
    ) -> bool:
        """Transition only when the current state is one of the expected states."""
        expected = (
            frozenset({expected_states})
            if isinstance(expected_states, SessionState)
            else expected_states
        )
        async with self._lock:
            if self._state not in expected:
                return False
            if new_state not in ALLOWED_TRANSITIONS[self._state]:
                return False
            self._state = new_state
            return True

    async def can_send_message(self) -> bool:
        """Return True when message submission is allowed."""
        async with self._lock:
            return self._state in SEND_READY_STATES
