"""Attempt loop as an explicit state machine.

States:
  VALIDATING → EXECUTING → VERIFYING → SUCCEEDED
       ↘            ↘           ↘
        RETRYING ←──────────────┘  → VALIDATING (next attempt)
       ↘ FAILED (from any non-terminal state)

- SUCCEEDED and FAILED are terminal
- RETRYING is only reachable while attempts remain under the cap
- Every transition is recorded for observability
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime


class AttemptState(enum.Enum):
    VALIDATING = "validating"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS: set[tuple[AttemptState, AttemptState]] = {
    (AttemptState.VALIDATING, AttemptState.EXECUTING),
    (AttemptState.VALIDATING, AttemptState.RETRYING),
    (AttemptState.VALIDATING, AttemptState.FAILED),
    (AttemptState.EXECUTING, AttemptState.VERIFYING),
    (AttemptState.EXECUTING, AttemptState.RETRYING),
    (AttemptState.EXECUTING, AttemptState.FAILED),
    (AttemptState.VERIFYING, AttemptState.SUCCEEDED),
    (AttemptState.VERIFYING, AttemptState.RETRYING),
    (AttemptState.VERIFYING, AttemptState.FAILED),
    (AttemptState.RETRYING, AttemptState.VALIDATING),
    (AttemptState.RETRYING, AttemptState.FAILED),
}

TERMINAL_STATES = frozenset({AttemptState.SUCCEEDED, AttemptState.FAILED})


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: AttemptState, to_state: AttemptState, reason: str = "") -> None:
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Invalid transition: {from_state.value} → {to_state.value}{detail}")
        self.from_state = from_state
        self.to_state = to_state


@dataclass(frozen=True)
class StateTransition:
    attempt: int
    from_state: AttemptState
    to_state: AttemptState
    timestamp: datetime
    reason: str = ""


class AttemptMachine:
    """State of one tool call's attempt loop.

    `attempt` is 1-indexed and only advances on RETRYING → VALIDATING.
    """

    def __init__(self, *, max_attempts: int = 3) -> None:
        if max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)
        self._max_attempts = max_attempts
        self._state = AttemptState.VALIDATING
        self._attempt = 1
        self._transitions: list[StateTransition] = []

    @property
    def state(self) -> AttemptState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def attempts_remaining(self) -> int:
        return self._max_attempts - self._attempt

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def transitions(self) -> list[StateTransition]:
        return list(self._transitions)

    def _transition(self, to_state: AttemptState, *, reason: str = "") -> None:
        if (self._state, to_state) not in _TRANSITIONS:
            raise InvalidTransitionError(self._state, to_state)
        self._transitions.append(
            StateTransition(
                attempt=self._attempt,
                from_state=self._state,
                to_state=to_state,
                timestamp=datetime.now(UTC),
                reason=reason,
            )
        )
        self._state = to_state

    def execute(self) -> None:
        """VALIDATING → EXECUTING."""
        self._transition(AttemptState.EXECUTING)

    def verify(self) -> None:
        """EXECUTING → VERIFYING."""
        self._transition(AttemptState.VERIFYING)

    def succeed(self) -> None:
        """VERIFYING → SUCCEEDED."""
        self._transition(AttemptState.SUCCEEDED)

    def fail(self, *, reason: str = "") -> None:
        """Any non-terminal state → FAILED."""
        self._transition(AttemptState.FAILED, reason=reason)

    def schedule_retry(self, *, reason: str = "") -> None:
        """→ RETRYING; refused once the attempt cap is reached."""
        if self._attempt >= self._max_attempts:
            raise InvalidTransitionError(self._state, AttemptState.RETRYING, "attempt cap reached")
        self._transition(AttemptState.RETRYING, reason=reason)

    def next_attempt(self) -> None:
        """RETRYING → VALIDATING, advancing the attempt counter."""
        self._transition(AttemptState.VALIDATING)
        self._attempt += 1
