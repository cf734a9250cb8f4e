"""Session lifecycle state machine."""

from enum import Enum
from typing import Set


class LifecycleState(str, Enum):
    """States of a dev phone session."""

    IDLE = "idle"
    PROVISIONING = "provisioning"
    SERVING = "serving"
    DRAINING = "draining"

    # Terminal
    TERMINATED = "terminated"


# Valid state transitions
VALID_TRANSITIONS: dict[LifecycleState, Set[LifecycleState]] = {
    LifecycleState.IDLE: {
        LifecycleState.PROVISIONING,
    },
    LifecycleState.PROVISIONING: {
        LifecycleState.SERVING,
        LifecycleState.TERMINATED,  # Provisioning failed
    },
    LifecycleState.SERVING: {
        LifecycleState.DRAINING,
    },
    LifecycleState.DRAINING: {
        LifecycleState.TERMINATED,
    },
    LifecycleState.TERMINATED: set(),
}


class InvalidTransition(Exception):
    """Raised on a transition not listed in VALID_TRANSITIONS."""

    def __init__(self, from_state: LifecycleState, to_state: LifecycleState):
        super().__init__(f"Invalid lifecycle transition: {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


def can_transition(from_state: LifecycleState, to_state: LifecycleState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def is_terminal_state(state: LifecycleState) -> bool:
    """Check if state is terminal (no further transitions)."""
    return state == LifecycleState.TERMINATED
