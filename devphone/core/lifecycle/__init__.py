"""Session lifecycle: state machine and controller."""

from devphone.core.lifecycle.controller import GatewayServer, LifecycleController
from devphone.core.lifecycle.state import (
    InvalidTransition,
    LifecycleState,
    can_transition,
    is_terminal_state,
)

__all__ = [
    "GatewayServer",
    "LifecycleController",
    "InvalidTransition",
    "LifecycleState",
    "can_transition",
    "is_terminal_state",
]
