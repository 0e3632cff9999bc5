"""Quote case lifecycle state machine with transition validation."""

from quotation.state_machine.machine import CaseStateMachine
from quotation.state_machine.transitions import (
    TERMINAL_STATES,
    TRANSITIONS,
    CaseEvent,
)

__all__ = [
    "CaseEvent",
    "CaseStateMachine",
    "TERMINAL_STATES",
    "TRANSITIONS",
]
