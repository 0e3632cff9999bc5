"""CaseStateMachine class with trigger, history, and valid_events."""

from __future__ import annotations

from quotation.domain.errors import GuardViolation
from quotation.domain.types import CaseStatus
from quotation.state_machine.transitions import TERMINAL_STATES, TRANSITIONS


class CaseStateMachine:
    """Finite state machine governing the quote case lifecycle.

    Pure and in-memory: it validates transitions against the transition map
    and records a history of status changes.  Persistence and atomicity are
    the job of :class:`~quotation.cases.store.CaseStore`, which replays a
    single ``trigger`` against the stored status inside a transaction.

    Usage::

        sm = CaseStateMachine()
        sm.trigger("classify_rfq")        # -> RFQ_DETECTED
        sm.trigger("open_blocking_gap")   # -> NEED_INFO
    """

    def __init__(self, initial_state: CaseStatus = CaseStatus.NEW_THREAD) -> None:
        self._state: CaseStatus = initial_state
        self._history: list[tuple[CaseStatus, str, CaseStatus]] = []

    @classmethod
    def from_snapshot(
        cls,
        state: CaseStatus,
        history: list[tuple[CaseStatus, str, CaseStatus]] | None = None,
    ) -> CaseStateMachine:
        """Reconstruct a state machine from a persisted status.

        Args:
            state: The case status to restore.
            history: Optional transition history as ``(from, event, to)``
                     tuples in chronological order.

        Returns:
            A ``CaseStateMachine`` positioned at *state*.
        """
        instance = cls(initial_state=state)
        instance._history = list(history or [])
        return instance

    @property
    def state(self) -> CaseStatus:
        """Return the current case status."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Return True if the case is archived."""
        return self._state in TERMINAL_STATES

    @property
    def history(self) -> list[tuple[CaseStatus, str, CaseStatus]]:
        """Return a copy of the ``(from_state, event, to_state)`` history."""
        return list(self._history)

    def can_trigger(self, event: str) -> bool:
        """Return True if *event* is legal from the current status."""
        return not self.is_terminal and (self._state, event) in TRANSITIONS

    def peek(self, event: str) -> CaseStatus:
        """Return the status *event* would lead to without applying it.

        Raises:
            GuardViolation: If the transition is not allowed.
        """
        if not self.can_trigger(event):
            raise GuardViolation(self._state, event)
        return TRANSITIONS[(self._state, event)]

    def trigger(self, event: str) -> CaseStatus:
        """Apply an event to the current status and transition.

        Args:
            event: The event string (e.g. ``"start_pricing"``).

        Returns:
            The new status after the transition.

        Raises:
            GuardViolation: If the transition is not allowed from the current
                status, or if the case is archived.
        """
        new_state = self.peek(event)
        old_state = self._state
        self._history.append((old_state, event, new_state))
        self._state = new_state
        return new_state

    def get_valid_events(self) -> list[str]:
        """Return a sorted list of events valid from the current status."""
        if self.is_terminal:
            return []
        return sorted(event for state, event in TRANSITIONS if state == self._state)
