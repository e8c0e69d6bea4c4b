"""Payroll entry state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from paycheck_engine.models import PayrollEntry


class PayrollEntryStatus(str, Enum):
    """Payroll entry status values."""

    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PayrollEntryStateMachine:
    """State machine for payroll entry status transitions.

    Allowed transitions:
    - pending → completed
    - pending → error

    Both targets are terminal. An errored entry is not retried; the next run
    creates a new entry.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollEntryStatus.PENDING: [PayrollEntryStatus.COMPLETED, PayrollEntryStatus.ERROR],
        PayrollEntryStatus.COMPLETED: [],
        PayrollEntryStatus.ERROR: [],
    }

    # Entries that count toward YTD and appear on stubs and reports
    FINAL_FOR_REPORTING = {PayrollEntryStatus.COMPLETED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status, [])

    @classmethod
    def is_reportable(cls, status: str) -> bool:
        return status in cls.FINAL_FOR_REPORTING

    @classmethod
    def transition(cls, entry: PayrollEntry, to_status: str) -> None:
        """Move an entry to a new status, validating the transition first."""
        cls.validate_transition(entry.status, to_status)
        entry.status = PayrollEntryStatus(to_status).value
