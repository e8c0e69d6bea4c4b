"""Collaborator interfaces and stub implementations."""

from paycheck_engine.providers.base import (
    DisbursementError,
    EmployeeDirectory,
    LedgerProvider,
    LedgerTransaction,
    TimeTrackingProvider,
)
from paycheck_engine.providers.ledger_stub import LedgerStubProvider

__all__ = [
    "DisbursementError",
    "EmployeeDirectory",
    "LedgerProvider",
    "LedgerTransaction",
    "TimeTrackingProvider",
    "LedgerStubProvider",
]
