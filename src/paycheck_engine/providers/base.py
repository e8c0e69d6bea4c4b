"""Protocols and types for the collaborators the payroll engine consumes.

The engine never manages employees, time records or wallets itself; it talks
to these interfaces. SQL-backed directory and time-tracking implementations
live in paycheck_engine.services.directory.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from paycheck_engine.calculators.types import EmployeeRecord, TaxProfile, TimeRecord


@dataclass(frozen=True)
class LedgerTransaction:
    """Result of crediting a wallet."""

    transaction_id: str
    wallet_id: str
    amount: Decimal
    memo: str = ""
    created_at: datetime.datetime | None = None


class DisbursementError(Exception):
    """Raised when the ledger refuses or fails a credit."""

    def __init__(self, wallet_id: str | None, amount: Decimal, reason: str):
        self.wallet_id = wallet_id
        self.amount = amount
        self.reason = reason
        super().__init__(f"Could not credit {amount} to wallet {wallet_id}: {reason}")


class TimeTrackingProvider(Protocol):
    """Source of approved hours."""

    async def list_approved_time_entries(
        self,
        employee_id: UUID,
        start_date: datetime.date,
        end_date: datetime.date,
    ) -> list[TimeRecord]:
        """Approved entries with start_date <= work_date <= end_date."""
        ...


class EmployeeDirectory(Protocol):
    """Source of employees and their tax elections."""

    async def get_active_employees(self, employer_id: UUID) -> list[EmployeeRecord]:
        ...

    async def get_employee_tax_profile(self, employee_id: UUID, year: int) -> TaxProfile | None:
        """Profile for the tax year, or None if the employee has none."""
        ...


class LedgerProvider(Protocol):
    """Wallet ledger that receives net pay."""

    provider_name: str

    async def credit(self, wallet_id: str, amount: Decimal, memo: str) -> LedgerTransaction:
        """Credit a wallet.

        Raises:
            DisbursementError: If the credit is refused or fails.
        """
        ...
