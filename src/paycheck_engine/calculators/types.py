"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from paycheck_engine.calculators.money import ZERO


class FilingStatus(str, Enum):
    """Filing status values."""

    SINGLE = "single"
    MARRIED_JOINT = "married_joint"
    MARRIED_SEPARATE = "married_separate"
    HEAD_OF_HOUSEHOLD = "head_of_household"


class StateMethod(str, Enum):
    """How the state withholding for a check was determined."""

    BRACKETS = "brackets"
    FLAT_RATE_FALLBACK = "flat_rate_fallback"
    NO_INCOME_TAX = "no_income_tax"
    EXEMPT = "exempt"
    NO_STATE = "no_state"


# ===== Reference data snapshot =====


@dataclass(frozen=True)
class BracketRow:
    """Tax bracket for progressive taxation."""

    income_from: Decimal
    income_to: Decimal | None  # None = top bracket
    rate: Decimal  # As decimal, e.g., 0.22 for 22%
    base_amount: Decimal = ZERO  # Tax owed on all income below income_from
    order: int = 0

    def contains(self, amount: Decimal) -> bool:
        return self.income_from <= amount and (self.income_to is None or amount < self.income_to)


@dataclass(frozen=True)
class FicaRates:
    """FICA rates and limits for one year."""

    social_security_rate: Decimal
    social_security_wage_cap: Decimal
    medicare_rate: Decimal
    additional_medicare_rate: Decimal
    additional_medicare_threshold: Decimal
    additional_medicare_threshold_joint: Decimal | None = None


@dataclass(frozen=True)
class Allowances:
    """Standard deductions and personal exemption (annual amounts)."""

    standard_deduction_single: Decimal
    standard_deduction_joint: Decimal
    standard_deduction_head_of_household: Decimal
    personal_exemption_amount: Decimal = ZERO
    phaseout_start: Decimal | None = None
    phaseout_end: Decimal | None = None

    def standard_deduction_for(self, filing_status: str) -> Decimal:
        if filing_status == FilingStatus.MARRIED_JOINT:
            return self.standard_deduction_joint
        if filing_status == FilingStatus.HEAD_OF_HOUSEHOLD:
            return self.standard_deduction_head_of_household
        # single and married_separate
        return self.standard_deduction_single


@dataclass(frozen=True)
class TaxYearTables:
    """Immutable snapshot of one year's reference data.

    A payroll run loads this once and computes every check against it, so an
    admin editing reference data mid-run cannot change the run's numbers.
    """

    year: int
    federal_brackets: Mapping[str, tuple[BracketRow, ...]] = field(default_factory=dict)
    state_brackets: Mapping[tuple[str, str], tuple[BracketRow, ...]] = field(default_factory=dict)
    fica: FicaRates | None = None
    allowances: Allowances | None = None
    state_allowances: Mapping[str, Allowances] = field(default_factory=dict)

    def federal_brackets_for(self, filing_status: str) -> tuple[BracketRow, ...]:
        return self.federal_brackets.get(filing_status, ())

    def state_brackets_for(self, state: str, filing_status: str) -> tuple[BracketRow, ...]:
        return self.state_brackets.get((state, filing_status), ())

    @property
    def is_empty(self) -> bool:
        return not (
            self.federal_brackets
            or self.state_brackets
            or self.fica
            or self.allowances
            or self.state_allowances
        )


# ===== Collaborator records =====


@dataclass(frozen=True)
class EmployeeRecord:
    """Active employee as reported by the employee directory."""

    employee_id: UUID
    employer_id: UUID
    name: str
    regular_rate: Decimal
    overtime_rate: Decimal | None = None  # None = regular_rate * multiplier
    pre_tax_deduction: Decimal = ZERO
    direct_deposit_enabled: bool = False
    wallet_id: str | None = None


@dataclass(frozen=True)
class TaxProfile:
    """Employee tax elections for one year."""

    employee_id: UUID
    year: int
    filing_status: str = FilingStatus.SINGLE.value
    allowances: int = 0
    additional_withholding: Decimal = ZERO
    exempt_from_federal_tax: bool = False
    exempt_from_state_tax: bool = False
    exempt_from_local_tax: bool = False
    state_of_residence: str | None = None
    state_of_employment: str | None = None
    local_tax_rate: Decimal = ZERO

    @property
    def withholding_state(self) -> str | None:
        """State whose income tax is withheld (residence first)."""
        state = self.state_of_residence or self.state_of_employment
        return state.upper() if state else None


@dataclass(frozen=True)
class TimeRecord:
    """Hours worked on one day."""

    employee_id: UUID
    work_date: date
    hours_worked: Decimal
    status: str = "approved"


# ===== Calculation results =====


@dataclass(frozen=True)
class GrossPayResult:
    """Hours and earnings for one pay period."""

    hours_worked: Decimal
    regular_hours: Decimal
    overtime_hours: Decimal
    regular_rate: Decimal
    overtime_rate: Decimal
    regular_pay: Decimal
    overtime_pay: Decimal
    gross_pay: Decimal


@dataclass(frozen=True)
class YtdTotals:
    """Year-to-date totals."""

    gross_pay: Decimal = ZERO
    federal_tax: Decimal = ZERO
    state_tax: Decimal = ZERO
    social_security: Decimal = ZERO
    medicare: Decimal = ZERO
    local_tax: Decimal = ZERO

    def plus(self, result: WithholdingResult) -> YtdTotals:
        """Totals after adding one more check."""
        return YtdTotals(
            gross_pay=self.gross_pay + result.gross_pay,
            federal_tax=self.federal_tax + result.federal_withholding,
            state_tax=self.state_tax + result.state_withholding,
            social_security=self.social_security + result.social_security_withholding,
            medicare=self.medicare + result.medicare_withholding,
            local_tax=self.local_tax + result.local_withholding,
        )


@dataclass(frozen=True)
class IncomeTaxResult:
    """Federal or state income tax for one check."""

    taxable_income: Decimal  # per check, after deductions
    annualized_income: Decimal
    annual_tax: Decimal
    withholding: Decimal  # rounded to cents
    method: str = StateMethod.BRACKETS.value

    @classmethod
    def zero(cls, method: str = StateMethod.BRACKETS.value) -> IncomeTaxResult:
        return cls(ZERO, ZERO, ZERO, ZERO, method)


@dataclass(frozen=True)
class WithholdingResult:
    """All withholding components for one check."""

    gross_pay: Decimal
    filing_status: str
    federal: IncomeTaxResult
    state: IncomeTaxResult
    state_code: str | None
    social_security_taxable: Decimal
    social_security_withholding: Decimal
    medicare_taxable: Decimal
    additional_medicare_taxable: Decimal
    additional_medicare_withholding: Decimal
    medicare_withholding: Decimal  # includes additional Medicare
    local_withholding: Decimal

    @property
    def federal_withholding(self) -> Decimal:
        return self.federal.withholding

    @property
    def state_withholding(self) -> Decimal:
        return self.state.withholding

    @property
    def total_withholding(self) -> Decimal:
        return (
            self.federal_withholding
            + self.state_withholding
            + self.social_security_withholding
            + self.medicare_withholding
            + self.local_withholding
        )

    @property
    def net_pay(self) -> Decimal:
        return self.gross_pay - self.total_withholding
