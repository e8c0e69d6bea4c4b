"""Pydantic schemas for reference data input and pay stub/report output."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Reference data input schemas
# ============================================================================


class TaxBracketInput(BaseModel):
    """One bracket as supplied by an administrator."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    income_from: Decimal = Field(ge=0)
    income_to: Decimal | None = None
    rate: Decimal = Field(ge=0, le=1)
    base_amount: Decimal | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_range(self):
        if self.income_to is not None and self.income_to <= self.income_from:
            raise ValueError("income_to must be greater than income_from")
        return self


class FicaRatesInput(BaseModel):
    """Social Security and Medicare rates and limits."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    social_security_rate: Decimal = Field(ge=0, le=1)
    social_security_wage_cap: Decimal = Field(ge=0)
    medicare_rate: Decimal = Field(ge=0, le=1)
    additional_medicare_rate: Decimal = Field(ge=0, le=1)
    additional_medicare_threshold: Decimal = Field(ge=0)
    additional_medicare_threshold_joint: Decimal | None = Field(default=None, ge=0)


class TaxAllowancesInput(BaseModel):
    """Federal standard deductions and personal exemption."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    standard_deduction_single: Decimal = Field(ge=0)
    standard_deduction_joint: Decimal = Field(ge=0)
    standard_deduction_head_of_household: Decimal = Field(ge=0)
    personal_exemption_amount: Decimal = Field(default=Decimal("0"), ge=0)
    phaseout_start: Decimal | None = Field(default=None, ge=0)
    phaseout_end: Decimal | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_phaseout(self):
        if (
            self.phaseout_start is not None
            and self.phaseout_end is not None
            and self.phaseout_end < self.phaseout_start
        ):
            raise ValueError("phaseout_end must not be before phaseout_start")
        return self


class StateAllowancesInput(BaseModel):
    """A state's own standard deductions and exemption."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    standard_deduction_single: Decimal = Field(ge=0)
    standard_deduction_joint: Decimal = Field(ge=0)
    standard_deduction_head_of_household: Decimal = Field(ge=0)
    personal_exemption_amount: Decimal = Field(default=Decimal("0"), ge=0)


# ============================================================================
# Pay stub schemas
# ============================================================================


class PayPeriod(BaseModel):
    start: date
    end: date
    pay_date: date | None = None


class StubEmployee(BaseModel):
    id: UUID
    name: str
    ssn: str | None = None  # masked, XXX-XX-1234


class StubEarnings(BaseModel):
    hours_worked: Decimal
    regular_hours: Decimal
    overtime_hours: Decimal
    regular_rate: Decimal
    overtime_rate: Decimal
    regular_pay: Decimal
    overtime_pay: Decimal
    gross_pay: Decimal


class StubDeductions(BaseModel):
    federal_tax: Decimal
    state_tax: Decimal
    social_security: Decimal
    medicare: Decimal
    local_tax: Decimal
    total_deductions: Decimal


class StubYearToDate(BaseModel):
    gross_earnings: Decimal
    federal_tax: Decimal
    state_tax: Decimal
    social_security: Decimal
    medicare: Decimal
    local_tax: Decimal


class PayStub(BaseModel):
    """Printable view of one completed payroll entry."""

    payroll_entry_id: UUID
    employer_id: UUID
    pay_period: PayPeriod
    employee: StubEmployee
    earnings: StubEarnings
    deductions: StubDeductions
    year_to_date: StubYearToDate | None = None
    net_pay: Decimal
    processed_at: datetime | None = None


# ============================================================================
# Payroll report schemas
# ============================================================================


class ReportTaxes(BaseModel):
    federal: Decimal
    state: Decimal
    social_security: Decimal
    medicare: Decimal
    local: Decimal
    total: Decimal


class ReportEntry(BaseModel):
    payroll_entry_id: UUID
    employee_id: UUID
    employee_name: str
    pay_date: date
    pay_period: PayPeriod
    hours_worked: Decimal
    gross_pay: Decimal
    taxes: ReportTaxes
    net_pay: Decimal


class ReportSummary(BaseModel):
    total_employees: int = 0
    total_gross_pay: Decimal = Decimal("0")
    total_taxes: Decimal = Decimal("0")
    total_net_pay: Decimal = Decimal("0")


class PayrollReport(BaseModel):
    """Completed payroll for an employer over a pay date range."""

    employer_id: UUID
    start_date: date
    end_date: date
    summary: ReportSummary
    entries: list[ReportEntry] = Field(default_factory=list)
