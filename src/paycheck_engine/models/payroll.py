"""Payroll entry and tax calculation models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paycheck_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from paycheck_engine.models.employee import Employee

_ZERO = Decimal("0")


class PayrollEntry(Base, TimestampMixin):
    """One employee's paycheck for one pay period.

    Created once per employee per run. Status moves pending -> completed or
    pending -> error; a completed entry is never modified.
    """

    __tablename__ = "payroll_entry"

    payroll_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    employer_id: Mapped[UUID] = mapped_column(nullable=False)
    pay_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    pay_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Hours and rates
    hours_worked: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=_ZERO)
    regular_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=_ZERO)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=_ZERO)
    regular_rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=_ZERO)
    overtime_rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=_ZERO)

    # Earnings
    regular_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)
    overtime_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)

    # Withholding
    federal_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)
    state_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)
    social_security: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)
    medicare: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)
    local_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=_ZERO)

    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("payroll_entry_ytd_idx", "employee_id", "status", "pay_period_end"),
        Index("payroll_entry_report_idx", "employer_id", "pay_date"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'error')",
            name="payroll_entry_status_check",
        ),
        CheckConstraint(
            "pay_period_end >= pay_period_start",
            name="payroll_entry_period_check",
        ),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="payroll_entries")
    tax_calculation: Mapped[TaxCalculation | None] = relationship(
        back_populates="payroll_entry",
        uselist=False,
    )

    @property
    def total_withholding(self) -> Decimal:
        return (
            self.federal_tax
            + self.state_tax
            + self.social_security
            + self.medicare
            + self.local_tax
        )


class TaxCalculation(Base, TimestampMixin):
    """Append-only withholding snapshot for one payroll entry.

    ytd_* columns hold totals through and including this entry.
    """

    __tablename__ = "tax_calculation"

    tax_calculation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_entry.payroll_entry_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    tax_year: Mapped[int] = mapped_column(Integer, nullable=False)
    filing_status: Mapped[str] = mapped_column(String, nullable=False)
    state_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    state_method: Mapped[str] = mapped_column(String, nullable=False)

    gross_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Taxable incomes for this check
    federal_taxable_income: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    state_taxable_income: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    social_security_taxable: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    medicare_taxable: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    additional_medicare_taxable: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # Withholding components for this check
    federal_withholding: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    state_withholding: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    social_security_withholding: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    medicare_withholding: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    additional_medicare_withholding: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False
    )
    local_withholding: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Year-to-date including this check
    ytd_gross_earnings: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    ytd_federal_withholding: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    ytd_state_withholding: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    ytd_social_security_withholding: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False
    )
    ytd_medicare_withholding: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    ytd_local_withholding: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "state_method IN ('brackets', 'flat_rate_fallback', 'no_income_tax', 'exempt', 'no_state')",
            name="tax_calculation_state_method_check",
        ),
    )

    # Relationships
    payroll_entry: Mapped[PayrollEntry] = relationship(back_populates="tax_calculation")
