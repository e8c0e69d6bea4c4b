"""Employee, tax profile and time entry models.

These tables belong to the employee directory and time-tracking
collaborators; the engine only reads them.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paycheck_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from paycheck_engine.models.payroll import PayrollEntry


class Employee(Base, TimestampMixin):
    """Employee of an employer, with pay rates and deposit preferences."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employer_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    ssn_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    regular_rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    overtime_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pre_tax_deduction: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    direct_deposit_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    wallet_id: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'terminated')",
            name="employee_status_check",
        ),
    )

    # Relationships
    tax_profiles: Mapped[list[EmployeeTaxProfile]] = relationship(back_populates="employee")
    time_entries: Mapped[list[TimeEntry]] = relationship(back_populates="employee")
    payroll_entries: Mapped[list[PayrollEntry]] = relationship(back_populates="employee")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class EmployeeTaxProfile(Base, TimestampMixin):
    """Employee tax elections for one tax year."""

    __tablename__ = "employee_tax_profile"

    employee_tax_profile_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    filing_status: Mapped[str] = mapped_column(String, nullable=False, default="single")
    allowances: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    additional_withholding: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    exempt_from_federal_tax: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    exempt_from_state_tax: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    exempt_from_local_tax: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    state_of_residence: Mapped[str | None] = mapped_column(String(2), nullable=True)
    state_of_employment: Mapped[str | None] = mapped_column(String(2), nullable=True)
    local_tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(8, 6), nullable=False, default=Decimal("0")
    )

    __table_args__ = (
        UniqueConstraint("employee_id", "year", name="employee_tax_profile_year_unique"),
        CheckConstraint(
            "filing_status IN ('single', 'married_joint', 'married_separate', 'head_of_household')",
            name="employee_tax_profile_filing_status_check",
        ),
        CheckConstraint("allowances >= 0", name="employee_tax_profile_allowances_check"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="tax_profiles")


class TimeEntry(Base, TimestampMixin):
    """Hours worked on one day."""

    __tablename__ = "time_entry"

    time_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    hours_worked: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="time_entry_status_check",
        ),
        CheckConstraint("hours_worked >= 0", name="time_entry_hours_check"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="time_entries")
