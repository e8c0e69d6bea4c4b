"""Versioned tax reference data: brackets, FICA rates, allowances.

Rows are keyed by year (plus jurisdiction and filing status for brackets).
A payroll run never writes to these tables.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from paycheck_engine.models.base import Base, TimestampMixin


class TaxBracket(Base, TimestampMixin):
    """Income tax bracket. jurisdiction is NULL for federal, else a state code."""

    __tablename__ = "tax_bracket"

    tax_bracket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    jurisdiction: Mapped[str | None] = mapped_column(String(2), nullable=True)
    filing_status: Mapped[str] = mapped_column(String, nullable=False)
    bracket_order: Mapped[int] = mapped_column(Integer, nullable=False)
    income_from: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    income_to: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    base_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    __table_args__ = (
        Index("tax_bracket_lookup_idx", "year", "jurisdiction", "filing_status"),
        CheckConstraint("income_from >= 0", name="tax_bracket_income_from_check"),
        CheckConstraint(
            "income_to IS NULL OR income_to > income_from",
            name="tax_bracket_range_check",
        ),
        CheckConstraint("rate >= 0 AND rate <= 1", name="tax_bracket_rate_check"),
    )

    @property
    def is_federal(self) -> bool:
        return self.jurisdiction is None


class FicaRate(Base, TimestampMixin):
    """Social Security and Medicare rates and limits for one year."""

    __tablename__ = "fica_rate"

    fica_rate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    social_security_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    social_security_wage_cap: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    medicare_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    additional_medicare_rate: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    additional_medicare_threshold: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    additional_medicare_threshold_joint: Mapped[Decimal | None] = mapped_column(
        Numeric(14, 2), nullable=True
    )


class TaxAllowance(Base, TimestampMixin):
    """Federal standard deductions and personal exemption for one year."""

    __tablename__ = "tax_allowance"

    tax_allowance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    standard_deduction_single: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    standard_deduction_joint: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    standard_deduction_head_of_household: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False
    )
    personal_exemption_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    phaseout_start: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    phaseout_end: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)


class StateTaxAllowance(Base, TimestampMixin):
    """A state's own standard deduction and exemption for one year."""

    __tablename__ = "state_tax_allowance"

    state_tax_allowance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    standard_deduction_single: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    standard_deduction_joint: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    standard_deduction_head_of_household: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False
    )
    personal_exemption_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )

    __table_args__ = (
        UniqueConstraint("state", "year", name="state_tax_allowance_state_year_unique"),
    )
