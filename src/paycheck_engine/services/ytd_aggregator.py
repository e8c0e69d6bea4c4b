"""Year-to-date totals recomputed from completed payroll history."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paycheck_engine.calculators.money import round_to_cents, to_decimal
from paycheck_engine.calculators.types import YtdTotals
from paycheck_engine.models import PayrollEntry
from paycheck_engine.services.state_machine import PayrollEntryStatus


class YtdAggregator:
    """Sums an employee's completed entries for a tax year.

    An entry belongs to the year its pay period ends in, the same year a
    payroll run takes its tables and wage caps from.

    Runs on the caller's session so the read happens inside the same
    transaction that will write the new entry. There is no stored running
    total; every call re-reads history.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_prior_totals(
        self,
        employee_id: UUID,
        tax_year: int,
        exclude_entry_id: UUID | None = None,
    ) -> YtdTotals:
        """Totals over completed entries whose period ends in tax_year."""
        columns = (
            PayrollEntry.gross_pay,
            PayrollEntry.federal_tax,
            PayrollEntry.state_tax,
            PayrollEntry.social_security,
            PayrollEntry.medicare,
            PayrollEntry.local_tax,
        )
        query = select(*(func.coalesce(func.sum(col), 0) for col in columns)).where(
            PayrollEntry.employee_id == employee_id,
            PayrollEntry.status == PayrollEntryStatus.COMPLETED.value,
            PayrollEntry.pay_period_end >= date(tax_year, 1, 1),
            PayrollEntry.pay_period_end <= date(tax_year, 12, 31),
        )
        if exclude_entry_id is not None:
            query = query.where(PayrollEntry.payroll_entry_id != exclude_entry_id)

        row = (await self.session.execute(query)).one()
        gross, federal, state, social_security, medicare, local = (
            round_to_cents(to_decimal(value)) for value in row
        )

        return YtdTotals(
            gross_pay=gross,
            federal_tax=federal,
            state_tax=state,
            social_security=social_security,
            medicare=medicare,
            local_tax=local,
        )
