"""Pay stub and payroll report projections over completed entries."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from paycheck_engine.calculators.money import ZERO, round_to_cents, to_decimal
from paycheck_engine.models import Employee, PayrollEntry
from paycheck_engine.schemas import (
    PayPeriod,
    PayrollReport,
    PayStub,
    ReportEntry,
    ReportSummary,
    ReportTaxes,
    StubDeductions,
    StubEarnings,
    StubEmployee,
    StubYearToDate,
)
from paycheck_engine.services.state_machine import PayrollEntryStateMachine, PayrollEntryStatus

logger = logging.getLogger(__name__)


class PayrollEntryNotFoundError(Exception):
    """Raised when a payroll entry does not exist."""

    def __init__(self, payroll_entry_id: UUID):
        self.payroll_entry_id = payroll_entry_id
        super().__init__(f"Payroll entry {payroll_entry_id} not found")


class PayrollEntryNotCompletedError(Exception):
    """Raised when a stub is requested for an entry that is not completed."""

    def __init__(self, payroll_entry_id: UUID, status: str):
        self.payroll_entry_id = payroll_entry_id
        self.status = status
        super().__init__(
            f"Payroll entry {payroll_entry_id} is {status}; pay stubs require a completed entry"
        )


def mask_ssn(ssn_last4: str | None) -> str | None:
    if not ssn_last4:
        return None
    return f"XXX-XX-{ssn_last4[-4:]}"


class PayStubService:
    """Read-only views of completed payroll entries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def generate_pay_stub(self, payroll_entry_id: UUID) -> PayStub:
        """Build the pay stub for one completed entry.

        Raises:
            PayrollEntryNotFoundError: If the entry does not exist
            PayrollEntryNotCompletedError: If the entry is not completed
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(PayrollEntry)
                .where(PayrollEntry.payroll_entry_id == payroll_entry_id)
                .options(
                    selectinload(PayrollEntry.employee),
                    selectinload(PayrollEntry.tax_calculation),
                )
            )
            entry = result.scalar_one_or_none()

        if entry is None:
            raise PayrollEntryNotFoundError(payroll_entry_id)
        if not PayrollEntryStateMachine.is_reportable(entry.status):
            raise PayrollEntryNotCompletedError(payroll_entry_id, entry.status)

        employee = entry.employee
        calc = entry.tax_calculation

        year_to_date = None
        if calc is not None:
            year_to_date = StubYearToDate(
                gross_earnings=to_decimal(calc.ytd_gross_earnings),
                federal_tax=to_decimal(calc.ytd_federal_withholding),
                state_tax=to_decimal(calc.ytd_state_withholding),
                social_security=to_decimal(calc.ytd_social_security_withholding),
                medicare=to_decimal(calc.ytd_medicare_withholding),
                local_tax=to_decimal(calc.ytd_local_withholding),
            )

        gross_pay = to_decimal(entry.gross_pay)
        net_pay = to_decimal(entry.net_pay)

        return PayStub(
            payroll_entry_id=entry.payroll_entry_id,
            employer_id=entry.employer_id,
            pay_period=PayPeriod(
                start=entry.pay_period_start,
                end=entry.pay_period_end,
                pay_date=entry.pay_date,
            ),
            employee=StubEmployee(
                id=employee.employee_id,
                name=employee.full_name,
                ssn=mask_ssn(employee.ssn_last4),
            ),
            earnings=StubEarnings(
                hours_worked=to_decimal(entry.hours_worked),
                regular_hours=to_decimal(entry.regular_hours),
                overtime_hours=to_decimal(entry.overtime_hours),
                regular_rate=to_decimal(entry.regular_rate),
                overtime_rate=to_decimal(entry.overtime_rate),
                regular_pay=to_decimal(entry.regular_pay),
                overtime_pay=to_decimal(entry.overtime_pay),
                gross_pay=gross_pay,
            ),
            deductions=StubDeductions(
                federal_tax=to_decimal(entry.federal_tax),
                state_tax=to_decimal(entry.state_tax),
                social_security=to_decimal(entry.social_security),
                medicare=to_decimal(entry.medicare),
                local_tax=to_decimal(entry.local_tax),
                total_deductions=round_to_cents(gross_pay - net_pay),
            ),
            year_to_date=year_to_date,
            net_pay=net_pay,
            processed_at=entry.processed_at,
        )

    async def generate_payroll_report(
        self,
        employer_id: UUID,
        start_date: date,
        end_date: date,
    ) -> PayrollReport:
        """Summarize completed entries with pay_date in [start_date, end_date]."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PayrollEntry, Employee)
                .join(Employee, Employee.employee_id == PayrollEntry.employee_id)
                .where(
                    PayrollEntry.employer_id == employer_id,
                    PayrollEntry.status == PayrollEntryStatus.COMPLETED.value,
                    PayrollEntry.pay_date >= start_date,
                    PayrollEntry.pay_date <= end_date,
                )
                .order_by(PayrollEntry.pay_date, Employee.last_name, Employee.first_name)
            )
            rows = result.all()

        entries: list[ReportEntry] = []
        employee_ids: set[UUID] = set()
        total_gross = ZERO
        total_taxes = ZERO
        total_net = ZERO

        for entry, employee in rows:
            taxes = ReportTaxes(
                federal=to_decimal(entry.federal_tax),
                state=to_decimal(entry.state_tax),
                social_security=to_decimal(entry.social_security),
                medicare=to_decimal(entry.medicare),
                local=to_decimal(entry.local_tax),
                total=round_to_cents(to_decimal(entry.total_withholding)),
            )
            gross = to_decimal(entry.gross_pay)
            net = to_decimal(entry.net_pay)

            employee_ids.add(entry.employee_id)
            total_gross += gross
            total_taxes += taxes.total
            total_net += net

            entries.append(
                ReportEntry(
                    payroll_entry_id=entry.payroll_entry_id,
                    employee_id=entry.employee_id,
                    employee_name=employee.full_name,
                    pay_date=entry.pay_date,
                    pay_period=PayPeriod(start=entry.pay_period_start, end=entry.pay_period_end),
                    hours_worked=to_decimal(entry.hours_worked),
                    gross_pay=gross,
                    taxes=taxes,
                    net_pay=net,
                )
            )

        logger.debug(
            "Payroll report for employer %s: %d entries", employer_id, len(entries)
        )

        return PayrollReport(
            employer_id=employer_id,
            start_date=start_date,
            end_date=end_date,
            summary=ReportSummary(
                total_employees=len(employee_ids),
                total_gross_pay=round_to_cents(total_gross),
                total_taxes=round_to_cents(total_taxes),
                total_net_pay=round_to_cents(total_net),
            ),
            entries=entries,
        )
