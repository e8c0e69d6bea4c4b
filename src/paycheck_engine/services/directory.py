"""SQL-backed employee directory and time tracking.

Read-only views over the employee, employee_tax_profile and time_entry
tables, returning plain records so the engine never holds ORM rows.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paycheck_engine.calculators.money import ZERO, to_decimal
from paycheck_engine.calculators.types import EmployeeRecord, TaxProfile, TimeRecord
from paycheck_engine.models import Employee, EmployeeTaxProfile, TimeEntry


def employee_record(employee: Employee) -> EmployeeRecord:
    return EmployeeRecord(
        employee_id=employee.employee_id,
        employer_id=employee.employer_id,
        name=employee.full_name,
        regular_rate=to_decimal(employee.regular_rate),
        overtime_rate=(
            to_decimal(employee.overtime_rate) if employee.overtime_rate is not None else None
        ),
        pre_tax_deduction=to_decimal(employee.pre_tax_deduction),
        direct_deposit_enabled=employee.direct_deposit_enabled,
        wallet_id=employee.wallet_id,
    )


def tax_profile(profile: EmployeeTaxProfile) -> TaxProfile:
    return TaxProfile(
        employee_id=profile.employee_id,
        year=profile.year,
        filing_status=profile.filing_status,
        allowances=profile.allowances,
        additional_withholding=to_decimal(profile.additional_withholding),
        exempt_from_federal_tax=profile.exempt_from_federal_tax,
        exempt_from_state_tax=profile.exempt_from_state_tax,
        exempt_from_local_tax=profile.exempt_from_local_tax,
        state_of_residence=profile.state_of_residence,
        state_of_employment=profile.state_of_employment,
        local_tax_rate=to_decimal(profile.local_tax_rate) if profile.local_tax_rate else ZERO,
    )


class SqlEmployeeDirectory:
    """Employee directory backed by the employee tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_active_employees(self, employer_id: UUID) -> list[EmployeeRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Employee)
                .where(Employee.employer_id == employer_id, Employee.status == "active")
                .order_by(Employee.last_name, Employee.first_name, Employee.employee_id)
            )
            return [employee_record(e) for e in result.scalars().all()]

    async def get_employee_tax_profile(self, employee_id: UUID, year: int) -> TaxProfile | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(EmployeeTaxProfile).where(
                    EmployeeTaxProfile.employee_id == employee_id,
                    EmployeeTaxProfile.year == year,
                )
            )
            profile = result.scalar_one_or_none()
            return tax_profile(profile) if profile else None


class SqlTimeTracking:
    """Time tracking backed by the time_entry table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_approved_time_entries(
        self,
        employee_id: UUID,
        start_date: date,
        end_date: date,
    ) -> list[TimeRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TimeEntry)
                .where(
                    TimeEntry.employee_id == employee_id,
                    TimeEntry.status == "approved",
                    TimeEntry.work_date >= start_date,
                    TimeEntry.work_date <= end_date,
                )
                .order_by(TimeEntry.work_date)
            )
            return [
                TimeRecord(
                    employee_id=entry.employee_id,
                    work_date=entry.work_date,
                    hours_worked=to_decimal(entry.hours_worked),
                    status=entry.status,
                )
                for entry in result.scalars().all()
            ]
