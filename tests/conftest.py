"""Pytest fixtures for paycheck engine tests."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from paycheck_engine.calculators.types import (
    Allowances,
    BracketRow,
    FicaRates,
    TaxProfile,
    TaxYearTables,
)
from paycheck_engine.config import DEFAULT_NO_INCOME_TAX_STATES, Settings
from paycheck_engine.database import create_schema, create_session_factory, get_engine
from paycheck_engine.models import Employee, EmployeeTaxProfile, TimeEntry
from paycheck_engine.services.reference_data import (
    DEFAULT_FEDERAL_BRACKETS,
    DEFAULT_FICA_RATES,
    DEFAULT_STATE_BRACKETS,
    DEFAULT_TAX_ALLOWANCES,
    ReferenceDataService,
)

TAX_YEAR = 2023


def make_brackets(rows: Sequence[dict[str, Any]]) -> tuple[BracketRow, ...]:
    """Bracket rows from the admin input shape."""
    return tuple(
        BracketRow(
            income_from=Decimal(row["income_from"]),
            income_to=Decimal(row["income_to"]) if row.get("income_to") is not None else None,
            rate=Decimal(row["rate"]),
            base_amount=Decimal(row.get("base_amount") or "0"),
            order=order,
        )
        for order, row in enumerate(rows, start=1)
    )


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_url": "sqlite+aiosqlite://",
        "debug": False,
        "log_level": "INFO",
        "pay_frequency": "biweekly",
        "overtime_threshold_hours": Decimal("40"),
        "overtime_multiplier": Decimal("1.5"),
        "no_income_tax_states": frozenset(DEFAULT_NO_INCOME_TAX_STATES.split(",")),
        "state_flat_rate_fallback": Decimal("0.05"),
        "additional_medicare_filing_status_aware": False,
        "run_deadline_seconds": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def tables_2023() -> TaxYearTables:
    """The default 2023 reference data as an in-memory snapshot."""
    return TaxYearTables(
        year=TAX_YEAR,
        federal_brackets={
            status: make_brackets(rows) for status, rows in DEFAULT_FEDERAL_BRACKETS.items()
        },
        state_brackets={key: make_brackets(rows) for key, rows in DEFAULT_STATE_BRACKETS.items()},
        fica=FicaRates(**{k: Decimal(v) for k, v in DEFAULT_FICA_RATES.items()}),
        allowances=Allowances(**{k: Decimal(v) for k, v in DEFAULT_TAX_ALLOWANCES.items()}),
    )


@pytest.fixture
def single_profile() -> TaxProfile:
    """Single filer, no allowances, no state."""
    return TaxProfile(employee_id=uuid4(), year=TAX_YEAR)


@pytest.fixture
def texas_profile(single_profile: TaxProfile) -> TaxProfile:
    return replace(single_profile, state_of_residence="TX")


# ===== Database fixtures =====


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database per test."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'paycheck.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def reference_data(session_factory) -> ReferenceDataService:
    return ReferenceDataService(session_factory)


@pytest_asyncio.fixture
async def seeded_reference_data(reference_data: ReferenceDataService) -> ReferenceDataService:
    await reference_data.seed_default_tax_data(TAX_YEAR)
    return reference_data


@pytest.fixture
def employer_id() -> UUID:
    return uuid4()


@pytest.fixture
def add_employee(session_factory, employer_id):
    """Factory that stores an employee, optional tax profile and time entries."""

    async def _add_employee(
        first_name: str = "Test",
        last_name: str = "Employee",
        regular_rate: str = "25.00",
        hours: Sequence[tuple[date, str] | tuple[date, str, str]] = (),
        profile: dict[str, Any] | None = None,
        **employee_fields: Any,
    ) -> Employee:
        async with session_factory() as session:
            async with session.begin():
                employee = Employee(
                    employee_id=uuid4(),
                    employer_id=employee_fields.pop("employer_id", employer_id),
                    first_name=first_name,
                    last_name=last_name,
                    regular_rate=Decimal(regular_rate),
                    **employee_fields,
                )
                session.add(employee)
                await session.flush()

                if profile is not None:
                    session.add(
                        EmployeeTaxProfile(
                            employee_id=employee.employee_id,
                            year=profile.pop("year", TAX_YEAR),
                            **profile,
                        )
                    )

                for item in hours:
                    work_date, worked = item[0], item[1]
                    status = item[2] if len(item) > 2 else "approved"
                    session.add(
                        TimeEntry(
                            employee_id=employee.employee_id,
                            work_date=work_date,
                            hours_worked=Decimal(worked),
                            status=status,
                        )
                    )
        return employee

    return _add_employee


def weekdays(period_start: date, hours: str = "8") -> list[tuple[date, str]]:
    """Monday-Friday of both weeks of a biweekly period starting on a Sunday."""
    return [
        (period_start + timedelta(days=week * 7 + day), hours)
        for week in (0, 1)
        for day in range(1, 6)
    ]
