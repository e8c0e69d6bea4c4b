"""Tests for the payroll run orchestrator."""

import asyncio
import logging
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from paycheck_engine.models import EmployeeTaxProfile, PayrollEntry
from paycheck_engine.providers import LedgerStubProvider
from paycheck_engine.services.directory import SqlEmployeeDirectory, SqlTimeTracking
from paycheck_engine.services.payroll_run_service import (
    EmployeeFailure,
    FailureCause,
    NoEmployeesError,
    PayrollRunService,
)
from tests.conftest import make_settings, weekdays

# 2023-01-01 is a Sunday
PERIOD_1 = (date(2023, 1, 1), date(2023, 1, 14), date(2023, 1, 20))
PERIOD_2 = (date(2023, 1, 15), date(2023, 1, 28), date(2023, 2, 3))
PERIOD_3 = (date(2023, 1, 29), date(2023, 2, 11), date(2023, 2, 17))


@pytest.fixture
def ledger() -> LedgerStubProvider:
    return LedgerStubProvider(failing_wallets={"wallet-broken"})


@pytest.fixture
def make_service(session_factory, seeded_reference_data, ledger):
    def _make_service(time_tracking=None, **setting_overrides) -> PayrollRunService:
        return PayrollRunService(
            session_factory=session_factory,
            directory=SqlEmployeeDirectory(session_factory),
            time_tracking=time_tracking or SqlTimeTracking(session_factory),
            ledger=ledger,
            reference_data=seeded_reference_data,
            settings=make_settings(**setting_overrides),
        )

    return _make_service


@pytest.fixture
def service(make_service) -> PayrollRunService:
    return make_service()


async def load_entries(session_factory, employer_id) -> list[PayrollEntry]:
    async with session_factory() as session:
        result = await session.execute(
            select(PayrollEntry)
            .where(PayrollEntry.employer_id == employer_id)
            .options(selectinload(PayrollEntry.tax_calculation))
            .order_by(PayrollEntry.pay_period_start)
        )
        return list(result.scalars().all())


class TestProcessPayroll:
    """Happy path through gross, withholding and persistence."""

    async def test_2000_biweekly_single_filer(
        self, service, session_factory, employer_id, add_employee
    ):
        """80 hours at $25, single, no state → $1,678.83 net."""
        employee = await add_employee(hours=weekdays(PERIOD_1[0]), profile={})

        result = await service.process_payroll(employer_id, *PERIOD_1)

        assert result.tax_year == 2023
        assert len(result.successes) == 1
        assert result.errors == []
        success = result.successes[0]
        assert success.employee_id == employee.employee_id
        assert success.gross_pay.gross_pay == Decimal("2000.00")
        assert success.withholding.federal_withholding == Decimal("168.17")
        assert success.net_pay == Decimal("1678.83")

        [entry] = await load_entries(session_factory, employer_id)
        assert entry.status == "completed"
        assert entry.payroll_entry_id == success.payroll_entry_id
        assert entry.gross_pay == Decimal("2000.00")
        assert entry.federal_tax == Decimal("168.17")
        assert entry.social_security == Decimal("124.00")
        assert entry.medicare == Decimal("29.00")
        assert entry.net_pay == Decimal("1678.83")
        assert entry.processed_at is not None

        calc = entry.tax_calculation
        assert calc.tax_year == 2023
        assert calc.state_method == "no_state"
        assert calc.federal_taxable_income == Decimal("1467.31")
        assert calc.ytd_gross_earnings == Decimal("2000.00")
        assert calc.ytd_federal_withholding == Decimal("168.17")

    async def test_net_pay_identity(self, service, session_factory, employer_id, add_employee):
        await add_employee(
            regular_rate="31.37",
            hours=weekdays(PERIOD_1[0], "9.25"),
            profile={"state_of_residence": "CA", "local_tax_rate": Decimal("0.0125")},
        )

        await service.process_payroll(employer_id, *PERIOD_1)

        [entry] = await load_entries(session_factory, employer_id)
        assert entry.overtime_hours == Decimal("12.50")
        assert entry.net_pay == entry.gross_pay - entry.total_withholding
        for amount in (
            entry.federal_tax,
            entry.state_tax,
            entry.social_security,
            entry.medicare,
            entry.local_tax,
        ):
            assert amount >= 0
            assert amount == amount.quantize(Decimal("0.01"))

    async def test_inactive_employees_skipped(
        self, service, session_factory, employer_id, add_employee
    ):
        await add_employee(hours=weekdays(PERIOD_1[0]), profile={})
        await add_employee(
            first_name="Gone", hours=weekdays(PERIOD_1[0]), profile={}, status="terminated"
        )

        result = await service.process_payroll(employer_id, *PERIOD_1)

        assert len(result.outcomes) == 1

    async def test_no_hours_completes_with_zero_pay(
        self, service, session_factory, employer_id, add_employee
    ):
        await add_employee(hours=[(date(2023, 1, 3), "8", "pending")], profile={})

        result = await service.process_payroll(employer_id, *PERIOD_1)

        assert result.successes[0].net_pay == Decimal("0")

    async def test_no_employees(self, service, employer_id):
        with pytest.raises(NoEmployeesError):
            await service.process_payroll(employer_id, *PERIOD_1)

    async def test_inverted_period(self, service, employer_id):
        with pytest.raises(ValueError):
            await service.process_payroll(
                employer_id, date(2023, 1, 14), date(2023, 1, 1), date(2023, 1, 20)
            )


class TestPartialFailure:
    """One employee's failure never aborts the run."""

    async def test_missing_profile_for_one_of_five(
        self, service, session_factory, employer_id, add_employee, caplog
    ):
        for last_name in ("Adams", "Baker", "Clark", "Davis", "Evans"):
            await add_employee(
                last_name=last_name,
                hours=weekdays(PERIOD_1[0]),
                profile=None if last_name == "Clark" else {},
            )

        with caplog.at_level(logging.ERROR):
            result = await service.process_payroll(employer_id, *PERIOD_1)

        assert len(result.successes) == 4
        assert len(result.processed_entries) == 4
        [failure] = result.errors
        assert failure.employee_name == "Test Clark"
        assert failure.cause == FailureCause.MISSING_TAX_PROFILE
        assert "Tax profile not found" in failure.error
        assert "Tax profile not found" in caplog.text

        entries = await load_entries(session_factory, employer_id)
        statuses = sorted(e.status for e in entries)
        assert statuses == ["completed"] * 4 + ["error"]
        [errored] = [e for e in entries if e.status == "error"]
        assert errored.payroll_entry_id == failure.payroll_entry_id
        assert errored.tax_calculation is None
        assert "Tax profile not found" in errored.error_message

    async def test_missing_reference_data(
        self, service, session_factory, employer_id, add_employee
    ):
        await add_employee(
            hours=[(date(2025, 1, 6), "8")],
            profile={"year": 2025},
        )

        result = await service.process_payroll(
            employer_id, date(2025, 1, 5), date(2025, 1, 18), date(2025, 1, 24)
        )

        [failure] = result.errors
        assert failure.cause == FailureCause.MISSING_REFERENCE_DATA
        [entry] = await load_entries(session_factory, employer_id)
        assert entry.status == "error"

    async def test_collaborator_error_is_contained(
        self, make_service, session_factory, employer_id, add_employee
    ):
        flaky = await add_employee(last_name="Flaky", hours=weekdays(PERIOD_1[0]), profile={})
        await add_employee(last_name="Steady", hours=weekdays(PERIOD_1[0]), profile={})

        class FlakyTimeTracking(SqlTimeTracking):
            async def list_approved_time_entries(self, employee_id, start_date, end_date):
                if employee_id == flaky.employee_id:
                    raise ConnectionError("time tracking unavailable")
                return await super().list_approved_time_entries(
                    employee_id, start_date, end_date
                )

        service = make_service(time_tracking=FlakyTimeTracking(session_factory))

        result = await service.process_payroll(employer_id, *PERIOD_1)

        [failure] = result.errors
        assert failure.cause == FailureCause.UNEXPECTED
        assert failure.payroll_entry_id is None
        assert len(result.successes) == 1
        assert len(await load_entries(session_factory, employer_id)) == 1


class TestDisbursement:
    """Net pay is credited after the entry commits."""

    async def test_credit_to_wallet(self, service, ledger, employer_id, add_employee):
        await add_employee(
            hours=weekdays(PERIOD_1[0]),
            profile={},
            direct_deposit_enabled=True,
            wallet_id="wallet-1",
        )

        result = await service.process_payroll(employer_id, *PERIOD_1)

        [success] = result.successes
        assert success.ledger_transaction_id is not None
        assert ledger.balance("wallet-1") == Decimal("1678.83")
        assert ledger.transactions[0].memo == "Payroll 2023-01-01 to 2023-01-14"

    async def test_direct_deposit_disabled(self, service, ledger, employer_id, add_employee):
        await add_employee(hours=weekdays(PERIOD_1[0]), profile={}, wallet_id="wallet-1")

        result = await service.process_payroll(employer_id, *PERIOD_1)

        assert result.successes[0].ledger_transaction_id is None
        assert ledger.transactions == []

    async def test_ledger_failure_keeps_entry_completed(
        self, service, session_factory, employer_id, add_employee
    ):
        await add_employee(
            hours=weekdays(PERIOD_1[0]),
            profile={},
            direct_deposit_enabled=True,
            wallet_id="wallet-broken",
        )

        result = await service.process_payroll(employer_id, *PERIOD_1)

        [failure] = result.errors
        assert failure.cause == FailureCause.DISBURSEMENT_FAILED
        assert failure.entry_completed
        assert result.processed_entries == [failure.payroll_entry_id]

        [entry] = await load_entries(session_factory, employer_id)
        assert entry.status == "completed"

    async def test_missing_wallet(self, service, employer_id, add_employee):
        await add_employee(hours=weekdays(PERIOD_1[0]), profile={}, direct_deposit_enabled=True)

        result = await service.process_payroll(employer_id, *PERIOD_1)

        [failure] = result.errors
        assert failure.cause == FailureCause.DISBURSEMENT_FAILED
        assert "no wallet" in failure.error

    async def test_zero_net_pay_not_credited(self, service, ledger, employer_id, add_employee):
        await add_employee(profile={}, direct_deposit_enabled=True, wallet_id="wallet-1")

        result = await service.process_payroll(employer_id, *PERIOD_1)

        assert len(result.successes) == 1
        assert ledger.transactions == []


class TestStoppingARun:
    """Cancellation and deadlines skip employees not yet started."""

    async def test_cancelled_before_start(
        self, service, session_factory, employer_id, add_employee
    ):
        for last_name in ("Adams", "Baker"):
            await add_employee(last_name=last_name, hours=weekdays(PERIOD_1[0]), profile={})
        cancel = asyncio.Event()
        cancel.set()

        result = await service.process_payroll(employer_id, *PERIOD_1, cancel_event=cancel)

        assert len(result.outcomes) == 2
        assert all(
            isinstance(o, EmployeeFailure) and o.cause == FailureCause.CANCELLED
            for o in result.outcomes
        )
        assert await load_entries(session_factory, employer_id) == []

    async def test_deadline_exceeded(self, make_service, employer_id, add_employee):
        await add_employee(hours=weekdays(PERIOD_1[0]), profile={})
        service = make_service(run_deadline_seconds=0.0)

        result = await service.process_payroll(employer_id, *PERIOD_1)

        [failure] = result.errors
        assert failure.cause == FailureCause.CANCELLED
        assert "deadline" in failure.error


class TestYearToDate:
    """YTD on each entry equals prior completed history plus this check."""

    async def test_ytd_accumulates_across_runs(
        self, service, session_factory, employer_id, add_employee
    ):
        hours = weekdays(PERIOD_1[0]) + weekdays(PERIOD_2[0], "9")
        await add_employee(
            hours=hours,
            profile={"state_of_residence": "CA", "local_tax_rate": Decimal("0.0125")},
        )

        await service.process_payroll(employer_id, *PERIOD_1)
        await service.process_payroll(employer_id, *PERIOD_2)

        first, second = await load_entries(session_factory, employer_id)
        prior, current = first.tax_calculation, second.tax_calculation
        assert current.ytd_gross_earnings == prior.ytd_gross_earnings + second.gross_pay
        assert current.ytd_federal_withholding == (
            prior.ytd_federal_withholding + second.federal_tax
        )
        assert current.ytd_state_withholding == prior.ytd_state_withholding + second.state_tax
        assert current.ytd_social_security_withholding == (
            prior.ytd_social_security_withholding + second.social_security
        )
        assert current.ytd_medicare_withholding == (
            prior.ytd_medicare_withholding + second.medicare
        )
        assert second.local_tax > 0
        assert current.ytd_local_withholding == prior.ytd_local_withholding + second.local_tax

    async def test_errored_entries_do_not_count(
        self, service, session_factory, employer_id, add_employee
    ):
        employee = await add_employee(
            hours=weekdays(PERIOD_1[0]) + weekdays(PERIOD_2[0])
        )

        await service.process_payroll(employer_id, *PERIOD_1)  # no profile yet
        async with session_factory() as session:
            async with session.begin():
                session.add(EmployeeTaxProfile(employee_id=employee.employee_id, year=2023))
        await service.process_payroll(employer_id, *PERIOD_2)

        errored, completed = await load_entries(session_factory, employer_id)
        assert errored.status == "error"
        assert completed.tax_calculation.ytd_gross_earnings == Decimal("2000.00")

    async def test_social_security_cap_across_runs(
        self, service, session_factory, employer_id, add_employee
    ):
        """$80,000 checks: the third check only has $200 left under the cap."""
        hours = weekdays(PERIOD_1[0]) + weekdays(PERIOD_2[0]) + weekdays(PERIOD_3[0])
        await add_employee(regular_rate="1000.00", hours=hours, profile={})

        for period in (PERIOD_1, PERIOD_2, PERIOD_3):
            await service.process_payroll(employer_id, *period)

        entries = await load_entries(session_factory, employer_id)
        assert [e.social_security for e in entries] == [
            Decimal("4960.00"),
            Decimal("4960.00"),
            Decimal("12.40"),
        ]
        third = entries[2].tax_calculation
        assert third.social_security_taxable == Decimal("200.00")
        assert third.ytd_social_security_withholding == Decimal("9932.40")
        # Crossed $200,000 during the third check
        assert third.additional_medicare_taxable == Decimal("40000.00")

    async def test_period_spanning_new_year_counts_toward_new_year(
        self, service, seeded_reference_data, session_factory, employer_id, add_employee
    ):
        """A Dec 24 - Jan 6 check is computed and accumulated as 2024."""
        await seeded_reference_data.clone_tax_year(2023, 2024)
        december = (date(2023, 12, 10), date(2023, 12, 23), date(2023, 12, 29))
        spanning = (date(2023, 12, 24), date(2024, 1, 6), date(2024, 1, 12))
        january = (date(2024, 1, 7), date(2024, 1, 20), date(2024, 1, 26))
        february = (date(2024, 1, 21), date(2024, 2, 3), date(2024, 2, 9))
        periods = (december, spanning, january, february)
        employee = await add_employee(
            regular_rate="1000.00",
            hours=[day for period in periods for day in weekdays(period[0])],
            profile={"year": 2024},
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(EmployeeTaxProfile(employee_id=employee.employee_id, year=2023))

        for period in periods:
            await service.process_payroll(employer_id, *period)

        entries = await load_entries(session_factory, employer_id)
        calcs = [e.tax_calculation for e in entries]
        assert [c.tax_year for c in calcs] == [2023, 2024, 2024, 2024]
        # The December check belongs to 2023 and does not count toward 2024
        assert [c.ytd_gross_earnings for c in calcs] == [
            Decimal("80000.00"),
            Decimal("80000.00"),
            Decimal("160000.00"),
            Decimal("240000.00"),
        ]
        assert [e.social_security for e in entries] == [
            Decimal("4960.00"),
            Decimal("4960.00"),
            Decimal("4960.00"),
            Decimal("12.40"),
        ]
        assert calcs[3].social_security_taxable == Decimal("200.00")
