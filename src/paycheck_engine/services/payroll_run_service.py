"""Payroll run service - main orchestrator for processing a pay period."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paycheck_engine.calculators import (
    GrossPayCalculator,
    MissingReferenceDataError,
    WithholdingCalculator,
)
from paycheck_engine.calculators.money import round_to_cents
from paycheck_engine.calculators.types import (
    EmployeeRecord,
    GrossPayResult,
    TaxProfile,
    TaxYearTables,
    WithholdingResult,
    YtdTotals,
)
from paycheck_engine.config import Settings, get_settings
from paycheck_engine.models import PayrollEntry, TaxCalculation
from paycheck_engine.providers.base import (
    DisbursementError,
    EmployeeDirectory,
    LedgerProvider,
    TimeTrackingProvider,
)
from paycheck_engine.services.reference_data import ReferenceDataService
from paycheck_engine.services.state_machine import (
    PayrollEntryStateMachine,
    PayrollEntryStatus,
)
from paycheck_engine.services.ytd_aggregator import YtdAggregator

logger = logging.getLogger(__name__)


class NoEmployeesError(Exception):
    """Raised when an employer has no active employees to pay."""

    def __init__(self, employer_id: UUID):
        self.employer_id = employer_id
        super().__init__(f"No active employees found for employer {employer_id}")


class MissingTaxProfileError(Exception):
    """Raised when an employee has no tax profile for the tax year."""

    def __init__(self, employee_id: UUID, year: int):
        self.employee_id = employee_id
        self.year = year
        super().__init__(f"Tax profile not found for employee {employee_id} for year {year}")


class FailureCause(str, Enum):
    """Why an employee was not paid cleanly."""

    MISSING_TAX_PROFILE = "missing_tax_profile"
    MISSING_REFERENCE_DATA = "missing_reference_data"
    DISBURSEMENT_FAILED = "disbursement_failed"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class EmployeeSuccess:
    """Entry completed and, where enabled, net pay disbursed."""

    employee_id: UUID
    employee_name: str
    payroll_entry_id: UUID
    gross_pay: GrossPayResult
    withholding: WithholdingResult
    ledger_transaction_id: str | None = None

    @property
    def net_pay(self):
        return self.withholding.net_pay


@dataclass(frozen=True)
class EmployeeFailure:
    """Employee that was not paid cleanly.

    payroll_entry_id is set when an entry was persisted: an errored entry for
    computation failures, or a completed entry when only the disbursement
    failed.
    """

    employee_id: UUID
    employee_name: str
    cause: FailureCause
    error: str
    payroll_entry_id: UUID | None = None

    @property
    def entry_completed(self) -> bool:
        return self.cause == FailureCause.DISBURSEMENT_FAILED and self.payroll_entry_id is not None


EmployeeOutcome = EmployeeSuccess | EmployeeFailure


@dataclass
class PayrollRunResult:
    """Per-employee outcomes of one payroll run, in processing order."""

    employer_id: UUID
    pay_period_start: date
    pay_period_end: date
    pay_date: date
    tax_year: int
    outcomes: list[EmployeeOutcome] = field(default_factory=list)

    @property
    def successes(self) -> list[EmployeeSuccess]:
        return [o for o in self.outcomes if isinstance(o, EmployeeSuccess)]

    @property
    def errors(self) -> list[EmployeeFailure]:
        return [o for o in self.outcomes if isinstance(o, EmployeeFailure)]

    @property
    def processed_entries(self) -> list[UUID]:
        """IDs of entries that reached completed."""
        ids = []
        for outcome in self.outcomes:
            if isinstance(outcome, EmployeeSuccess):
                ids.append(outcome.payroll_entry_id)
            elif outcome.entry_completed:
                ids.append(outcome.payroll_entry_id)
        return ids


class PayrollRunService:
    """Processes payroll for an employer's pay period.

    Employees are processed one at a time. For each employee:
    1. Approved time entries → gross pay
    2. In one transaction: insert a pending entry, read YTD excluding it,
       compute withholding, write the TaxCalculation, mark completed
       (or mark error if the computation fails)
    3. After commit, credit net pay to the employee's wallet when direct
       deposit is enabled

    A failure for one employee never stops the run; it is recorded as an
    EmployeeFailure and processing moves on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        directory: EmployeeDirectory,
        time_tracking: TimeTrackingProvider,
        ledger: LedgerProvider,
        reference_data: ReferenceDataService,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.directory = directory
        self.time_tracking = time_tracking
        self.ledger = ledger
        self.reference_data = reference_data
        self.settings = settings or get_settings()
        self.gross_pay_calculator = GrossPayCalculator(
            overtime_threshold=self.settings.overtime_threshold_hours,
            overtime_multiplier=self.settings.overtime_multiplier,
        )
        self.withholding_calculator = WithholdingCalculator.from_settings(self.settings)

    async def process_payroll(
        self,
        employer_id: UUID,
        start_date: date,
        end_date: date,
        pay_date: date,
        processed_by: UUID | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PayrollRunResult:
        """Run payroll for every active employee of an employer.

        Args:
            employer_id: Employer whose employees are paid
            start_date: First day of the pay period
            end_date: Last day of the pay period; its year is the tax year
            pay_date: Date employees are paid
            processed_by: User running payroll
            cancel_event: When set, employees not yet started are skipped

        Raises:
            NoEmployeesError: If the employer has no active employees
            ValueError: If the period is inverted
        """
        if end_date < start_date:
            raise ValueError(f"Pay period end {end_date} is before start {start_date}")

        employees = await self.directory.get_active_employees(employer_id)
        if not employees:
            raise NoEmployeesError(employer_id)

        tax_year = end_date.year
        tables = await self.reference_data.get_tax_data_for_year(tax_year)
        if tables.is_empty:
            logger.warning("No reference data loaded for tax year %s", tax_year)

        result = PayrollRunResult(
            employer_id=employer_id,
            pay_period_start=start_date,
            pay_period_end=end_date,
            pay_date=pay_date,
            tax_year=tax_year,
        )

        deadline = None
        if self.settings.run_deadline_seconds is not None:
            deadline = time.monotonic() + self.settings.run_deadline_seconds

        logger.info(
            "Processing payroll for employer %s, %s to %s (%d employees)",
            employer_id,
            start_date,
            end_date,
            len(employees),
        )

        for index, employee in enumerate(employees):
            stop_reason = self._stop_reason(cancel_event, deadline)
            if stop_reason:
                remaining = employees[index:]
                logger.warning(
                    "Payroll run for employer %s stopped (%s); %d employees not processed",
                    employer_id,
                    stop_reason,
                    len(remaining),
                )
                result.outcomes.extend(
                    EmployeeFailure(
                        employee_id=e.employee_id,
                        employee_name=e.name,
                        cause=FailureCause.CANCELLED,
                        error=stop_reason,
                    )
                    for e in remaining
                )
                break

            try:
                outcome = await self._process_employee(
                    employee, result, tables, processed_by
                )
            except Exception as e:
                logger.exception("Error processing payroll for employee %s", employee.employee_id)
                outcome = EmployeeFailure(
                    employee_id=employee.employee_id,
                    employee_name=employee.name,
                    cause=FailureCause.UNEXPECTED,
                    error=str(e) or type(e).__name__,
                )
            result.outcomes.append(outcome)

        logger.info(
            "Payroll run for employer %s finished: %d completed, %d errors",
            employer_id,
            len(result.processed_entries),
            len(result.errors),
        )
        return result

    @staticmethod
    def _stop_reason(cancel_event: asyncio.Event | None, deadline: float | None) -> str | None:
        if cancel_event is not None and cancel_event.is_set():
            return "payroll run cancelled"
        if deadline is not None and time.monotonic() >= deadline:
            return "payroll run deadline exceeded"
        return None

    async def _process_employee(
        self,
        employee: EmployeeRecord,
        run: PayrollRunResult,
        tables: TaxYearTables,
        processed_by: UUID | None,
    ) -> EmployeeOutcome:
        time_entries = await self.time_tracking.list_approved_time_entries(
            employee.employee_id, run.pay_period_start, run.pay_period_end
        )
        gross = self.gross_pay_calculator.calculate(
            time_entries, employee.regular_rate, employee.overtime_rate
        )
        profile = await self.directory.get_employee_tax_profile(employee.employee_id, run.tax_year)

        failure: EmployeeFailure | None = None
        withholding: WithholdingResult | None = None

        async with self.session_factory() as session:
            async with session.begin():
                entry = self._new_entry(employee, run, gross, processed_by)
                session.add(entry)
                await session.flush()

                try:
                    if profile is None:
                        raise MissingTaxProfileError(employee.employee_id, run.tax_year)
                    ytd = await YtdAggregator(session).get_prior_totals(
                        employee.employee_id,
                        run.tax_year,
                        exclude_entry_id=entry.payroll_entry_id,
                    )
                    withholding = self.withholding_calculator.calculate(
                        gross.gross_pay,
                        profile,
                        tables,
                        ytd,
                        pre_tax_deductions=employee.pre_tax_deduction,
                    )
                except (MissingTaxProfileError, MissingReferenceDataError) as e:
                    cause = (
                        FailureCause.MISSING_TAX_PROFILE
                        if isinstance(e, MissingTaxProfileError)
                        else FailureCause.MISSING_REFERENCE_DATA
                    )
                    logger.error(
                        "Payroll entry %s for employee %s failed: %s",
                        entry.payroll_entry_id,
                        employee.employee_id,
                        e,
                    )
                    failure = self._fail_entry(entry, employee, cause, str(e))
                except Exception as e:
                    logger.exception(
                        "Withholding calculation failed for employee %s", employee.employee_id
                    )
                    failure = self._fail_entry(
                        entry, employee, FailureCause.UNEXPECTED, str(e) or type(e).__name__
                    )
                else:
                    self._complete_entry(session, entry, profile, withholding, ytd, run.tax_year)

        if failure is not None:
            return failure

        success = EmployeeSuccess(
            employee_id=employee.employee_id,
            employee_name=employee.name,
            payroll_entry_id=entry.payroll_entry_id,
            gross_pay=gross,
            withholding=withholding,
        )
        if not employee.direct_deposit_enabled:
            return success
        return await self._disburse(employee, run, success)

    def _new_entry(
        self,
        employee: EmployeeRecord,
        run: PayrollRunResult,
        gross: GrossPayResult,
        processed_by: UUID | None,
    ) -> PayrollEntry:
        return PayrollEntry(
            employee_id=employee.employee_id,
            employer_id=run.employer_id,
            pay_period_start=run.pay_period_start,
            pay_period_end=run.pay_period_end,
            pay_date=run.pay_date,
            hours_worked=gross.hours_worked,
            regular_hours=gross.regular_hours,
            overtime_hours=gross.overtime_hours,
            regular_rate=gross.regular_rate,
            overtime_rate=gross.overtime_rate,
            regular_pay=gross.regular_pay,
            overtime_pay=gross.overtime_pay,
            gross_pay=gross.gross_pay,
            status=PayrollEntryStatus.PENDING.value,
            processed_by=processed_by,
        )

    def _fail_entry(
        self,
        entry: PayrollEntry,
        employee: EmployeeRecord,
        cause: FailureCause,
        message: str,
    ) -> EmployeeFailure:
        PayrollEntryStateMachine.transition(entry, PayrollEntryStatus.ERROR)
        entry.error_message = message
        entry.processed_at = datetime.now(timezone.utc)
        return EmployeeFailure(
            employee_id=employee.employee_id,
            employee_name=employee.name,
            cause=cause,
            error=message,
            payroll_entry_id=entry.payroll_entry_id,
        )

    def _complete_entry(
        self,
        session: AsyncSession,
        entry: PayrollEntry,
        profile: TaxProfile,
        withholding: WithholdingResult,
        ytd: YtdTotals,
        tax_year: int,
    ) -> None:
        entry.federal_tax = withholding.federal_withholding
        entry.state_tax = withholding.state_withholding
        entry.social_security = withholding.social_security_withholding
        entry.medicare = withholding.medicare_withholding
        entry.local_tax = withholding.local_withholding
        entry.net_pay = withholding.net_pay

        after = ytd.plus(withholding)
        session.add(
            TaxCalculation(
                payroll_entry_id=entry.payroll_entry_id,
                employee_id=entry.employee_id,
                tax_year=tax_year,
                filing_status=profile.filing_status,
                state_code=withholding.state_code,
                state_method=withholding.state.method,
                gross_pay=withholding.gross_pay,
                federal_taxable_income=round_to_cents(withholding.federal.taxable_income),
                state_taxable_income=round_to_cents(withholding.state.taxable_income),
                social_security_taxable=round_to_cents(withholding.social_security_taxable),
                medicare_taxable=round_to_cents(withholding.medicare_taxable),
                additional_medicare_taxable=round_to_cents(
                    withholding.additional_medicare_taxable
                ),
                federal_withholding=withholding.federal_withholding,
                state_withholding=withholding.state_withholding,
                social_security_withholding=withholding.social_security_withholding,
                medicare_withholding=withholding.medicare_withholding,
                additional_medicare_withholding=withholding.additional_medicare_withholding,
                local_withholding=withholding.local_withholding,
                ytd_gross_earnings=after.gross_pay,
                ytd_federal_withholding=after.federal_tax,
                ytd_state_withholding=after.state_tax,
                ytd_social_security_withholding=after.social_security,
                ytd_medicare_withholding=after.medicare,
                ytd_local_withholding=after.local_tax,
            )
        )

        PayrollEntryStateMachine.transition(entry, PayrollEntryStatus.COMPLETED)
        entry.processed_at = datetime.now(timezone.utc)

    async def _disburse(
        self,
        employee: EmployeeRecord,
        run: PayrollRunResult,
        success: EmployeeSuccess,
    ) -> EmployeeOutcome:
        net_pay = success.net_pay
        if net_pay <= 0:
            logger.warning(
                "Skipping direct deposit for entry %s: net pay is %s",
                success.payroll_entry_id,
                net_pay,
            )
            return success

        memo = f"Payroll {run.pay_period_start.isoformat()} to {run.pay_period_end.isoformat()}"
        try:
            if not employee.wallet_id:
                raise DisbursementError(None, net_pay, "no wallet on file")
            transaction = await self.ledger.credit(employee.wallet_id, net_pay, memo)
        except Exception as e:
            # The entry stays completed; the credit can be retried out of band
            logger.exception(
                "Direct deposit failed for payroll entry %s", success.payroll_entry_id
            )
            return EmployeeFailure(
                employee_id=employee.employee_id,
                employee_name=employee.name,
                cause=FailureCause.DISBURSEMENT_FAILED,
                error=str(e) or type(e).__name__,
                payroll_entry_id=success.payroll_entry_id,
            )

        return EmployeeSuccess(
            employee_id=success.employee_id,
            employee_name=success.employee_name,
            payroll_entry_id=success.payroll_entry_id,
            gross_pay=success.gross_pay,
            withholding=success.withholding,
            ledger_transaction_id=transaction.transaction_id,
        )
