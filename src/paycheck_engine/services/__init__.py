"""Payroll engine services."""

from paycheck_engine.services.directory import SqlEmployeeDirectory, SqlTimeTracking
from paycheck_engine.services.pay_stub_service import (
    PayrollEntryNotCompletedError,
    PayrollEntryNotFoundError,
    PayStubService,
)
from paycheck_engine.services.payroll_run_service import (
    EmployeeFailure,
    EmployeeSuccess,
    FailureCause,
    MissingTaxProfileError,
    NoEmployeesError,
    PayrollRunResult,
    PayrollRunService,
)
from paycheck_engine.services.reference_data import (
    ReferenceDataService,
    ReferenceDataValidationError,
)
from paycheck_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollEntryStateMachine,
    PayrollEntryStatus,
)
from paycheck_engine.services.ytd_aggregator import YtdAggregator

__all__ = [
    "SqlEmployeeDirectory",
    "SqlTimeTracking",
    "PayrollEntryNotCompletedError",
    "PayrollEntryNotFoundError",
    "PayStubService",
    "EmployeeFailure",
    "EmployeeSuccess",
    "FailureCause",
    "MissingTaxProfileError",
    "NoEmployeesError",
    "PayrollRunResult",
    "PayrollRunService",
    "ReferenceDataService",
    "ReferenceDataValidationError",
    "InvalidTransitionError",
    "PayrollEntryStateMachine",
    "PayrollEntryStatus",
    "YtdAggregator",
]
