"""ORM models for paycheck engine."""

from paycheck_engine.models.base import Base, TimestampMixin
from paycheck_engine.models.employee import Employee, EmployeeTaxProfile, TimeEntry
from paycheck_engine.models.payroll import PayrollEntry, TaxCalculation
from paycheck_engine.models.reference import (
    FicaRate,
    StateTaxAllowance,
    TaxAllowance,
    TaxBracket,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Employee",
    "EmployeeTaxProfile",
    "TimeEntry",
    "PayrollEntry",
    "TaxCalculation",
    "FicaRate",
    "StateTaxAllowance",
    "TaxAllowance",
    "TaxBracket",
]
