"""Payroll calculation engine."""

from paycheck_engine.calculators.gross_pay import GrossPayCalculator
from paycheck_engine.calculators.tax_calculator import (
    MissingReferenceDataError,
    WithholdingCalculator,
)

__all__ = [
    "GrossPayCalculator",
    "MissingReferenceDataError",
    "WithholdingCalculator",
]
