"""Payroll tax withholding and gross/net pay engine."""

__version__ = "1.0.0"
