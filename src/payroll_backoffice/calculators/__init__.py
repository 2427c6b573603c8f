"""Payroll calculation engine."""

from payroll_backoffice.calculators.engine import (
    CalculationResult,
    PayrollEngine,
    RunCalculationResult,
)
from payroll_backoffice.calculators.line_builder import LineItemBuilder, PayslipTotals
from payroll_backoffice.calculators.timing import TimingResolver, should_apply

__all__ = [
    "CalculationResult",
    "LineItemBuilder",
    "PayrollEngine",
    "PayslipTotals",
    "RunCalculationResult",
    "TimingResolver",
    "should_apply",
]
