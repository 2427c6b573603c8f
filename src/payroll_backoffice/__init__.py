"""Payroll back office: leave/CTO balance ledger, request workflows and the payroll run pipeline."""

__version__ = "0.1.0"
