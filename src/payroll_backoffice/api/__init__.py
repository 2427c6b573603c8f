"""HTTP adapter over the payroll back office services."""
