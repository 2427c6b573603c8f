"""Typed step notes.

Each pipeline step writes one variant, tagged by `kind`. The variants are
only turned into JSON text when stored on PayrollProcessStep.notes and are
parsed back with the same adapter.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from payroll_backoffice.money import ZERO


class _Notes(BaseModel):
    model_config = ConfigDict(frozen=True)


# ===== Step 1 =====


class RunScope(_Notes):
    department_ids: list[str] = Field(default_factory=list)
    branch_ids: list[str] = Field(default_factory=list)
    employee_ids: list[str] = Field(default_factory=list)

    @property
    def is_whole_company(self) -> bool:
        return not (self.department_ids or self.branch_ids or self.employee_ids)


class SetupNotes(_Notes):
    kind: Literal["setup"] = "setup"
    run_type: str
    scope: RunScope
    eligible_employees: int
    created_at: datetime


# ===== Step 2 =====


class ValidationIssue(_Notes):
    code: str
    message: str
    employee_id: UUID | None = None
    employee_number: str | None = None


class EmployeeAttendanceSummary(_Notes):
    employee_id: UUID
    employee_number: str
    employee_name: str
    expected_days: int = 0
    present_days: Decimal = ZERO
    absent_days: Decimal = ZERO
    missing_days: int = 0
    incomplete_days: int = 0
    tardiness_mins: int = 0
    undertime_mins: int = 0
    approved_overtime_hours: Decimal = ZERO
    cto_conversion_hours: Decimal = ZERO


class ValidationTrace(_Notes):
    kind: Literal["validation"] = "validation"
    validated_at: datetime
    error_count: int
    warning_count: int
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    employees: list[EmployeeAttendanceSummary] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.error_count == 0


# ===== Step 3 =====


class EmployeeCalculationTrace(_Notes):
    employee_id: UUID
    employee_number: str
    employee_name: str
    calculation_id: UUID
    inputs_fingerprint: str
    attendance: dict[str, int | str]
    rates: dict[str, Decimal]
    earnings: dict[str, Decimal]
    deductions: dict[str, Decimal]
    statutory_applied: dict[str, bool]
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    warnings: list[str] = Field(default_factory=list)


class SkippedEmployee(_Notes):
    employee_id: UUID
    employee_number: str
    reason: str


class RunTotals(_Notes):
    employee_count: int = 0
    gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_pay: Decimal = ZERO
    employer_contributions: Decimal = ZERO


class CalculationTrace(_Notes):
    kind: Literal["calculation"] = "calculation"
    calculation_version: str
    calculated_at: datetime
    run_type: str
    totals: RunTotals
    carried_adjustments: int = 0
    skipped: list[SkippedEmployee] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    employees: list[EmployeeCalculationTrace] = Field(default_factory=list)


# ===== Steps 4-6 =====


class ReviewNotes(_Notes):
    kind: Literal["review"] = "review"
    adjusted_payslips: int = 0
    adjustment_lines: int = 0
    completed_at: datetime | None = None
    reopened_at: datetime | None = None
    reopen_reason: str | None = None


class GenerationNotes(_Notes):
    kind: Literal["generation"] = "generation"
    payslip_count: int
    generated_at: datetime
    regenerated: bool = False


class CloseNotes(_Notes):
    kind: Literal["close"] = "close"
    closed_at: datetime
    paid_by_id: UUID | None = None
    period_locked: bool
    total_net_pay: Decimal


StepNotes = Annotated[
    Union[SetupNotes, ValidationTrace, CalculationTrace, ReviewNotes, GenerationNotes, CloseNotes],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[StepNotes] = TypeAdapter(StepNotes)


def dump_notes(notes: StepNotes) -> str:
    """Serialize a step-note variant for storage."""
    return _adapter.dump_json(notes).decode()


def load_notes(raw: str | None) -> StepNotes | None:
    """Parse stored step notes; None when the step has none yet."""
    if not raw:
        return None
    return _adapter.validate_json(raw)
