"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from payroll_backoffice.calculators.types import LineKind, RunType
from payroll_backoffice.services.step_notes import (
    CalculationTrace,
    GenerationNotes,
    StepNotes,
    ValidationTrace,
)


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
    code: str


# ============================================================================
# Payroll run schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for creating a payroll run; the scope is fixed from here on."""

    pay_period_id: UUID
    run_type: RunType = RunType.REGULAR
    department_ids: list[UUID] = Field(default_factory=list)
    branch_ids: list[UUID] = Field(default_factory=list)
    employee_ids: list[UUID] = Field(default_factory=list)


class PayrollStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_number: int
    step_name: str
    status: str
    is_completed: bool
    completed_at: datetime | None = None
    completed_by_id: UUID | None = None
    notes: StepNotes | None = None


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    company_id: UUID
    run_number: str
    pay_period_id: UUID
    run_type: str
    status: str
    is_locked: bool
    current_step: int
    department_ids: list[str]
    branch_ids: list[str]
    employee_ids: list[str]
    total_employees: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_employer_contributions: Decimal
    processed_at: datetime | None = None
    payslips_generated_at: datetime | None = None
    paid_at: datetime | None = None
    paid_by_id: UUID | None = None
    reopened_at: datetime | None = None
    reopen_count: int
    created_at: datetime


class PayrollRunDetailResponse(PayrollRunResponse):
    steps: list[PayrollStepResponse]


class PayrollRunListResponse(BaseModel):
    items: list[PayrollRunResponse]
    total: int


class RunActionResponse(BaseModel):
    """Outcome of a step action that returns the run itself."""

    message: str | None = None
    run: PayrollRunDetailResponse


class ValidationResponse(BaseModel):
    message: str | None = None
    trace: ValidationTrace


class CalculationResponse(BaseModel):
    message: str | None = None
    trace: CalculationTrace


class GenerationResponse(BaseModel):
    message: str | None = None
    notes: GenerationNotes


class ReopenRequest(BaseModel):
    reason: str | None = None


# ============================================================================
# Payslip schemas
# ============================================================================


class EarningLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    earning_line_id: UUID
    line_number: int
    code: str
    description: str
    amount: Decimal
    hours: Decimal | None = None
    days: Decimal | None = None
    rate: Decimal | None = None
    is_taxable: bool
    is_adjustment: bool


class DeductionLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    deduction_line_id: UUID
    line_number: int
    code: str
    description: str
    amount: Decimal
    employer_share: Decimal | None = None
    reference_type: str | None = None
    is_pre_tax: bool
    is_adjustment: bool


class PayslipResponse(BaseModel):
    """Schema for a payslip with its lines."""

    model_config = ConfigDict(from_attributes=True)

    payslip_id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    payslip_number: str | None = None
    working_days: Decimal
    days_worked: Decimal
    days_absent: Decimal
    overtime_hours: Decimal
    night_diff_hours: Decimal
    tardiness_mins: int
    undertime_mins: int
    base_salary: Decimal
    daily_rate: Decimal
    hourly_rate: Decimal
    basic_pay: Decimal
    gross_pay: Decimal
    total_earnings: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    sss_employee: Decimal
    sss_employer: Decimal
    philhealth_employee: Decimal
    philhealth_employer: Decimal
    pagibig_employee: Decimal
    pagibig_employer: Decimal
    withholding_tax: Decimal
    inputs_fingerprint: str | None = None
    calculation_version: str | None = None
    generated_at: datetime | None = None
    earnings: list[EarningLineResponse]
    deductions: list[DeductionLineResponse]


class PayslipListResponse(BaseModel):
    items: list[PayslipResponse]
    total: int


class AdjustmentCreate(BaseModel):
    line_kind: LineKind
    description: str = Field(min_length=1, max_length=200)
    amount: Decimal = Field(gt=0, decimal_places=2)
    is_taxable: bool = True


class AdjustmentResponse(BaseModel):
    message: str | None = None
    payslip: PayslipResponse


# ============================================================================
# Request workflow schemas
# ============================================================================


class LeaveRequestCreate(BaseModel):
    employee_id: UUID
    leave_type_id: UUID
    start_date: date
    end_date: date
    is_half_day: bool = False
    reason: str | None = None


class LeaveRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    leave_request_id: UUID
    request_number: str
    employee_id: UUID
    leave_type_id: UUID
    charge_leave_type_id: UUID | None = None
    start_date: date
    end_date: date
    is_half_day: bool
    number_of_days: Decimal
    reason: str | None = None
    status: str
    balance_reserved: bool
    supervisor_approver_id: UUID | None = None
    supervisor_approved_at: datetime | None = None
    hr_approver_id: UUID | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    cancelled_at: datetime | None = None


class OvertimeRequestCreate(BaseModel):
    employee_id: UUID
    overtime_date: date
    hours: Decimal = Field(gt=0)
    reason: str | None = None


class OvertimeRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    overtime_request_id: UUID
    request_number: str
    employee_id: UUID
    overtime_date: date
    hours: Decimal
    reason: str | None = None
    status: str
    supervisor_approver_id: UUID | None = None
    supervisor_approved_at: datetime | None = None
    hr_approver_id: UUID | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    cancelled_at: datetime | None = None
    cto_converted: bool
    cto_converted_at: datetime | None = None


class RejectRequest(BaseModel):
    reason: str | None = None


class RequestActionResponse(BaseModel):
    message: str | None = None


class LeaveActionResponse(RequestActionResponse):
    request: LeaveRequestResponse


class OvertimeActionResponse(RequestActionResponse):
    request: OvertimeRequestResponse


class LeaveBalanceTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_id: UUID
    leave_balance_id: UUID
    transaction_type: str
    amount: Decimal
    running_balance: Decimal
    reference_type: str
    reference_id: UUID
    remarks: str | None = None
    created_at: datetime
