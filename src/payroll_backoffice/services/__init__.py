"""Workflow and payroll pipeline services."""

from payroll_backoffice.services.adjustment_service import AdjustmentInput, PayslipAdjustmentService
from payroll_backoffice.services.leave_workflow import LeaveWorkflow, SubmitLeaveInput
from payroll_backoffice.services.overtime_workflow import OvertimeWorkflow, SubmitOvertimeInput
from payroll_backoffice.services.pay_run_service import CreateRunInput, PayrollRunPipeline
from payroll_backoffice.services.state_machine import (
    PayrollRunStateMachine,
    PeriodStatus,
    RequestStateMachine,
    RequestStatus,
    RunStatus,
    RunStep,
    StepStatus,
)
from payroll_backoffice.services.validation_service import PayrollValidationService

__all__ = [
    "AdjustmentInput",
    "CreateRunInput",
    "LeaveWorkflow",
    "OvertimeWorkflow",
    "PayrollRunPipeline",
    "PayrollRunStateMachine",
    "PayrollValidationService",
    "PayslipAdjustmentService",
    "PeriodStatus",
    "RequestStateMachine",
    "RequestStatus",
    "RunStatus",
    "RunStep",
    "StepStatus",
    "SubmitLeaveInput",
    "SubmitOvertimeInput",
]
