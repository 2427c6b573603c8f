"""Payroll run and request state machines with transition validation."""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import TYPE_CHECKING

from payroll_backoffice.errors import (
    BusinessRuleError,
    InvalidRequestState,
    StepNotReenterable,
    StepOutOfOrder,
)

if TYPE_CHECKING:
    from payroll_backoffice.models import PayrollRun


class RunStep(IntEnum):
    """The six ordered pipeline steps."""

    CREATE_RUN = 1
    VALIDATE_DATA = 2
    CALCULATE_PAYROLL = 3
    REVIEW_ADJUST = 4
    GENERATE_PAYSLIPS = 5
    CLOSE_RUN = 6


class RunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "DRAFT"
    VALIDATING = "VALIDATING"
    COMPUTED = "COMPUTED"
    FOR_REVIEW = "FOR_REVIEW"
    FOR_PAYMENT = "FOR_PAYMENT"
    PAID = "PAID"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PeriodStatus(str, Enum):
    OPEN = "OPEN"
    PROCESSING = "PROCESSING"
    CLOSED = "CLOSED"
    LOCKED = "LOCKED"


class RequestStatus(str, Enum):
    """Leave and overtime request status values."""

    PENDING = "PENDING"
    SUPERVISOR_APPROVED = "SUPERVISOR_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class PayrollRunStateMachine:
    """Step advancement rules for a payroll run.

    Steps advance one at a time:
    - step N may start only when step N-1 is completed
    - a request for any other step is rejected, never clamped
    - a locked (PAID) run accepts no advancement

    Re-entry:
    - Validate may re-run until Calculate has completed
    - Calculate may re-run from step 3 or from review (step 4) until
      payslips have ever been generated
    """

    # Run status once a step becomes current (None keeps the status)
    STATUS_ON_ENTER: dict[RunStep, RunStatus | None] = {
        RunStep.CREATE_RUN: RunStatus.DRAFT,
        RunStep.VALIDATE_DATA: RunStatus.DRAFT,
        RunStep.CALCULATE_PAYROLL: RunStatus.VALIDATING,
        RunStep.REVIEW_ADJUST: RunStatus.FOR_REVIEW,
        RunStep.GENERATE_PAYSLIPS: None,
        RunStep.CLOSE_RUN: RunStatus.FOR_PAYMENT,
    }

    STATUS_ON_COMPLETE: dict[RunStep, RunStatus | None] = {
        RunStep.CREATE_RUN: RunStatus.DRAFT,
        RunStep.VALIDATE_DATA: RunStatus.VALIDATING,
        RunStep.CALCULATE_PAYROLL: RunStatus.COMPUTED,
        RunStep.REVIEW_ADJUST: None,
        RunStep.GENERATE_PAYSLIPS: None,
        RunStep.CLOSE_RUN: RunStatus.PAID,
    }

    CALCULABLE_FROM = {RunStep.CALCULATE_PAYROLL, RunStep.REVIEW_ADJUST}

    REOPENABLE = {RunStatus.FOR_PAYMENT, RunStatus.PAID}

    @staticmethod
    def step_completed(run: PayrollRun, step: RunStep) -> bool:
        return run.step(int(step)).is_completed

    @classmethod
    def enter(cls, run: PayrollRun, step: RunStep) -> None:
        """Make `step` the current step and apply its entry status."""
        run.current_step = int(step)
        status = cls.STATUS_ON_ENTER[step]
        if status is not None:
            run.status = status.value

    @classmethod
    def complete(cls, run: PayrollRun, step: RunStep) -> None:
        status = cls.STATUS_ON_COMPLETE[step]
        if status is not None:
            run.status = status.value

    @classmethod
    def check_advance(cls, run: PayrollRun, to_step: RunStep) -> BusinessRuleError | None:
        """Return the reason advancing to `to_step` is not allowed, or None."""
        current = run.current_step
        if run.is_locked:
            return StepOutOfOrder(current, int(to_step), "run is closed")
        if int(to_step) != current + 1:
            return StepOutOfOrder(current, int(to_step), f"next step is {current + 1}")
        previous = RunStep(int(to_step) - 1)
        if not cls.step_completed(run, previous):
            return StepOutOfOrder(
                current, int(to_step), f"step {int(previous)} ({previous.name}) is not completed"
            )
        return None

    @classmethod
    def check_at_step(cls, run: PayrollRun, step: RunStep) -> BusinessRuleError | None:
        """The run must currently sit at `step` to work on it."""
        if run.is_locked:
            return StepOutOfOrder(run.current_step, int(step), "run is closed")
        if run.current_step != int(step):
            return StepOutOfOrder(
                run.current_step, int(step), f"run is at step {run.current_step}"
            )
        return None

    @classmethod
    def check_validate(cls, run: PayrollRun) -> BusinessRuleError | None:
        if cls.step_completed(run, RunStep.CALCULATE_PAYROLL):
            return StepNotReenterable(
                "Validation cannot be re-run after payroll has been calculated."
            )
        return cls.check_at_step(run, RunStep.VALIDATE_DATA)

    @classmethod
    def check_calculate(cls, run: PayrollRun) -> BusinessRuleError | None:
        if run.payslips_generated_at is not None or cls.step_completed(
            run, RunStep.GENERATE_PAYSLIPS
        ):
            return StepNotReenterable(
                "Payroll cannot be recalculated after payslips have been generated."
            )
        if run.is_locked:
            return StepOutOfOrder(run.current_step, int(RunStep.CALCULATE_PAYROLL), "run is closed")
        if run.current_step not in {int(step) for step in cls.CALCULABLE_FROM}:
            return StepOutOfOrder(
                run.current_step,
                int(RunStep.CALCULATE_PAYROLL),
                f"run is at step {run.current_step}",
            )
        if not cls.step_completed(run, RunStep.VALIDATE_DATA):
            return StepOutOfOrder(
                run.current_step, int(RunStep.CALCULATE_PAYROLL), "validation is not completed"
            )
        return None

    @classmethod
    def can_reopen(cls, run: PayrollRun) -> bool:
        return run.status in cls.REOPENABLE

    @classmethod
    def get_next_step(cls, run: PayrollRun) -> RunStep | None:
        if run.current_step >= RunStep.CLOSE_RUN:
            return None
        return RunStep(run.current_step + 1)


class RequestStateMachine:
    """Status transitions shared by leave and overtime requests.

    Allowed transitions:
    - PENDING → SUPERVISOR_APPROVED
    - PENDING → REJECTED
    - PENDING → CANCELLED (requesting employee only)
    - SUPERVISOR_APPROVED → APPROVED (final, performs the balance mutation)
    - SUPERVISOR_APPROVED → REJECTED
    """

    VALID_TRANSITIONS: dict[RequestStatus, list[RequestStatus]] = {
        RequestStatus.PENDING: [
            RequestStatus.SUPERVISOR_APPROVED,
            RequestStatus.REJECTED,
            RequestStatus.CANCELLED,
        ],
        RequestStatus.SUPERVISOR_APPROVED: [RequestStatus.APPROVED, RequestStatus.REJECTED],
        RequestStatus.APPROVED: [],
        RequestStatus.REJECTED: [],
        RequestStatus.CANCELLED: [],
    }

    TERMINAL = {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(RequestStatus(from_status), [])
        return RequestStatus(to_status) in allowed

    @classmethod
    def check_transition(
        cls, from_status: str, to_status: str, noun: str = "request"
    ) -> BusinessRuleError | None:
        """Return InvalidRequestState when the transition is not allowed."""
        if cls.can_transition(from_status, to_status):
            return None
        return InvalidRequestState(
            f"Cannot move {noun} from {from_status} to {to_status}."
        )

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return RequestStatus(status) in cls.TERMINAL
