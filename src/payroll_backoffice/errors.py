"""Error tiers and the typed operation result.

Business-rule failures are values: services return them inside an
OperationResult and the caller chooses the message to show. Invariant
violations are raised; they mean the ledger or a run is in a state that
should be impossible, so the surrounding transaction must abort.
Infrastructure errors (SQLAlchemy/DBAPI) are never caught here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from payroll_backoffice.events.types import AuditFact

T = TypeVar("T")

SUPPORT_MESSAGE = "Unable to complete this operation, please contact support."


# ===== Business-rule failures =====


class BusinessRuleError(Exception):
    """A request the caller can correct. Never fatal."""

    code = "BUSINESS_RULE"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(BusinessRuleError):
    code = "NOT_FOUND"


class NotAuthorized(BusinessRuleError):
    code = "NOT_AUTHORIZED"


class InvalidAmount(BusinessRuleError):
    code = "INVALID_AMOUNT"


class InsufficientBalance(BusinessRuleError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, requested, available):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient leave balance for this request: requested {requested}, "
            f"available {available}."
        )


class BalanceNotInitialized(BusinessRuleError):
    code = "BALANCE_NOT_INITIALIZED"


class CtoLeaveTypeNotConfigured(BusinessRuleError):
    code = "CTO_LEAVE_TYPE_NOT_CONFIGURED"


class CtoBalanceNotInitialized(BusinessRuleError):
    code = "CTO_BALANCE_NOT_INITIALIZED"


class OvertimeBelowMinimum(BusinessRuleError):
    code = "OVERTIME_BELOW_MINIMUM"

    def __init__(self, message: str = "Overtime requests must be at least 1 hour."):
        super().__init__(message)


class InvalidRequestDates(BusinessRuleError):
    code = "INVALID_REQUEST_DATES"


class InvalidRequestState(BusinessRuleError):
    code = "INVALID_REQUEST_STATE"


class StepOutOfOrder(BusinessRuleError):
    """Advancement requested while the previous step is incomplete."""

    code = "STEP_OUT_OF_ORDER"

    def __init__(self, current_step: int, requested_step: int, reason: str | None = None):
        self.current_step = current_step
        self.requested_step = requested_step
        msg = f"Cannot move payroll run to step {requested_step} from step {current_step}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StepNotReenterable(BusinessRuleError):
    code = "STEP_NOT_REENTERABLE"


class PeriodNotOpen(BusinessRuleError):
    code = "PERIOD_NOT_OPEN"


class PeriodLocked(BusinessRuleError):
    code = "PERIOD_LOCKED"


class DuplicateRegularRun(BusinessRuleError):
    code = "DUPLICATE_REGULAR_RUN"


class NoEligibleEmployees(BusinessRuleError):
    code = "NO_ELIGIBLE_EMPLOYEES"


class ValidationBlocked(BusinessRuleError):
    code = "VALIDATION_BLOCKED"


class PayslipFrozen(BusinessRuleError):
    code = "PAYSLIP_FROZEN"


# ===== Invariant violations =====


class InvariantViolation(Exception):
    """State that should be impossible. Logged server-side, transaction aborted."""

    code = "INVARIANT_VIOLATION"
    public_message = SUPPORT_MESSAGE

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ReservationInconsistent(InvariantViolation):
    code = "RESERVATION_INCONSISTENT"


class BalanceComputationFailed(InvariantViolation):
    code = "BALANCE_COMPUTATION_FAILED"


class DuplicateAccrual(InvariantViolation):
    code = "DUPLICATE_ACCRUAL"


# ===== Results =====


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of a service operation.

    Always check `ok`. On failure `error` carries the business rule that
    stopped the operation and no state was changed.
    """

    value: T | None = None
    error: BusinessRuleError | None = None
    facts: tuple[AuditFact, ...] = ()
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls,
        value: T | None = None,
        facts: tuple[AuditFact, ...] | list[AuditFact] = (),
        message: str | None = None,
    ) -> OperationResult[T]:
        return cls(value=value, facts=tuple(facts), message=message)

    @classmethod
    def failure(cls, error: BusinessRuleError) -> OperationResult[T]:
        return cls(error=error, message=error.message)

    def unwrap(self) -> T:
        """Return the value or raise the business error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
