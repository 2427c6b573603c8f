"""Audit fact types.

Every balance mutation and every payroll step transition produces a fact.
Facts are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata (company, actor, time)
- Serializable for an external audit-log writer

The core never persists facts itself; see events.emitter.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from payroll_backoffice.context import RequestContext


class FactCategory(str, Enum):
    """Fact categories for routing and filtering."""

    LEDGER = "ledger"
    WORKFLOW = "workflow"
    PAYROLL = "payroll"


@dataclass(frozen=True)
class FactMetadata:
    """Metadata attached to every audit fact."""

    fact_id: UUID
    occurred_at: datetime
    company_id: UUID
    actor_id: UUID | None
    version: int = 1

    @classmethod
    def create(cls, company_id: UUID, actor_id: UUID | None = None) -> FactMetadata:
        return cls(
            fact_id=uuid4(),
            occurred_at=datetime.now(timezone.utc),
            company_id=company_id,
            actor_id=actor_id,
        )

    @classmethod
    def from_context(cls, ctx: RequestContext) -> FactMetadata:
        return cls.create(ctx.company_id, ctx.actor_user_id)


@dataclass(frozen=True)
class AuditFact:
    """Base class for all audit facts."""

    metadata: FactMetadata

    @property
    def fact_type(self) -> str:
        """Fact type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> FactCategory:
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        data = _serialize(asdict(self))
        data["fact_type"] = self.fact_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


def _serialize(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# ===== Ledger facts =====


@dataclass(frozen=True)
class _BalanceMutation(AuditFact):
    leave_balance_id: UUID
    transaction_id: UUID
    employee_id: UUID
    leave_type_id: UUID
    year: int
    reference_type: str
    reference_id: UUID
    amount: Decimal
    current_balance: Decimal
    available_balance: Decimal
    pending_requests: Decimal

    @property
    def category(self) -> FactCategory:
        return FactCategory.LEDGER


@dataclass(frozen=True)
class LeaveBalanceReserved(_BalanceMutation):
    """Days moved from available to pending for a submitted request."""


@dataclass(frozen=True)
class LeaveBalanceReleased(_BalanceMutation):
    """Pending days returned to available after rejection or cancellation."""


@dataclass(frozen=True)
class LeaveBalanceConsumed(_BalanceMutation):
    """Pending days used by a finally approved request."""


@dataclass(frozen=True)
class CtoCredited(_BalanceMutation):
    """Overtime hours credited 1:1 to the CTO balance."""


# ===== Workflow facts =====


@dataclass(frozen=True)
class RequestTransitioned(AuditFact):
    """A leave or overtime request changed status."""

    request_kind: str  # "LEAVE" or "OVERTIME"
    request_id: UUID
    request_number: str
    employee_id: UUID
    from_status: str | None
    to_status: str
    reason: str | None = None

    @property
    def category(self) -> FactCategory:
        return FactCategory.WORKFLOW


# ===== Payroll facts =====


@dataclass(frozen=True)
class PayrollStepTransitioned(AuditFact):
    """A pipeline step was started, completed or failed."""

    payroll_run_id: UUID
    run_number: str
    action: str
    step_number: int
    step_status: str
    run_status: str
    current_step: int

    @property
    def category(self) -> FactCategory:
        return FactCategory.PAYROLL


@dataclass(frozen=True)
class PayslipAdjusted(AuditFact):
    payroll_run_id: UUID
    payslip_id: UUID
    employee_id: UUID
    line_kind: str  # "EARNING" or "DEDUCTION"
    operation: str  # "ADD" or "REMOVE"
    description: str
    amount: Decimal
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal

    @property
    def category(self) -> FactCategory:
        return FactCategory.PAYROLL


@dataclass(frozen=True)
class PayrollRunClosed(AuditFact):
    payroll_run_id: UUID
    run_number: str
    run_type: str
    pay_period_id: UUID
    period_locked: bool
    total_net_pay: Decimal

    @property
    def category(self) -> FactCategory:
        return FactCategory.PAYROLL


@dataclass(frozen=True)
class PayrollRunReopened(AuditFact):
    payroll_run_id: UUID
    run_number: str
    previous_status: str
    reopen_count: int
    reason: str | None = None

    @property
    def category(self) -> FactCategory:
        return FactCategory.PAYROLL
