"""Audit facts and their emitter."""

from payroll_backoffice.events.emitter import (
    AuditEmitter,
    FactBatch,
    create_default_emitter,
    log_fact,
)
from payroll_backoffice.events.types import (
    AuditFact,
    CtoCredited,
    FactCategory,
    FactMetadata,
    LeaveBalanceConsumed,
    LeaveBalanceReleased,
    LeaveBalanceReserved,
    PayrollRunClosed,
    PayrollRunReopened,
    PayrollStepTransitioned,
    PayslipAdjusted,
    RequestTransitioned,
)

__all__ = [
    "AuditEmitter",
    "AuditFact",
    "CtoCredited",
    "FactBatch",
    "FactCategory",
    "FactMetadata",
    "LeaveBalanceConsumed",
    "LeaveBalanceReleased",
    "LeaveBalanceReserved",
    "PayrollRunClosed",
    "PayrollRunReopened",
    "PayrollStepTransitioned",
    "PayslipAdjusted",
    "RequestTransitioned",
    "create_default_emitter",
    "log_fact",
]
