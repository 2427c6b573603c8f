"""Leave and CTO balance ledger."""

from payroll_backoffice.ledger.balance_ledger import (
    REFERENCE_LEAVE_REQUEST,
    REFERENCE_OVERTIME_REQUEST,
    BalanceLedger,
    LeaveReference,
    LedgerEntry,
)
from payroll_backoffice.ledger.balance_state import BalanceState
from payroll_backoffice.ledger.charge_policy import (
    ChargeDecision,
    resolve_charge,
    resolve_charge_for_request,
)
from payroll_backoffice.ledger.cto_accrual import (
    AccrualOutcome,
    CtoAccrualRule,
    OvertimeAccrualInput,
)

__all__ = [
    "REFERENCE_LEAVE_REQUEST",
    "REFERENCE_OVERTIME_REQUEST",
    "AccrualOutcome",
    "BalanceLedger",
    "BalanceState",
    "ChargeDecision",
    "CtoAccrualRule",
    "LeaveReference",
    "LedgerEntry",
    "OvertimeAccrualInput",
    "resolve_charge",
    "resolve_charge_for_request",
]
