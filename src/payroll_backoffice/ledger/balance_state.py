"""Pure balance arithmetic for the leave/CTO ledger.

A BalanceState is an immutable snapshot of one LeaveBalance row. Each
primitive returns the next state or raises; nothing here touches the
database, so the arithmetic can be checked exhaustively in isolation.

Invariants (checked after every primitive):
- available_balance == current_balance - pending_requests
- current_balance, available_balance, pending_requests >= 0
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import TYPE_CHECKING

from payroll_backoffice.errors import (
    BalanceComputationFailed,
    InsufficientBalance,
    InvalidAmount,
    ReservationInconsistent,
)
from payroll_backoffice.money import ZERO, round_currency

if TYPE_CHECKING:
    from payroll_backoffice.models import LeaveBalance


@dataclass(frozen=True)
class BalanceState:
    """Snapshot of a balance row, all values rounded to 2 decimals."""

    current_balance: Decimal
    available_balance: Decimal
    pending_requests: Decimal
    credits_earned: Decimal = ZERO
    credits_used: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in (
            "current_balance",
            "available_balance",
            "pending_requests",
            "credits_earned",
            "credits_used",
        ):
            object.__setattr__(self, name, round_currency(getattr(self, name)))

    @classmethod
    def from_row(cls, row: LeaveBalance) -> BalanceState:
        return cls(
            current_balance=row.current_balance,
            available_balance=row.available_balance,
            pending_requests=row.pending_requests,
            credits_earned=row.credits_earned,
            credits_used=row.credits_used,
        )

    def apply_to(self, row: LeaveBalance) -> None:
        """Write this state onto an ORM row."""
        row.current_balance = self.current_balance
        row.available_balance = self.available_balance
        row.pending_requests = self.pending_requests
        row.credits_earned = self.credits_earned
        row.credits_used = self.credits_used

    @property
    def is_consistent(self) -> bool:
        return (
            self.available_balance == round_currency(self.current_balance - self.pending_requests)
            and self.current_balance >= 0
            and self.available_balance >= 0
            and self.pending_requests >= 0
        )

    def reserve(self, days: Decimal) -> BalanceState:
        """Move days from available to pending. currentBalance is untouched."""
        days = _positive(days)
        if self.available_balance < days:
            raise InsufficientBalance(days, self.available_balance)
        return self._checked(
            replace(
                self,
                pending_requests=self.pending_requests + days,
                available_balance=self.available_balance - days,
            ),
            "reserve",
        )

    def release(self, days: Decimal) -> BalanceState:
        """Inverse of reserve."""
        days = _positive(days)
        if self.pending_requests < days:
            raise ReservationInconsistent(
                f"Cannot release {days} day(s): only {self.pending_requests} pending"
            )
        return self._checked(
            replace(
                self,
                pending_requests=self.pending_requests - days,
                available_balance=self.available_balance + days,
            ),
            "release",
        )

    def consume(self, days: Decimal) -> BalanceState:
        """Use reserved days on final approval."""
        days = _positive(days)
        if self.pending_requests < days:
            raise ReservationInconsistent(
                f"Cannot consume {days} day(s): only {self.pending_requests} pending"
            )
        if self.current_balance < days:
            raise InsufficientBalance(days, self.current_balance)
        current = self.current_balance - days
        pending = self.pending_requests - days
        available = round_currency(current - pending)
        if available < 0:
            raise BalanceComputationFailed(
                f"Consume of {days} day(s) would leave available balance at {available}"
            )
        return self._checked(
            replace(
                self,
                current_balance=current,
                pending_requests=pending,
                available_balance=available,
                credits_used=self.credits_used + days,
            ),
            "consume",
        )

    def accrue(self, amount: Decimal) -> BalanceState:
        """Credit earned units to current and available balance."""
        amount = _positive(amount)
        return self._checked(
            replace(
                self,
                credits_earned=self.credits_earned + amount,
                current_balance=self.current_balance + amount,
                available_balance=self.available_balance + amount,
            ),
            "accrue",
        )

    def _checked(self, after: BalanceState, operation: str) -> BalanceState:
        if not after.is_consistent:
            raise BalanceComputationFailed(
                f"{operation} produced an inconsistent balance: current={after.current_balance} "
                f"available={after.available_balance} pending={after.pending_requests}"
            )
        return after


def _positive(amount: Decimal) -> Decimal:
    amount = round_currency(amount)
    if amount <= 0:
        raise InvalidAmount(f"Amount must be greater than zero (got {amount}).")
    return amount
