"""Leave/CTO balance ledger.

The only writer of LeaveBalance and LeaveBalanceTransaction rows. Every
primitive runs inside the caller's transaction: the balance row is read
with SELECT ... FOR UPDATE in that transaction, mutated through
BalanceState, and a transaction row is appended before returning. The
ledger never commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.errors import (
    BalanceNotInitialized,
    BusinessRuleError,
    DuplicateAccrual,
    InvariantViolation,
    OperationResult,
)
from payroll_backoffice.events import (
    CtoCredited,
    FactMetadata,
    LeaveBalanceConsumed,
    LeaveBalanceReleased,
    LeaveBalanceReserved,
)
from payroll_backoffice.ledger.balance_state import BalanceState
from payroll_backoffice.models import LeaveBalance, LeaveBalanceTransaction
from payroll_backoffice.money import decimal_text, round_currency

if TYPE_CHECKING:
    from payroll_backoffice.context import RequestContext
    from payroll_backoffice.events.types import _BalanceMutation

logger = logging.getLogger(__name__)

REFERENCE_LEAVE_REQUEST = "LEAVE_REQUEST"
REFERENCE_OVERTIME_REQUEST = "OVERTIME_REQUEST"

TRANSACTION_ACCRUAL = "ACCRUAL"
TRANSACTION_USAGE = "USAGE"
TRANSACTION_ADJUSTMENT = "ADJUSTMENT"


@dataclass(frozen=True)
class LedgerEntry:
    """Result of one committed-in-transaction ledger primitive."""

    balance: BalanceState
    transaction: LeaveBalanceTransaction
    fact: _BalanceMutation


@dataclass(frozen=True)
class LeaveReference:
    """The leave request a reservation or usage belongs to."""

    employee_id: UUID
    leave_type_id: UUID
    request_id: UUID
    request_number: str
    start_date: date
    days: Decimal

    @property
    def year(self) -> int:
        return self.start_date.year


class BalanceLedger:
    """Reserve, Release, Consume and Credit against locked balance rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_balance(
        self, employee_id: UUID, leave_type_id: UUID, year: int
    ) -> LeaveBalance | None:
        """Read a balance row with a row lock held until the caller's commit."""
        stmt = (
            select(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def reserve(
        self, ctx: RequestContext, ref: LeaveReference
    ) -> OperationResult[LedgerEntry]:
        """Hold days for a submitted leave request."""
        row = await self.lock_balance(ref.employee_id, ref.leave_type_id, ref.year)
        if row is None:
            return OperationResult.failure(_not_initialized(ref.year))
        days = round_currency(ref.days)
        return await self._post(
            ctx,
            row,
            lambda state: state.reserve(days),
            transaction_type=TRANSACTION_ADJUSTMENT,
            amount=-days,
            reference_type=REFERENCE_LEAVE_REQUEST,
            reference_id=ref.request_id,
            remarks=f"Reserved {decimal_text(days)} day(s) for leave request {ref.request_number}",
            fact_type=LeaveBalanceReserved,
        )

    async def release(
        self, ctx: RequestContext, ref: LeaveReference
    ) -> OperationResult[LedgerEntry]:
        """Return reserved days after rejection or cancellation."""
        row = await self.lock_balance(ref.employee_id, ref.leave_type_id, ref.year)
        if row is None:
            return OperationResult.failure(_not_initialized(ref.year))
        days = round_currency(ref.days)
        return await self._post(
            ctx,
            row,
            lambda state: state.release(days),
            transaction_type=TRANSACTION_ADJUSTMENT,
            amount=days,
            reference_type=REFERENCE_LEAVE_REQUEST,
            reference_id=ref.request_id,
            remarks=(
                f"Released {decimal_text(days)} day(s) back to available balance "
                f"for {ref.request_number}"
            ),
            fact_type=LeaveBalanceReleased,
        )

    async def consume(
        self, ctx: RequestContext, ref: LeaveReference
    ) -> OperationResult[LedgerEntry]:
        """Use reserved days on final approval."""
        row = await self.lock_balance(ref.employee_id, ref.leave_type_id, ref.year)
        if row is None:
            return OperationResult.failure(_not_initialized(ref.year))
        days = round_currency(ref.days)
        return await self._post(
            ctx,
            row,
            lambda state: state.consume(days),
            transaction_type=TRANSACTION_USAGE,
            amount=days,
            reference_type=REFERENCE_LEAVE_REQUEST,
            reference_id=ref.request_id,
            remarks=(
                f"Consumed {decimal_text(days)} day(s) for approved leave request "
                f"{ref.request_number}"
            ),
            fact_type=LeaveBalanceConsumed,
        )

    async def credit(
        self,
        ctx: RequestContext,
        row: LeaveBalance,
        amount: Decimal,
        *,
        reference_type: str,
        reference_id: UUID,
        remarks: str,
    ) -> OperationResult[LedgerEntry]:
        """Accrue earned units onto an already locked row.

        The partial unique index on ACCRUAL references rejects a second
        accrual for the same source document; that surfaces as
        DuplicateAccrual.
        """
        amount = round_currency(amount)
        try:
            return await self._post(
                ctx,
                row,
                lambda state: state.accrue(amount),
                transaction_type=TRANSACTION_ACCRUAL,
                amount=amount,
                reference_type=reference_type,
                reference_id=reference_id,
                remarks=remarks,
                fact_type=CtoCredited,
            )
        except IntegrityError as exc:
            logger.error(
                "Duplicate accrual rejected by store for %s %s: %s",
                reference_type,
                reference_id,
                exc,
            )
            raise DuplicateAccrual(
                f"Accrual already recorded for {reference_type} {reference_id}"
            ) from exc

    async def has_accrual(self, reference_type: str, reference_id: UUID) -> bool:
        stmt = select(LeaveBalanceTransaction.transaction_id).where(
            LeaveBalanceTransaction.transaction_type == TRANSACTION_ACCRUAL,
            LeaveBalanceTransaction.reference_type == reference_type,
            LeaveBalanceTransaction.reference_id == reference_id,
        )
        result = await self.session.execute(stmt.limit(1))
        return result.first() is not None

    async def history(self, leave_balance_id: UUID) -> list[LeaveBalanceTransaction]:
        """Transactions for one balance row, oldest first."""
        stmt = (
            select(LeaveBalanceTransaction)
            .where(LeaveBalanceTransaction.leave_balance_id == leave_balance_id)
            .order_by(LeaveBalanceTransaction.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _post(
        self,
        ctx: RequestContext,
        row: LeaveBalance,
        step,
        *,
        transaction_type: str,
        amount: Decimal,
        reference_type: str,
        reference_id: UUID,
        remarks: str,
        fact_type: type[_BalanceMutation],
    ) -> OperationResult[LedgerEntry]:
        before = BalanceState.from_row(row)
        try:
            after = step(before)
        except BusinessRuleError as exc:
            logger.info(
                "Ledger %s refused on balance %s: %s",
                fact_type.__name__,
                row.leave_balance_id,
                exc.message,
            )
            return OperationResult.failure(exc)
        except InvariantViolation as exc:
            logger.error(
                "Ledger invariant violated on balance %s (%s %s): %s",
                row.leave_balance_id,
                reference_type,
                reference_id,
                exc.detail,
            )
            raise

        after.apply_to(row)
        txn = LeaveBalanceTransaction(
            leave_balance_id=row.leave_balance_id,
            transaction_type=transaction_type,
            amount=round_currency(amount),
            running_balance=after.current_balance,
            reference_type=reference_type,
            reference_id=reference_id,
            remarks=remarks,
            processed_by_id=ctx.actor_user_id,
        )
        self.session.add(txn)
        await self.session.flush()

        fact = fact_type(
            metadata=FactMetadata.from_context(ctx),
            leave_balance_id=row.leave_balance_id,
            transaction_id=txn.transaction_id,
            employee_id=row.employee_id,
            leave_type_id=row.leave_type_id,
            year=row.year,
            reference_type=reference_type,
            reference_id=reference_id,
            amount=txn.amount,
            current_balance=after.current_balance,
            available_balance=after.available_balance,
            pending_requests=after.pending_requests,
        )
        logger.debug("Ledger %s: %s", transaction_type, remarks)
        return OperationResult.success(LedgerEntry(after, txn, fact), facts=[fact])


def _not_initialized(year: int) -> BalanceNotInitialized:
    return BalanceNotInitialized(
        f"No leave balance found for {year}. Please initialize yearly leave balances first."
    )
