"""Overtime to CTO accrual rule.

Evaluated at HR/finance approval of an overtime request, never at
supervisor approval. Conversion is mandatory for employees who are not
overtime-eligible. Eligible employees still convert while they have at
least one active direct report; otherwise the hours are paid as overtime
and the ledger is not touched.

The direct-report check reads the org chart as it is at approval time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.errors import (
    CtoBalanceNotInitialized,
    CtoLeaveTypeNotConfigured,
    OperationResult,
    OvertimeBelowMinimum,
)
from payroll_backoffice.ledger.balance_ledger import (
    REFERENCE_OVERTIME_REQUEST,
    BalanceLedger,
    LedgerEntry,
)
from payroll_backoffice.models import Employee, LeaveType
from payroll_backoffice.money import decimal_text, round_currency

if TYPE_CHECKING:
    from payroll_backoffice.context import RequestContext

logger = logging.getLogger(__name__)

MINIMUM_OVERTIME_HOURS = Decimal("1")


@dataclass(frozen=True)
class OvertimeAccrualInput:
    overtime_request_id: UUID
    request_number: str
    employee_id: UUID
    company_id: UUID
    overtime_date: date
    hours: Decimal
    is_overtime_eligible: bool


@dataclass(frozen=True)
class AccrualOutcome:
    """What the rule decided.

    converted: the hours belong to CTO rather than overtime pay.
    credited: this call wrote the ledger row (False on an idempotent replay).
    """

    converted: bool
    credited: bool = False
    hours: Decimal = Decimal("0")
    entry: LedgerEntry | None = None


class CtoAccrualRule:
    """Decide and apply overtime-to-CTO conversion."""

    def __init__(self, session: AsyncSession, ledger: BalanceLedger | None = None):
        self.session = session
        self.ledger = ledger or BalanceLedger(session)

    @staticmethod
    def requires_conversion(is_overtime_eligible: bool, active_direct_reports: int) -> bool:
        if not is_overtime_eligible:
            return True
        return active_direct_reports > 0

    async def count_active_direct_reports(self, company_id: UUID, manager_id: UUID) -> int:
        stmt = select(func.count()).select_from(Employee).where(
            Employee.company_id == company_id,
            Employee.reporting_manager_id == manager_id,
            Employee.is_active.is_(True),
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def resolve_cto_leave_type(self, company_id: UUID) -> LeaveType | None:
        stmt = (
            select(LeaveType)
            .where(
                LeaveType.company_id == company_id,
                LeaveType.is_cto.is_(True),
                LeaveType.is_active.is_(True),
            )
            .order_by(LeaveType.updated_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def apply(
        self, ctx: RequestContext, data: OvertimeAccrualInput
    ) -> OperationResult[AccrualOutcome]:
        hours = round_currency(data.hours)
        if hours < MINIMUM_OVERTIME_HOURS:
            return OperationResult.failure(OvertimeBelowMinimum())

        reports = await self.count_active_direct_reports(data.company_id, data.employee_id)
        if not self.requires_conversion(data.is_overtime_eligible, reports):
            logger.info(
                "Overtime %s paid as overtime: eligible employee with no direct reports",
                data.request_number,
            )
            return OperationResult.success(AccrualOutcome(converted=False))

        if await self.ledger.has_accrual(REFERENCE_OVERTIME_REQUEST, data.overtime_request_id):
            logger.warning(
                "Overtime %s already credited to CTO; skipping", data.request_number
            )
            return OperationResult.success(
                AccrualOutcome(converted=True, credited=False, hours=hours)
            )

        cto_type = await self.resolve_cto_leave_type(data.company_id)
        if cto_type is None:
            return OperationResult.failure(
                CtoLeaveTypeNotConfigured(
                    "No CTO leave type is configured for this company. "
                    "Please configure a CTO leave type first."
                )
            )

        year = data.overtime_date.year
        row = await self.ledger.lock_balance(data.employee_id, cto_type.leave_type_id, year)
        if row is None:
            return OperationResult.failure(
                CtoBalanceNotInitialized(
                    f"No CTO balance found for {year}. "
                    "Please initialize yearly leave balances first."
                )
            )

        result = await self.ledger.credit(
            ctx,
            row,
            hours,
            reference_type=REFERENCE_OVERTIME_REQUEST,
            reference_id=data.overtime_request_id,
            remarks=(
                f"CTO credit from overtime request {data.request_number} (1:1 conversion)"
            ),
        )
        if not result.ok:
            return OperationResult.failure(result.error)

        logger.info(
            "Credited %s CTO hour(s) to employee %s from %s",
            decimal_text(hours),
            data.employee_id,
            data.request_number,
        )
        return OperationResult.success(
            AccrualOutcome(converted=True, credited=True, hours=hours, entry=result.value),
            facts=result.facts,
        )
