"""Manual adjustment lines during review (step 4)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.calculators.line_builder import LineItemBuilder
from payroll_backoffice.calculators.types import LineKind
from payroll_backoffice.context import RequestContext
from payroll_backoffice.errors import (
    InvalidAmount,
    NotAuthorized,
    NotFound,
    OperationResult,
    PayslipFrozen,
)
from payroll_backoffice.events.types import FactMetadata, PayslipAdjusted
from payroll_backoffice.models import PayrollRun, Payslip, PayslipDeduction, PayslipEarning
from payroll_backoffice.money import ZERO
from payroll_backoffice.services.pay_run_service import NO_PAYROLL_ACCESS
from payroll_backoffice.services.state_machine import PayrollRunStateMachine, RunStep

logger = logging.getLogger(__name__)

ADJUSTMENT_CODE = "ADJUSTMENT"


def _next_line_number(lines) -> int:
    return max((line.line_number for line in lines), default=0) + 1


@dataclass(frozen=True)
class AdjustmentInput:
    line_kind: LineKind
    description: str
    amount: Decimal
    is_taxable: bool = True


class PayslipAdjustmentService:
    """Add or remove ADJUSTMENT lines on computed payslips.

    Only while the run sits at review and the payslip has not been
    generated. Each change recomputes the payslip totals from its lines and
    then the run totals from its payslips.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_adjustment(
        self, ctx: RequestContext, run_id: UUID, payslip_id: UUID, data: AdjustmentInput
    ) -> OperationResult[Payslip]:
        if data.amount <= ZERO:
            return OperationResult.failure(InvalidAmount("Adjustment amount must be greater than zero."))
        if not data.description.strip():
            return OperationResult.failure(InvalidAmount("Adjustment description is required."))

        loaded = await self._load(ctx, run_id, payslip_id)
        if not loaded.ok:
            return OperationResult.failure(loaded.error)  # type: ignore[arg-type]
        run, payslip = loaded.unwrap()

        if data.line_kind is LineKind.EARNING:
            line = LineItemBuilder.create_earning_line(
                ADJUSTMENT_CODE,
                data.description.strip(),
                data.amount,
                is_taxable=data.is_taxable,
                is_adjustment=True,
                created_by_id=ctx.actor_user_id,
            )
            payslip.earnings.append(
                PayslipEarning(
                    line_number=_next_line_number(payslip.earnings),
                    code=line.code,
                    description=line.description,
                    amount=line.amount,
                    is_taxable=line.is_taxable,
                    is_adjustment=True,
                    created_by_id=line.created_by_id,
                )
            )
        else:
            line = LineItemBuilder.create_deduction_line(
                ADJUSTMENT_CODE,
                data.description.strip(),
                data.amount,
                reference_type=ADJUSTMENT_CODE,
                is_adjustment=True,
                created_by_id=ctx.actor_user_id,
            )
            payslip.deductions.append(
                PayslipDeduction(
                    line_number=_next_line_number(payslip.deductions),
                    code=line.code,
                    description=line.description,
                    amount=line.amount,
                    reference_type=line.reference_type,
                    is_adjustment=True,
                    created_by_id=line.created_by_id,
                )
            )

        fact = await self._recompute(ctx, run, payslip, data.line_kind, "ADD", line.description, line.amount)
        return OperationResult.success(payslip, [fact], message="Adjustment added.")

    async def remove_adjustment(
        self, ctx: RequestContext, run_id: UUID, payslip_id: UUID, line_id: UUID
    ) -> OperationResult[Payslip]:
        loaded = await self._load(ctx, run_id, payslip_id)
        if not loaded.ok:
            return OperationResult.failure(loaded.error)  # type: ignore[arg-type]
        run, payslip = loaded.unwrap()

        earning = next(
            (e for e in payslip.earnings if e.earning_line_id == line_id and e.is_adjustment), None
        )
        deduction = next(
            (d for d in payslip.deductions if d.deduction_line_id == line_id and d.is_adjustment), None
        )
        if earning is not None:
            payslip.earnings.remove(earning)
            kind, description, amount = LineKind.EARNING, earning.description, earning.amount
        elif deduction is not None:
            payslip.deductions.remove(deduction)
            kind, description, amount = LineKind.DEDUCTION, deduction.description, deduction.amount
        else:
            return OperationResult.failure(NotFound("Adjustment line not found."))

        fact = await self._recompute(ctx, run, payslip, kind, "REMOVE", description, amount)
        return OperationResult.success(payslip, [fact], message="Adjustment removed.")

    async def _load(
        self, ctx: RequestContext, run_id: UUID, payslip_id: UUID
    ) -> OperationResult[tuple[PayrollRun, Payslip]]:
        if not ctx.can_manage_payroll:
            return OperationResult.failure(NotAuthorized(NO_PAYROLL_ACCESS))

        result = await self.session.execute(
            select(PayrollRun)
            .where(PayrollRun.payroll_run_id == run_id, PayrollRun.company_id == ctx.company_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        run = result.scalar_one_or_none()
        if run is None:
            return OperationResult.failure(NotFound("Payroll run not found."))

        blocked = PayrollRunStateMachine.check_at_step(run, RunStep.REVIEW_ADJUST)
        if blocked is not None:
            return OperationResult.failure(blocked)

        payslip = await self.session.scalar(
            select(Payslip).where(Payslip.payslip_id == payslip_id, Payslip.payroll_run_id == run_id)
        )
        if payslip is None:
            return OperationResult.failure(NotFound("Payslip not found."))
        if payslip.is_frozen:
            return OperationResult.failure(
                PayslipFrozen("Payslip has already been generated and can no longer be adjusted.")
            )
        return OperationResult.success((run, payslip))

    async def _recompute(
        self,
        ctx: RequestContext,
        run: PayrollRun,
        payslip: Payslip,
        kind: LineKind,
        operation: str,
        description: str,
        amount: Decimal,
    ) -> PayslipAdjusted:
        totals = LineItemBuilder.totals_for_payslip(payslip)
        payslip.gross_pay = totals.gross_pay
        payslip.total_earnings = totals.total_earnings
        payslip.total_deductions = totals.total_deductions
        payslip.net_pay = totals.net_pay
        if totals.net_clamped:
            logger.warning(
                "Adjustment on payslip %s pushes deductions past gross; net pay clamped to 0.00",
                payslip.payslip_id,
            )
        await self.session.flush()

        sums = (
            await self.session.execute(
                select(
                    func.count(Payslip.payslip_id),
                    func.coalesce(func.sum(Payslip.gross_pay), ZERO),
                    func.coalesce(func.sum(Payslip.total_deductions), ZERO),
                    func.coalesce(func.sum(Payslip.net_pay), ZERO),
                ).where(Payslip.payroll_run_id == run.payroll_run_id)
            )
        ).one()
        run.total_employees = sums[0]
        run.total_gross_pay = LineItemBuilder.round_to_cents(Decimal(sums[1]))
        run.total_deductions = LineItemBuilder.round_to_cents(Decimal(sums[2]))
        run.total_net_pay = LineItemBuilder.round_to_cents(Decimal(sums[3]))
        await self.session.flush()

        logger.info(
            "%s %s adjustment of %s on payslip %s (%s)",
            operation,
            kind.value,
            amount,
            payslip.payslip_id,
            description,
        )
        return PayslipAdjusted(
            metadata=FactMetadata.from_context(ctx),
            payroll_run_id=run.payroll_run_id,
            payslip_id=payslip.payslip_id,
            employee_id=payslip.employee_id,
            line_kind=kind.value,
            operation=operation,
            description=description,
            amount=amount,
            gross_pay=payslip.gross_pay,
            total_deductions=payslip.total_deductions,
            net_pay=payslip.net_pay,
        )
