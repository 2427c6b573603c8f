"""Tests for manual payslip adjustments during review."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from payroll_backoffice.calculators.types import LineKind
from payroll_backoffice.errors import (
    InvalidAmount,
    NotFound,
    PayslipFrozen,
    StepNotReenterable,
    StepOutOfOrder,
)
from payroll_backoffice.events import PayslipAdjusted
from payroll_backoffice.services.adjustment_service import AdjustmentInput, PayslipAdjustmentService
from payroll_backoffice.services.pay_run_service import PayrollRunPipeline


async def first_payslip(session, run):
    return (await PayrollRunPipeline(session).list_payslips(run))[0]


class TestAddAdjustment:
    async def test_earning_adjustment_updates_totals(self, session, payroll_ctx, run_at_review):
        payslip = await first_payslip(session, run_at_review)
        service = PayslipAdjustmentService(session)

        result = await service.add_adjustment(
            payroll_ctx,
            run_at_review.payroll_run_id,
            payslip.payslip_id,
            AdjustmentInput(LineKind.EARNING, "Missed allowance", Decimal("500")),
        )

        assert result.message == "Adjustment added."
        assert payslip.gross_pay == Decimal("15500.00")
        assert payslip.total_earnings == Decimal("500.00")
        assert payslip.net_pay == Decimal("14525.00")
        assert run_at_review.total_net_pay == Decimal("28550.00")
        adjustment = [line for line in payslip.earnings if line.is_adjustment]
        assert adjustment[0].code == "ADJUSTMENT"
        assert adjustment[0].created_by_id == payroll_ctx.actor_user_id
        fact = result.facts[0]
        assert isinstance(fact, PayslipAdjusted)
        assert fact.operation == "ADD"
        assert fact.net_pay == Decimal("14525.00")

    async def test_deduction_adjustment(self, session, payroll_ctx, run_at_review):
        payslip = await first_payslip(session, run_at_review)

        await PayslipAdjustmentService(session).add_adjustment(
            payroll_ctx,
            run_at_review.payroll_run_id,
            payslip.payslip_id,
            AdjustmentInput(LineKind.DEDUCTION, "Uniform", Decimal("250.00")),
        )

        assert payslip.total_deductions == Decimal("1225.00")
        assert payslip.net_pay == Decimal("13775.00")
        assert run_at_review.total_deductions == Decimal("2200.00")

    async def test_amount_must_be_positive(self, session, payroll_ctx, run_at_review):
        payslip = await first_payslip(session, run_at_review)

        result = await PayslipAdjustmentService(session).add_adjustment(
            payroll_ctx,
            run_at_review.payroll_run_id,
            payslip.payslip_id,
            AdjustmentInput(LineKind.EARNING, "Nothing", Decimal("0")),
        )

        assert isinstance(result.error, InvalidAmount)

    async def test_unknown_payslip(self, session, payroll_ctx, run_at_review):
        result = await PayslipAdjustmentService(session).add_adjustment(
            payroll_ctx,
            run_at_review.payroll_run_id,
            uuid4(),
            AdjustmentInput(LineKind.EARNING, "Bonus", Decimal("100")),
        )

        assert isinstance(result.error, NotFound)

    async def test_only_during_review(self, session, payroll_ctx, run_at_review):
        pipeline = PayrollRunPipeline(session)
        await pipeline.complete_review(payroll_ctx, run_at_review.payroll_run_id)
        payslip = await first_payslip(session, run_at_review)

        result = await PayslipAdjustmentService(session).add_adjustment(
            payroll_ctx,
            run_at_review.payroll_run_id,
            payslip.payslip_id,
            AdjustmentInput(LineKind.EARNING, "Late bonus", Decimal("100")),
        )

        assert isinstance(result.error, StepOutOfOrder)

    async def test_generated_payslip_is_frozen(self, session, payroll_ctx, run_at_review):
        payslip = await first_payslip(session, run_at_review)
        payslip.generated_at = datetime.now(timezone.utc)
        await session.flush()

        result = await PayslipAdjustmentService(session).add_adjustment(
            payroll_ctx,
            run_at_review.payroll_run_id,
            payslip.payslip_id,
            AdjustmentInput(LineKind.EARNING, "Bonus", Decimal("100")),
        )

        assert isinstance(result.error, PayslipFrozen)


class TestRemoveAdjustment:
    async def test_remove_restores_totals(self, session, payroll_ctx, run_at_review):
        payslip = await first_payslip(session, run_at_review)
        service = PayslipAdjustmentService(session)
        run_id = run_at_review.payroll_run_id
        await service.add_adjustment(
            payroll_ctx, run_id, payslip.payslip_id, AdjustmentInput(LineKind.EARNING, "Bonus", Decimal("300"))
        )
        line = next(line for line in payslip.earnings if line.is_adjustment)

        result = await service.remove_adjustment(payroll_ctx, run_id, payslip.payslip_id, line.earning_line_id)

        assert result.message == "Adjustment removed."
        assert payslip.net_pay == Decimal("14025.00")
        assert run_at_review.total_net_pay == Decimal("28050.00")
        assert result.facts[0].operation == "REMOVE"

    async def test_computed_lines_cannot_be_removed(self, session, payroll_ctx, run_at_review):
        payslip = await first_payslip(session, run_at_review)
        basic = next(line for line in payslip.earnings if line.code == "BASIC_PAY")

        result = await PayslipAdjustmentService(session).remove_adjustment(
            payroll_ctx, run_at_review.payroll_run_id, payslip.payslip_id, basic.earning_line_id
        )

        assert isinstance(result.error, NotFound)
        assert result.message == "Adjustment line not found."


class TestCarriedOnRecalculation:
    async def test_adjustment_survives_recalculation_once(self, session, payroll_ctx, run_at_review):
        pipeline = PayrollRunPipeline(session)
        run_id = run_at_review.payroll_run_id
        payslip = await first_payslip(session, run_at_review)
        employee_id = payslip.employee_id
        await PayslipAdjustmentService(session).add_adjustment(
            payroll_ctx, run_id, payslip.payslip_id, AdjustmentInput(LineKind.EARNING, "Bonus", Decimal("400"))
        )

        result = await pipeline.calculate(payroll_ctx, run_id)

        assert result.ok
        assert result.value.carried_adjustments == 1
        assert run_at_review.current_step == 3
        assert run_at_review.status == "COMPUTED"
        assert run_at_review.step(4).status == "PENDING"
        assert [fact.step_number for fact in result.facts] == [4, 3]
        payslips = await pipeline.list_payslips(run_at_review)
        rebuilt = next(p for p in payslips if p.employee_id == employee_id)
        assert [line.amount for line in rebuilt.earnings if line.is_adjustment] == [Decimal("400.00")]
        assert rebuilt.gross_pay == Decimal("15400.00")
        assert run_at_review.total_net_pay == Decimal("28450.00")

    async def test_second_recalculation_does_not_duplicate(self, session, payroll_ctx, run_at_review):
        pipeline = PayrollRunPipeline(session)
        run_id = run_at_review.payroll_run_id
        payslip = await first_payslip(session, run_at_review)
        await PayslipAdjustmentService(session).add_adjustment(
            payroll_ctx, run_id, payslip.payslip_id, AdjustmentInput(LineKind.DEDUCTION, "Cash advance", Decimal("250"))
        )

        (await pipeline.calculate(payroll_ctx, run_id)).unwrap()
        again = await pipeline.calculate(payroll_ctx, run_id)

        assert again.value.carried_adjustments == 1
        assert run_at_review.total_deductions == Decimal("2200.00")
        resumed = await pipeline.proceed_to_review(payroll_ctx, run_id)
        assert resumed.ok
        assert run_at_review.status == "FOR_REVIEW"

    async def test_recalculation_from_review_blocked_after_generation(
        self, session, payroll_ctx, run_at_review
    ):
        pipeline = PayrollRunPipeline(session)
        run_id = run_at_review.payroll_run_id
        (await pipeline.complete_review(payroll_ctx, run_id)).unwrap()
        (await pipeline.generate_payslips(payroll_ctx, run_id)).unwrap()
        (await pipeline.proceed_to_close(payroll_ctx, run_id)).unwrap()
        (await pipeline.reopen(payroll_ctx, run_id, reason="Wrong allowance")).unwrap()
        assert run_at_review.current_step == 4

        result = await pipeline.calculate(payroll_ctx, run_id)

        assert isinstance(result.error, StepNotReenterable)
