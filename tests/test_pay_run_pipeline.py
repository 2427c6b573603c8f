"""Tests for the payroll run pipeline."""

from decimal import Decimal
from uuid import uuid4

from sqlalchemy import update

from payroll_backoffice.calculators.types import RunType
from payroll_backoffice.errors import (
    DuplicateRegularRun,
    NoEligibleEmployees,
    NotAuthorized,
    NotFound,
    PeriodLocked,
    StepNotReenterable,
    StepOutOfOrder,
    ValidationBlocked,
)
from payroll_backoffice.events import PayrollRunClosed, PayrollRunReopened, PayrollStepTransitioned
from payroll_backoffice.models import DailyTimeRecord, PayPeriod
from payroll_backoffice.services.pay_run_service import (
    CreateRunInput,
    PayrollRunPipeline,
    payslip_number,
)
from payroll_backoffice.services.state_machine import RunStep
from payroll_backoffice.services.step_notes import CalculationTrace, CloseNotes, ValidationTrace


async def create_run(session, ctx, period, run_type=RunType.REGULAR, **scope):
    pipeline = PayrollRunPipeline(session)
    result = await pipeline.create(
        ctx, CreateRunInput(pay_period_id=period.pay_period_id, run_type=run_type, **scope)
    )
    return pipeline, result


async def run_to_close(pipeline, ctx, run_id):
    for operation in (
        pipeline.validate,
        pipeline.proceed_to_calculate,
        pipeline.calculate,
        pipeline.proceed_to_review,
        pipeline.complete_review,
        pipeline.generate_payslips,
        pipeline.proceed_to_close,
    ):
        result = await operation(ctx, run_id)
        assert result.ok, result.message
    return await pipeline.close(ctx, run_id)


async def move_period_to_other_company(session, period):
    await session.execute(
        update(PayPeriod)
        .where(PayPeriod.pay_period_id == period.pay_period_id)
        .values(company_id=uuid4())
    )


class TestPayslipNumber:
    def test_format(self):
        employee_id = uuid4()
        number = payslip_number("RUN-2026-00003", employee_id)
        assert number == f"PSL-2026-00003-{str(employee_id)[:6].upper()}"


class TestCreate:
    async def test_create_regular_run(self, session, payroll_ctx, pay_period, attended):
        pipeline, result = await create_run(session, payroll_ctx, pay_period)

        assert result.ok
        run = result.value
        assert result.message == f"Payroll run {run.run_number} created."
        assert run.run_number.startswith("RUN-")
        assert run.status == "DRAFT"
        assert run.current_step == int(RunStep.VALIDATE_DATA)
        assert run.total_employees == 2
        assert run.step(1).is_completed
        assert run.step(2).status == "IN_PROGRESS"
        assert pay_period.status == "PROCESSING"
        assert all(isinstance(fact, PayrollStepTransitioned) for fact in result.facts)
        assert all(fact.payroll_run_id == run.payroll_run_id for fact in result.facts)

    async def test_second_regular_run_rejected(self, session, payroll_ctx, pay_period, attended):
        await create_run(session, payroll_ctx, pay_period)

        _, result = await create_run(session, payroll_ctx, pay_period)

        assert isinstance(result.error, DuplicateRegularRun)

    async def test_trial_run_beside_regular(self, session, payroll_ctx, pay_period, attended):
        await create_run(session, payroll_ctx, pay_period)

        _, result = await create_run(session, payroll_ctx, pay_period, run_type=RunType.TRIAL_RUN)

        assert result.ok

    async def test_scope_narrows_employees(self, session, payroll_ctx, pay_period, staff, attended):
        _, result = await create_run(session, payroll_ctx, pay_period, employee_ids=[staff.employee_id])

        assert result.value.total_employees == 1
        assert result.value.employee_ids == [str(staff.employee_id)]

    async def test_empty_scope(self, session, payroll_ctx, pay_period, attended):
        _, result = await create_run(session, payroll_ctx, pay_period, employee_ids=[uuid4()])

        assert isinstance(result.error, NoEligibleEmployees)

    async def test_locked_period(self, session, payroll_ctx, pay_period, attended):
        pay_period.status = "LOCKED"
        await session.flush()

        _, result = await create_run(session, payroll_ctx, pay_period)

        assert isinstance(result.error, PeriodLocked)

    async def test_requires_payroll_access(self, session, staff_ctx, pay_period, attended):
        _, result = await create_run(session, staff_ctx, pay_period)

        assert isinstance(result.error, NotAuthorized)

    async def test_unknown_period(self, session, payroll_ctx, attended):
        pipeline = PayrollRunPipeline(session)
        result = await pipeline.create(payroll_ctx, CreateRunInput(pay_period_id=uuid4()))

        assert isinstance(result.error, NotFound)


class TestValidate:
    async def test_clean_data_passes(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)

        result = await pipeline.validate(payroll_ctx, created.value.payroll_run_id)

        trace = result.value
        assert trace.passed
        assert trace.warning_count == 0
        assert len(trace.employees) == 2
        assert all(summary.expected_days == 10 for summary in trace.employees)
        assert result.message == "Validation completed with 0 warning(s)."
        assert isinstance(pipeline.step_notes(created.value, RunStep.VALIDATE_DATA), ValidationTrace)

    async def test_pending_dtr_blocks_calculation(self, session, payroll_ctx, pay_period, staff, attended):
        await session.execute(
            update(DailyTimeRecord)
            .where(DailyTimeRecord.employee_id == staff.employee_id)
            .values(approval_status="PENDING")
        )
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        run_id = created.value.payroll_run_id

        result = await pipeline.validate(payroll_ctx, run_id)

        # The trace is written even though it carries errors
        assert result.ok
        assert not result.value.passed
        assert result.value.errors[0].code == "UNAPPROVED_DTR"
        assert "10 DTR entries are pending" in result.message
        assert created.value.status == "DRAFT"
        assert created.value.step(2).status == "FAILED"

        blocked = await pipeline.proceed_to_calculate(payroll_ctx, run_id)
        assert isinstance(blocked.error, ValidationBlocked)

    async def test_missing_attendance_is_a_warning(self, session, payroll_ctx, pay_period, manager, staff):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)

        result = await pipeline.validate(payroll_ctx, created.value.payroll_run_id)

        assert result.value.passed
        codes = [issue.code for issue in result.value.warnings]
        assert codes.count("MISSING_DTR") == 2

    async def test_missing_period_is_not_found(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        run = created.value
        await move_period_to_other_company(session, pay_period)

        result = await pipeline.validate(payroll_ctx, run.payroll_run_id)

        assert isinstance(result.error, NotFound)
        assert result.message == "Pay period not found."
        assert run.step(2).status == "IN_PROGRESS"


class TestCalculate:
    async def test_calculate_builds_payslips(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        run = created.value
        await pipeline.validate(payroll_ctx, run.payroll_run_id)
        await pipeline.proceed_to_calculate(payroll_ctx, run.payroll_run_id)

        result = await pipeline.calculate(payroll_ctx, run.payroll_run_id)

        assert result.message == "Payroll calculated for 2 employee(s)."
        trace = result.value
        assert isinstance(trace, CalculationTrace)
        assert trace.totals.net_pay == Decimal("28050.00")
        assert run.status == "COMPUTED"
        assert run.total_gross_pay == Decimal("30000.00")
        assert run.total_deductions == Decimal("1950.00")
        assert run.total_net_pay == Decimal("28050.00")
        assert run.total_employer_contributions == Decimal("950.00")

        payslips = await pipeline.list_payslips(run)
        assert len(payslips) == 2
        payslip = payslips[0]
        assert payslip.basic_pay == Decimal("15000.00")
        assert payslip.net_pay == Decimal("14025.00")
        assert payslip.sss_employee == Decimal("0")
        assert payslip.philhealth_employee == Decimal("375.00")
        assert payslip.payslip_number is None
        assert sorted(line.code for line in payslip.deductions) == ["PAGIBIG", "PHILHEALTH", "WTAX"]

    async def test_calculate_before_validation(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)

        result = await pipeline.calculate(payroll_ctx, created.value.payroll_run_id)

        assert isinstance(result.error, StepOutOfOrder)

    async def test_recalculation_replaces_payslips(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        run_id = created.value.payroll_run_id
        await pipeline.validate(payroll_ctx, run_id)
        await pipeline.proceed_to_calculate(payroll_ctx, run_id)
        await pipeline.calculate(payroll_ctx, run_id)

        again = await pipeline.calculate(payroll_ctx, run_id)

        assert again.ok
        assert len(await pipeline.list_payslips(created.value)) == 2

    async def test_validate_closed_after_calculation(self, session, payroll_ctx, run_at_review):
        pipeline = PayrollRunPipeline(session)

        result = await pipeline.validate(payroll_ctx, run_at_review.payroll_run_id)

        assert isinstance(result.error, StepNotReenterable)


class TestReviewAndClose:
    async def test_full_regular_run_locks_period(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        run = created.value

        result = await run_to_close(pipeline, payroll_ctx, run.payroll_run_id)

        assert result.message == "Payroll run closed successfully."
        assert run.status == "PAID"
        assert run.is_locked
        assert run.paid_by_id == payroll_ctx.actor_user_id
        assert pay_period.status == "LOCKED"
        assert pay_period.locked_at is not None
        closed = [fact for fact in result.facts if isinstance(fact, PayrollRunClosed)]
        assert closed[0].period_locked
        notes = pipeline.step_notes(run, RunStep.CLOSE_RUN)
        assert isinstance(notes, CloseNotes)
        assert notes.total_net_pay == Decimal("28050.00")

        payslips = await pipeline.list_payslips(run)
        assert all(p.payslip_number.startswith("PSL-" + run.run_number[4:]) for p in payslips)
        assert all(p.is_frozen for p in payslips)

    async def test_close_is_idempotent(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        await run_to_close(pipeline, payroll_ctx, created.value.payroll_run_id)

        again = await pipeline.close(payroll_ctx, created.value.payroll_run_id)

        assert again.ok
        assert again.message == "Payroll run is already closed and locked."
        assert again.facts == ()

    async def test_close_with_missing_period_leaves_run_unpaid(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        run = created.value
        for operation in (
            pipeline.validate,
            pipeline.proceed_to_calculate,
            pipeline.calculate,
            pipeline.proceed_to_review,
            pipeline.complete_review,
            pipeline.generate_payslips,
            pipeline.proceed_to_close,
        ):
            assert (await operation(payroll_ctx, run.payroll_run_id)).ok
        await move_period_to_other_company(session, pay_period)

        result = await pipeline.close(payroll_ctx, run.payroll_run_id)

        assert isinstance(result.error, NotFound)
        assert run.status == "FOR_PAYMENT"
        assert not run.is_locked
        assert not run.step(6).is_completed

    async def test_trial_run_never_locks_period(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period, run_type=RunType.TRIAL_RUN)

        result = await run_to_close(pipeline, payroll_ctx, created.value.payroll_run_id)

        assert result.ok
        assert created.value.status == "PAID"
        assert pay_period.status == "OPEN"

    async def test_mid_year_bonus_run(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period, run_type=RunType.MID_YEAR_BONUS)
        run = created.value

        result = await run_to_close(pipeline, payroll_ctx, run.payroll_run_id)

        assert result.ok
        assert run.total_gross_pay == Decimal("30000.00")
        assert run.total_deductions == Decimal("0.00")
        assert run.total_employer_contributions == Decimal("0.00")
        assert pay_period.status == "OPEN"
        payslips = await pipeline.list_payslips(run)
        assert {line.code for payslip in payslips for line in payslip.earnings} == {"MID_YEAR_BONUS"}
        assert all(not payslip.deductions for payslip in payslips)

    async def test_generate_requires_completed_review(self, session, payroll_ctx, run_at_review):
        pipeline = PayrollRunPipeline(session)

        result = await pipeline.generate_payslips(payroll_ctx, run_at_review.payroll_run_id)

        assert isinstance(result.error, StepOutOfOrder)

    async def test_skipping_a_step_is_rejected(self, session, payroll_ctx, run_at_review):
        pipeline = PayrollRunPipeline(session)

        result = await pipeline.proceed_to_close(payroll_ctx, run_at_review.payroll_run_id)

        assert isinstance(result.error, StepOutOfOrder)
        assert run_at_review.current_step == int(RunStep.REVIEW_ADJUST)


class TestReopen:
    async def test_reopen_paid_run(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        run = created.value
        await run_to_close(pipeline, payroll_ctx, run.payroll_run_id)
        numbers = {p.payslip_id: p.payslip_number for p in await pipeline.list_payslips(run)}

        result = await pipeline.reopen(payroll_ctx, run.payroll_run_id, reason="Missed allowance")

        assert result.message == "Payroll run reopened for review."
        assert run.status == "FOR_REVIEW"
        assert run.current_step == int(RunStep.REVIEW_ADJUST)
        assert not run.is_locked
        assert run.reopen_count == 1
        assert pay_period.status == "PROCESSING"
        assert isinstance(result.facts[-1], PayrollRunReopened)
        assert result.facts[-1].reason == "Missed allowance"

        payslips = await pipeline.list_payslips(run)
        assert {p.payslip_id: p.payslip_number for p in payslips} == numbers
        assert not any(p.is_frozen for p in payslips)

        # Payslips were generated before, so calculation stays closed
        recalculated = await pipeline.calculate(payroll_ctx, run.payroll_run_id)
        assert isinstance(recalculated.error, StepNotReenterable)

    async def test_reopen_and_close_again(self, session, payroll_ctx, pay_period, attended):
        pipeline, created = await create_run(session, payroll_ctx, pay_period)
        run_id = created.value.payroll_run_id
        await run_to_close(pipeline, payroll_ctx, run_id)
        await pipeline.reopen(payroll_ctx, run_id)

        for operation in (
            pipeline.complete_review,
            pipeline.generate_payslips,
            pipeline.proceed_to_close,
            pipeline.close,
        ):
            result = await operation(payroll_ctx, run_id)
            assert result.ok, result.message
        assert pay_period.status == "LOCKED"

    async def test_run_in_review_cannot_reopen(self, session, payroll_ctx, run_at_review):
        result = await PayrollRunPipeline(session).reopen(payroll_ctx, run_at_review.payroll_run_id)

        assert isinstance(result.error, StepNotReenterable)
