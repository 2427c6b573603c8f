"""Payroll run pipeline - main orchestrator for the six run steps."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.calculators.engine import CalculationResult, PayrollEngine
from payroll_backoffice.calculators.line_builder import LineItemBuilder
from payroll_backoffice.calculators.types import LineCandidate, LineKind, RunType
from payroll_backoffice.config import Settings
from payroll_backoffice.context import RequestContext
from payroll_backoffice.errors import (
    DuplicateRegularRun,
    NoEligibleEmployees,
    NotAuthorized,
    NotFound,
    OperationResult,
    PeriodLocked,
    PeriodNotOpen,
    StepNotReenterable,
    StepOutOfOrder,
    ValidationBlocked,
)
from payroll_backoffice.events.types import (
    AuditFact,
    FactMetadata,
    PayrollRunClosed,
    PayrollRunReopened,
    PayrollStepTransitioned,
)
from payroll_backoffice.models import (
    Employee,
    PayPeriod,
    PayrollProcessStep,
    PayrollRun,
    Payslip,
    PayslipDeduction,
    PayslipEarning,
)
from payroll_backoffice.services.state_machine import (
    PayrollRunStateMachine,
    PeriodStatus,
    RunStatus,
    RunStep,
    StepStatus,
)
from payroll_backoffice.services.step_notes import (
    CalculationTrace,
    CloseNotes,
    EmployeeCalculationTrace,
    GenerationNotes,
    ReviewNotes,
    RunScope,
    RunTotals,
    SetupNotes,
    SkippedEmployee,
    StepNotes,
    ValidationTrace,
    dump_notes,
    load_notes,
)
from payroll_backoffice.services.validation_service import (
    PayrollValidationService,
    load_scoped_employees,
)

logger = logging.getLogger(__name__)

NO_PAYROLL_ACCESS = "You do not have access to payroll operations."


@dataclass(frozen=True)
class CreateRunInput:
    pay_period_id: UUID
    run_type: RunType = RunType.REGULAR
    department_ids: list[UUID] = field(default_factory=list)
    branch_ids: list[UUID] = field(default_factory=list)
    employee_ids: list[UUID] = field(default_factory=list)

    def scope(self) -> RunScope:
        return RunScope(
            department_ids=[str(v) for v in self.department_ids],
            branch_ids=[str(v) for v in self.branch_ids],
            employee_ids=[str(v) for v in self.employee_ids],
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def payslip_number(run_number: str, employee_id: UUID) -> str:
    """PSL-{run number without RUN-}-{first six characters of the employee id}."""
    suffix = run_number[4:] if run_number.startswith("RUN-") else run_number
    return f"PSL-{suffix}-{str(employee_id)[:6].upper()}"


class PayrollRunPipeline:
    """Drives a payroll run through its six steps.

    Operations:
    - create: step 1, scope fixed for the life of the run
    - validate / proceed_to_calculate: step 2 diagnostics and its gate
    - calculate: step 3, rebuilds every payslip of the run; also re-entered
      from review until payslips are generated
    - proceed_to_review / complete_review: step 4 (adjustments live in
      PayslipAdjustmentService)
    - generate_payslips: step 5, freezes payslips
    - proceed_to_close / close: step 6, PAID and, for REGULAR runs, the period LOCKED
    - reopen: administrative return to review

    Every operation mutates inside the caller's transaction and returns the
    audit facts it produced; nothing here commits.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.engine = PayrollEngine(session, settings)
        self.validator = PayrollValidationService(session)

    # === Reads ===

    async def get_run(self, ctx: RequestContext, run_id: UUID, lock: bool = False) -> PayrollRun | None:
        """Load a run of the context's company; `lock` reads it FOR UPDATE."""
        query = select(PayrollRun).where(
            PayrollRun.payroll_run_id == run_id,
            PayrollRun.company_id == ctx.company_id,
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_runs(self, ctx: RequestContext, status: str | None = None) -> list[PayrollRun]:
        query = select(PayrollRun).where(PayrollRun.company_id == ctx.company_id)
        if status:
            query = query.where(PayrollRun.status == status)
        result = await self.session.execute(query.order_by(PayrollRun.created_at.desc()))
        return list(result.scalars().all())

    async def list_payslips(self, run: PayrollRun) -> list[Payslip]:
        result = await self.session.execute(
            select(Payslip)
            .where(Payslip.payroll_run_id == run.payroll_run_id)
            .order_by(Payslip.payslip_number, Payslip.employee_id)
        )
        return list(result.scalars().all())

    @staticmethod
    def step_notes(run: PayrollRun, step: RunStep) -> StepNotes | None:
        return load_notes(run.step(int(step)).notes)

    # === Step 1 ===

    async def create(self, ctx: RequestContext, data: CreateRunInput) -> OperationResult[PayrollRun]:
        if not ctx.can_manage_payroll:
            return OperationResult.failure(NotAuthorized(NO_PAYROLL_ACCESS))

        period = await self._load_period(ctx.company_id, data.pay_period_id, lock=True)
        if period is None:
            return OperationResult.failure(NotFound("Pay period not found."))
        if period.status == PeriodStatus.LOCKED.value:
            return OperationResult.failure(PeriodLocked("Pay period is locked."))
        if period.status not in (PeriodStatus.OPEN.value, PeriodStatus.PROCESSING.value):
            return OperationResult.failure(PeriodNotOpen("Pay period is not open."))

        if data.run_type is RunType.REGULAR:
            existing = await self.session.scalar(
                select(func.count())
                .select_from(PayrollRun)
                .where(
                    PayrollRun.pay_period_id == period.pay_period_id,
                    PayrollRun.run_type == RunType.REGULAR.value,
                )
            )
            if existing:
                return OperationResult.failure(
                    DuplicateRegularRun("A regular payroll run already exists for this pay period.")
                )

        scope = data.scope()
        employees = await load_scoped_employees(
            self.session, ctx.company_id, period.pay_schedule_id, scope
        )
        if not employees:
            return OperationResult.failure(
                NoEligibleEmployees("No eligible employees found for this payroll scope.")
            )

        run = PayrollRun(
            payroll_run_id=uuid4(),
            company_id=ctx.company_id,
            run_number=await self._next_run_number(ctx.company_id),
            pay_period_id=period.pay_period_id,
            run_type=data.run_type.value,
            is_locked=False,
            department_ids=scope.department_ids,
            branch_ids=scope.branch_ids,
            employee_ids=scope.employee_ids,
            total_employees=len(employees),
            created_by_id=ctx.actor_user_id,
            steps=[
                PayrollProcessStep(step_number=int(step), step_name=step.name, status=StepStatus.PENDING.value)
                for step in RunStep
            ],
        )
        PayrollRunStateMachine.complete(run, RunStep.CREATE_RUN)
        PayrollRunStateMachine.enter(run, RunStep.VALIDATE_DATA)
        self.session.add(run)

        if data.run_type is RunType.REGULAR and period.status == PeriodStatus.OPEN.value:
            period.status = PeriodStatus.PROCESSING.value

        facts = [
            self._set_step(
                ctx,
                run,
                RunStep.CREATE_RUN,
                StepStatus.COMPLETED,
                "CREATE_RUN",
                SetupNotes(
                    run_type=data.run_type.value,
                    scope=scope,
                    eligible_employees=len(employees),
                    created_at=_now(),
                ),
            ),
            self._set_step(ctx, run, RunStep.VALIDATE_DATA, StepStatus.IN_PROGRESS, "CREATE_RUN"),
        ]
        await self.session.flush()
        logger.info(
            "Created payroll run %s (%s) for period %s with %d employee(s)",
            run.run_number,
            run.run_type,
            period.pay_period_id,
            len(employees),
        )
        return OperationResult.success(run, facts, message=f"Payroll run {run.run_number} created.")

    # === Step 2 ===

    async def validate(self, ctx: RequestContext, run_id: UUID) -> OperationResult[ValidationTrace]:
        """Write the validation trace; a trace with errors is still a successful write."""
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return OperationResult.failure(loaded.error)  # type: ignore[arg-type]
        run = loaded.unwrap()

        blocked = PayrollRunStateMachine.check_validate(run)
        if blocked is not None:
            return OperationResult.failure(blocked)

        period = await self._load_period(run.company_id, run.pay_period_id)
        if period is None:
            return OperationResult.failure(NotFound("Pay period not found."))
        trace = await self.validator.validate(run, period)

        if trace.passed:
            PayrollRunStateMachine.complete(run, RunStep.VALIDATE_DATA)
        else:
            PayrollRunStateMachine.enter(run, RunStep.VALIDATE_DATA)
        run.total_employees = len(trace.employees)
        step_status = StepStatus.COMPLETED if trace.passed else StepStatus.FAILED
        facts = [self._set_step(ctx, run, RunStep.VALIDATE_DATA, step_status, "VALIDATE", trace)]
        await self.session.flush()

        if trace.passed:
            message = f"Validation completed with {trace.warning_count} warning(s)."
        else:
            message = f"Validation failed ({trace.error_count}): {trace.errors[0].message}"
        return OperationResult.success(trace, facts, message=message)

    async def proceed_to_calculate(self, ctx: RequestContext, run_id: UUID) -> OperationResult[PayrollRun]:
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return loaded
        run = loaded.unwrap()

        trace = self.step_notes(run, RunStep.VALIDATE_DATA)
        if isinstance(trace, ValidationTrace) and not trace.passed:
            return OperationResult.failure(
                ValidationBlocked("Validation errors still exist. Resolve them before proceeding.")
            )
        blocked = PayrollRunStateMachine.check_advance(run, RunStep.CALCULATE_PAYROLL)
        if blocked is not None:
            return OperationResult.failure(blocked)

        PayrollRunStateMachine.enter(run, RunStep.CALCULATE_PAYROLL)
        facts = [
            self._set_step(ctx, run, RunStep.CALCULATE_PAYROLL, StepStatus.IN_PROGRESS, "PROCEED_TO_CALCULATE")
        ]
        await self.session.flush()
        return OperationResult.success(
            run, facts, message="Validation reviewed. Proceeded to calculation step."
        )

    # === Step 3 ===

    async def calculate(self, ctx: RequestContext, run_id: UUID) -> OperationResult[CalculationTrace]:
        """Rebuild every payslip of the run.

        Prior computed payslips are replaced, never appended to. Manual
        adjustment lines from the previous calculation are carried into the
        new payslips once.
        """
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return OperationResult.failure(loaded.error)  # type: ignore[arg-type]
        run = loaded.unwrap()

        blocked = PayrollRunStateMachine.check_calculate(run)
        if blocked is not None:
            return OperationResult.failure(blocked)

        period = await self._load_period(run.company_id, run.pay_period_id)
        if period is None:
            return OperationResult.failure(NotFound("Pay period not found."))
        employees = await load_scoped_employees(
            self.session, run.company_id, period.pay_schedule_id, RunScope(**run.scope)
        )
        previous = await self.list_payslips(run)
        carried = self._carried_adjustments(previous)

        outcome = await self.engine.calculate_run(run, period, employees, carried)
        numbers = {employee.employee_id: employee.employee_number for employee in employees}
        skipped = [
            SkippedEmployee(employee_id=eid, employee_number=numbers.get(eid, ""), reason=reason)
            for eid, reason in outcome.skipped.items()
        ]
        computed = [result for result in outcome.results.values() if result.success]
        for result in outcome.results.values():
            if not result.success:
                skipped.append(
                    SkippedEmployee(
                        employee_id=result.employee_id,
                        employee_number=result.employee_number,
                        reason="; ".join(result.errors),
                    )
                )
        if not computed:
            return OperationResult.failure(
                NoEligibleEmployees(
                    "No employees were processed. Check salary configuration for the employees in scope."
                )
            )

        facts: list[AuditFact] = []
        if run.current_step == int(RunStep.REVIEW_ADJUST):
            PayrollRunStateMachine.enter(run, RunStep.CALCULATE_PAYROLL)
            facts.append(
                self._set_step(ctx, run, RunStep.REVIEW_ADJUST, StepStatus.PENDING, "RECALCULATE")
            )

        for payslip in previous:
            await self.session.delete(payslip)
        await self.session.flush()

        for result in computed:
            self.session.add(self._build_payslip(run, result))

        run.total_employees = len(computed)
        run.total_gross_pay = outcome.total_gross
        run.total_deductions = outcome.total_deductions
        run.total_net_pay = outcome.total_net
        run.total_employer_contributions = outcome.total_employer_contributions
        run.processed_at = _now()
        PayrollRunStateMachine.complete(run, RunStep.CALCULATE_PAYROLL)

        warnings = [warning for result in computed for warning in result.warnings]
        trace = CalculationTrace(
            calculation_version=self.engine.settings.calculation_version,
            calculated_at=run.processed_at,
            run_type=run.run_type,
            totals=RunTotals(
                employee_count=len(computed),
                gross_pay=outcome.total_gross,
                total_deductions=outcome.total_deductions,
                net_pay=outcome.total_net,
                employer_contributions=outcome.total_employer_contributions,
            ),
            carried_adjustments=sum(len(lines) for lines in carried.values()),
            skipped=skipped,
            warnings=warnings,
            employees=[self._employee_trace(result) for result in computed],
        )
        facts.append(self._set_step(ctx, run, RunStep.CALCULATE_PAYROLL, StepStatus.COMPLETED, "CALCULATE", trace))
        await self.session.flush()
        logger.info(
            "Calculated %s: %d payslip(s), %d skipped, net %s",
            run.run_number,
            len(computed),
            len(skipped),
            outcome.total_net,
        )
        return OperationResult.success(
            trace, facts, message=f"Payroll calculated for {len(computed)} employee(s)."
        )

    # === Step 4 ===

    async def proceed_to_review(self, ctx: RequestContext, run_id: UUID) -> OperationResult[PayrollRun]:
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return loaded
        run = loaded.unwrap()

        blocked = PayrollRunStateMachine.check_advance(run, RunStep.REVIEW_ADJUST)
        if blocked is not None:
            return OperationResult.failure(blocked)

        PayrollRunStateMachine.enter(run, RunStep.REVIEW_ADJUST)
        facts = [self._set_step(ctx, run, RunStep.REVIEW_ADJUST, StepStatus.IN_PROGRESS, "PROCEED_TO_REVIEW")]
        await self.session.flush()
        return OperationResult.success(run, facts, message="Proceeded to review and adjustments.")

    async def complete_review(self, ctx: RequestContext, run_id: UUID) -> OperationResult[PayrollRun]:
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return loaded
        run = loaded.unwrap()

        blocked = PayrollRunStateMachine.check_at_step(run, RunStep.REVIEW_ADJUST)
        if blocked is not None:
            return OperationResult.failure(blocked)

        payslips = await self.list_payslips(run)
        adjusted = 0
        lines = 0
        for payslip in payslips:
            count = sum(1 for line in (*payslip.earnings, *payslip.deductions) if line.is_adjustment)
            lines += count
            adjusted += 1 if count else 0

        previous = self.step_notes(run, RunStep.REVIEW_ADJUST)
        notes = ReviewNotes(
            adjusted_payslips=adjusted,
            adjustment_lines=lines,
            completed_at=_now(),
            reopened_at=previous.reopened_at if isinstance(previous, ReviewNotes) else None,
            reopen_reason=previous.reopen_reason if isinstance(previous, ReviewNotes) else None,
        )
        PayrollRunStateMachine.enter(run, RunStep.GENERATE_PAYSLIPS)
        facts = [
            self._set_step(ctx, run, RunStep.REVIEW_ADJUST, StepStatus.COMPLETED, "COMPLETE_REVIEW", notes),
            self._set_step(ctx, run, RunStep.GENERATE_PAYSLIPS, StepStatus.IN_PROGRESS, "COMPLETE_REVIEW"),
        ]
        await self.session.flush()
        return OperationResult.success(
            run, facts, message="Payroll review completed. Ready to generate payslips."
        )

    # === Step 5 ===

    async def generate_payslips(self, ctx: RequestContext, run_id: UUID) -> OperationResult[GenerationNotes]:
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return OperationResult.failure(loaded.error)  # type: ignore[arg-type]
        run = loaded.unwrap()

        blocked = PayrollRunStateMachine.check_at_step(run, RunStep.GENERATE_PAYSLIPS)
        if blocked is None and not PayrollRunStateMachine.step_completed(run, RunStep.REVIEW_ADJUST):
            blocked = StepOutOfOrder(run.current_step, int(RunStep.GENERATE_PAYSLIPS), "review is not completed")
        if blocked is not None:
            return OperationResult.failure(blocked)

        payslips = await self.list_payslips(run)
        if not payslips:
            return OperationResult.failure(NoEligibleEmployees("No payslips found. Run calculation first."))

        now = _now()
        regenerated = run.payslips_generated_at is not None
        for payslip in payslips:
            if payslip.payslip_number is None:
                payslip.payslip_number = payslip_number(run.run_number, payslip.employee_id)
            payslip.generated_at = now
        if run.payslips_generated_at is None:
            run.payslips_generated_at = now

        notes = GenerationNotes(payslip_count=len(payslips), generated_at=now, regenerated=regenerated)
        facts = [
            self._set_step(ctx, run, RunStep.GENERATE_PAYSLIPS, StepStatus.COMPLETED, "GENERATE_PAYSLIPS", notes)
        ]
        await self.session.flush()
        return OperationResult.success(
            notes, facts, message="Payslips generated. Review and proceed when ready."
        )

    # === Step 6 ===

    async def proceed_to_close(self, ctx: RequestContext, run_id: UUID) -> OperationResult[PayrollRun]:
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return loaded
        run = loaded.unwrap()

        blocked = PayrollRunStateMachine.check_advance(run, RunStep.CLOSE_RUN)
        if blocked is not None:
            return OperationResult.failure(blocked)

        PayrollRunStateMachine.enter(run, RunStep.CLOSE_RUN)
        facts = [self._set_step(ctx, run, RunStep.CLOSE_RUN, StepStatus.IN_PROGRESS, "PROCEED_TO_CLOSE")]
        await self.session.flush()
        return OperationResult.success(run, facts, message="Proceeded to close period step.")

    async def close(self, ctx: RequestContext, run_id: UUID) -> OperationResult[PayrollRun]:
        """Mark the run PAID; only a REGULAR run locks its pay period."""
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return loaded
        run = loaded.unwrap()

        if run.status == RunStatus.PAID.value:
            return OperationResult.success(run, message="Payroll run is already closed and locked.")
        if run.status != RunStatus.FOR_PAYMENT.value or run.current_step != int(RunStep.CLOSE_RUN):
            return OperationResult.failure(
                StepOutOfOrder(run.current_step, int(RunStep.CLOSE_RUN), "run is not awaiting payment")
            )
        if not PayrollRunStateMachine.step_completed(run, RunStep.GENERATE_PAYSLIPS):
            return OperationResult.failure(
                StepOutOfOrder(run.current_step, int(RunStep.CLOSE_RUN), "payslips are not generated")
            )

        period = None
        if run.run_type == RunType.REGULAR.value:
            period = await self._load_period(run.company_id, run.pay_period_id, lock=True)
            if period is None:
                return OperationResult.failure(NotFound("Pay period not found."))

        now = _now()
        PayrollRunStateMachine.complete(run, RunStep.CLOSE_RUN)
        run.is_locked = True
        run.paid_at = now
        run.paid_by_id = ctx.actor_user_id

        period_locked = False
        if period is not None:
            period.status = PeriodStatus.LOCKED.value
            period.locked_at = now
            period_locked = True

        notes = CloseNotes(
            closed_at=now,
            paid_by_id=ctx.actor_user_id,
            period_locked=period_locked,
            total_net_pay=run.total_net_pay,
        )
        facts: list[AuditFact] = [
            self._set_step(ctx, run, RunStep.CLOSE_RUN, StepStatus.COMPLETED, "CLOSE", notes),
            PayrollRunClosed(
                metadata=FactMetadata.from_context(ctx),
                payroll_run_id=run.payroll_run_id,
                run_number=run.run_number,
                run_type=run.run_type,
                pay_period_id=run.pay_period_id,
                period_locked=period_locked,
                total_net_pay=run.total_net_pay,
            ),
        ]
        await self.session.flush()
        logger.info("Closed payroll run %s (period locked: %s)", run.run_number, period_locked)
        return OperationResult.success(run, facts, message="Payroll run closed successfully.")

    # === Reopen ===

    async def reopen(
        self, ctx: RequestContext, run_id: UUID, reason: str | None = None
    ) -> OperationResult[PayrollRun]:
        """Return a run awaiting payment or paid to review.

        Payslip numbers are kept and calculation stays blocked because
        payslips were generated before.
        """
        loaded = await self._load_for_update(ctx, run_id)
        if not loaded.ok:
            return loaded
        run = loaded.unwrap()

        if not PayrollRunStateMachine.can_reopen(run):
            return OperationResult.failure(
                StepNotReenterable("Only payroll runs awaiting payment or paid can be reopened.")
            )

        period = None
        if run.run_type == RunType.REGULAR.value:
            period = await self._load_period(run.company_id, run.pay_period_id, lock=True)
            if period is None:
                return OperationResult.failure(NotFound("Pay period not found."))

        now = _now()
        previous_status = run.status
        PayrollRunStateMachine.enter(run, RunStep.REVIEW_ADJUST)
        run.is_locked = False
        run.paid_at = None
        run.paid_by_id = None
        run.reopened_at = now
        run.reopen_count += 1

        for payslip in await self.list_payslips(run):
            payslip.generated_at = None

        if period is not None and period.status == PeriodStatus.LOCKED.value:
            period.status = PeriodStatus.PROCESSING.value
            period.locked_at = None

        notes = ReviewNotes(reopened_at=now, reopen_reason=reason)
        facts: list[AuditFact] = [
            self._set_step(ctx, run, RunStep.REVIEW_ADJUST, StepStatus.IN_PROGRESS, "REOPEN", notes),
            self._set_step(ctx, run, RunStep.GENERATE_PAYSLIPS, StepStatus.PENDING, "REOPEN"),
            self._set_step(ctx, run, RunStep.CLOSE_RUN, StepStatus.PENDING, "REOPEN"),
            PayrollRunReopened(
                metadata=FactMetadata.from_context(ctx),
                payroll_run_id=run.payroll_run_id,
                run_number=run.run_number,
                previous_status=previous_status,
                reopen_count=run.reopen_count,
                reason=reason,
            ),
        ]
        await self.session.flush()
        logger.warning("Reopened payroll run %s from %s: %s", run.run_number, previous_status, reason)
        return OperationResult.success(run, facts, message="Payroll run reopened for review.")

    # === Internals ===

    async def _load_for_update(self, ctx: RequestContext, run_id: UUID) -> OperationResult[PayrollRun]:
        if not ctx.can_manage_payroll:
            return OperationResult.failure(NotAuthorized(NO_PAYROLL_ACCESS))
        run = await self.get_run(ctx, run_id, lock=True)
        if run is None:
            return OperationResult.failure(NotFound("Payroll run not found."))
        return OperationResult.success(run)

    async def _load_period(self, company_id: UUID, pay_period_id: UUID, lock: bool = False) -> PayPeriod | None:
        query = select(PayPeriod).where(
            PayPeriod.pay_period_id == pay_period_id,
            PayPeriod.company_id == company_id,
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _next_run_number(self, company_id: UUID) -> str:
        count = await self.session.scalar(
            select(func.count()).select_from(PayrollRun).where(PayrollRun.company_id == company_id)
        )
        return f"RUN-{_now().year}-{(count or 0) + 1:05d}"

    def _set_step(
        self,
        ctx: RequestContext,
        run: PayrollRun,
        step: RunStep,
        status: StepStatus,
        action: str,
        notes: StepNotes | None = None,
    ) -> PayrollStepTransitioned:
        """Update one step row and describe the change as an audit fact."""
        row = run.step(int(step))
        completed = status is StepStatus.COMPLETED
        row.status = status.value
        row.is_completed = completed
        row.completed_at = _now() if completed else None
        row.completed_by_id = ctx.actor_user_id if completed else None
        if notes is not None:
            row.notes = dump_notes(notes)
        return PayrollStepTransitioned(
            metadata=FactMetadata.from_context(ctx),
            payroll_run_id=run.payroll_run_id,
            run_number=run.run_number,
            action=action,
            step_number=int(step),
            step_status=status.value,
            run_status=run.status,
            current_step=run.current_step,
        )

    @staticmethod
    def _carried_adjustments(payslips: Sequence[Payslip]) -> dict[UUID, list[LineCandidate]]:
        carried: dict[UUID, list[LineCandidate]] = {}
        for payslip in payslips:
            lines: list[LineCandidate] = []
            for earning in payslip.earnings:
                if earning.is_adjustment:
                    lines.append(
                        LineItemBuilder.create_earning_line(
                            earning.code,
                            earning.description,
                            earning.amount,
                            is_taxable=earning.is_taxable,
                            is_adjustment=True,
                            created_by_id=earning.created_by_id,
                        )
                    )
            for deduction in payslip.deductions:
                if deduction.is_adjustment:
                    lines.append(
                        LineItemBuilder.create_deduction_line(
                            deduction.code,
                            deduction.description,
                            deduction.amount,
                            reference_type="ADJUSTMENT",
                            is_adjustment=True,
                            created_by_id=deduction.created_by_id,
                        )
                    )
            if lines:
                carried[payslip.employee_id] = lines
        return carried

    @staticmethod
    def _build_payslip(run: PayrollRun, result: CalculationResult) -> Payslip:
        snapshot = result.attendance
        statutory = result.statutory
        return Payslip(
            payroll_run_id=run.payroll_run_id,
            employee_id=result.employee_id,
            base_salary=result.base_salary,
            daily_rate=result.daily_rate,
            hourly_rate=result.hourly_rate,
            working_days=result.working_days,
            days_worked=snapshot.payable_days,
            days_absent=snapshot.unpaid_absences,
            overtime_hours=snapshot.overtime_hours,
            night_diff_hours=snapshot.night_diff_hours,
            tardiness_mins=snapshot.tardiness_mins,
            undertime_mins=snapshot.undertime_mins,
            basic_pay=result.basic_pay,
            gross_pay=result.totals.gross_pay,
            total_earnings=result.totals.total_earnings,
            total_deductions=result.totals.total_deductions,
            net_pay=result.totals.net_pay,
            sss_employee=statutory.sss_employee,
            sss_employer=statutory.sss_employer,
            philhealth_employee=statutory.philhealth_employee,
            philhealth_employer=statutory.philhealth_employer,
            pagibig_employee=statutory.pagibig_employee,
            pagibig_employer=statutory.pagibig_employer,
            withholding_tax=statutory.withholding_tax,
            inputs_fingerprint=result.inputs_fingerprint,
            calculation_version=result.calculation_version,
            earnings=[
                PayslipEarning(
                    line_number=number,
                    code=line.code,
                    description=line.description,
                    amount=line.amount,
                    hours=line.hours,
                    days=line.days,
                    rate=line.rate,
                    is_taxable=line.is_taxable,
                    is_adjustment=line.is_adjustment,
                    created_by_id=line.created_by_id,
                )
                for number, line in enumerate(result.earning_lines, start=1)
            ],
            deductions=[
                PayslipDeduction(
                    line_number=number,
                    code=line.code,
                    description=line.description,
                    amount=line.amount,
                    employer_share=line.employer_share,
                    reference_type=line.reference_type,
                    reference_id=line.reference_id,
                    is_pre_tax=line.is_pre_tax,
                    is_adjustment=line.is_adjustment,
                    created_by_id=line.created_by_id,
                )
                for number, line in enumerate(result.deduction_lines, start=1)
            ],
        )

    @staticmethod
    def _employee_trace(result: CalculationResult) -> EmployeeCalculationTrace:
        return EmployeeCalculationTrace(
            employee_id=result.employee_id,
            employee_number=result.employee_number,
            employee_name=result.employee_name,
            calculation_id=result.calculation_id,
            inputs_fingerprint=result.inputs_fingerprint,
            attendance=result.attendance.to_trace(),
            rates={
                "base_salary": result.base_salary,
                "daily_rate": result.daily_rate,
                "hourly_rate": result.hourly_rate,
            },
            earnings=LineItemBuilder.sum_by_code(
                line for line in result.lines if line.kind is LineKind.EARNING
            ),
            deductions=LineItemBuilder.sum_by_code(
                line for line in result.lines if line.kind is LineKind.DEDUCTION
            ),
            statutory_applied=result.applied,
            gross_pay=result.totals.gross_pay,
            total_deductions=result.totals.total_deductions,
            net_pay=result.totals.net_pay,
            warnings=result.warnings,
        )
