"""Step 2 diagnostics for a payroll run."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.calculators.attendance import dates_in_period, day_name, parse_rest_days
from payroll_backoffice.calculators.timing import DeductionKind, TimingResolver
from payroll_backoffice.models import (
    DailyTimeRecord,
    Employee,
    EmployeeSalary,
    Holiday,
    LeaveRequest,
    OvertimeRequest,
    PayPeriod,
    PayrollRun,
    StatutoryContribution,
)
from payroll_backoffice.money import ZERO, round_currency, to_decimal
from payroll_backoffice.services.state_machine import PeriodStatus, RequestStatus, RunStatus
from payroll_backoffice.services.step_notes import (
    EmployeeAttendanceSummary,
    RunScope,
    ValidationIssue,
    ValidationTrace,
)

logger = logging.getLogger(__name__)

OPEN_PERIOD_STATUSES = {PeriodStatus.OPEN.value, PeriodStatus.PROCESSING.value}
UNRESOLVED_REQUEST_STATUSES = [RequestStatus.PENDING.value, RequestStatus.SUPERVISOR_APPROVED.value]

CONTRIBUTION_LABELS = {
    DeductionKind.SSS: "SSS",
    DeductionKind.PHILHEALTH: "PhilHealth",
    DeductionKind.PAGIBIG: "Pag-IBIG",
    DeductionKind.WITHHOLDING_TAX: "withholding tax",
}


async def load_scoped_employees(
    session: AsyncSession,
    company_id: UUID,
    pay_schedule_id: UUID,
    scope: RunScope,
) -> list[Employee]:
    """Active employees on the pay schedule, narrowed by every non-empty scope filter."""
    query = select(Employee).where(
        Employee.company_id == company_id,
        Employee.is_active.is_(True),
        Employee.pay_schedule_id == pay_schedule_id,
    )
    if scope.department_ids:
        query = query.where(Employee.department_id.in_([UUID(v) for v in scope.department_ids]))
    if scope.branch_ids:
        query = query.where(Employee.branch_id.in_([UUID(v) for v in scope.branch_ids]))
    if scope.employee_ids:
        query = query.where(Employee.employee_id.in_([UUID(v) for v in scope.employee_ids]))
    result = await session.execute(query.order_by(Employee.employee_number))
    return list(result.scalars().all())


class PayrollValidationService:
    """Builds the validation trace for step 2.

    Errors block calculation:
    - pay period locked or closed
    - another active REGULAR run on the same period
    - no eligible employees in scope
    - employee without an active salary
    - time records still awaiting approval

    Everything else is a warning and only informs the reviewer.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def validate(self, run: PayrollRun, period: PayPeriod) -> ValidationTrace:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if period.status not in OPEN_PERIOD_STATUSES:
            errors.append(ValidationIssue(code="PERIOD_NOT_OPEN", message="Pay period is locked or not open."))

        concurrent = await self._find_concurrent_run(run)
        if concurrent is not None:
            errors.append(
                ValidationIssue(
                    code="CONCURRENT_RUN",
                    message=(
                        "Concurrent payroll run detected for this period: "
                        f"{concurrent.run_number} ({concurrent.status})."
                    ),
                )
            )

        employees = await load_scoped_employees(
            self.session,
            run.company_id,
            period.pay_schedule_id,
            RunScope(**run.scope),
        )
        if not employees:
            errors.append(
                ValidationIssue(
                    code="NO_ELIGIBLE_EMPLOYEES",
                    message="No eligible employees found for this payroll scope.",
                )
            )

        ids = [employee.employee_id for employee in employees]
        salaried = await self._salaried_employee_ids(ids)
        for employee in employees:
            if employee.employee_id not in salaried:
                errors.append(
                    ValidationIssue(
                        code="MISSING_SALARY",
                        message=f"Employee {employee.employee_number} has no active salary record.",
                        employee_id=employee.employee_id,
                        employee_number=employee.employee_number,
                    )
                )
            if employee.rest_days is None:
                warnings.append(
                    ValidationIssue(
                        code="NO_WORK_SCHEDULE",
                        message=f"Employee {employee.employee_number} has no assigned work schedule.",
                        employee_id=employee.employee_id,
                        employee_number=employee.employee_number,
                    )
                )

        unapproved = await self._count_unapproved_dtr(ids, period)
        if unapproved > 0:
            noun = "entry is" if unapproved == 1 else "entries are"
            errors.append(
                ValidationIssue(
                    code="UNAPPROVED_DTR",
                    message=(
                        f"{unapproved} DTR {noun} pending. "
                        "Approve all DTR records before payroll validation."
                    ),
                )
            )

        summaries, without_approval = await self._summarize_attendance(employees, period)
        for summary in summaries:
            if summary.missing_days > 0:
                warnings.append(
                    ValidationIssue(
                        code="MISSING_DTR",
                        message=(
                            f"Employee {summary.employee_number} has "
                            f"{summary.missing_days} missing DTR day(s)."
                        ),
                        employee_id=summary.employee_id,
                        employee_number=summary.employee_number,
                    )
                )
            if summary.incomplete_days > 0:
                warnings.append(
                    ValidationIssue(
                        code="INCOMPLETE_DTR",
                        message=(
                            f"Employee {summary.employee_number} has "
                            f"{summary.incomplete_days} incomplete DTR day(s)."
                        ),
                        employee_id=summary.employee_id,
                        employee_number=summary.employee_number,
                    )
                )

        unresolved_leaves = await self._count_unresolved(LeaveRequest, ids, period)
        if unresolved_leaves:
            warnings.append(
                ValidationIssue(
                    code="UNRESOLVED_LEAVE",
                    message=f"{unresolved_leaves} unresolved leave request(s) overlap the payroll period.",
                )
            )
        pending_overtime = await self._count_unresolved(OvertimeRequest, ids, period)
        if pending_overtime:
            warnings.append(
                ValidationIssue(
                    code="PENDING_OVERTIME",
                    message=f"{pending_overtime} pending overtime request(s) overlap the payroll period.",
                )
            )
        if without_approval:
            noun = "entry" if without_approval == 1 else "entries"
            warnings.append(
                ValidationIssue(
                    code="OVERTIME_WITHOUT_APPROVAL",
                    message=f"{without_approval} DTR overtime {noun} have no approved overtime request.",
                )
            )

        warnings.extend(await self._contribution_warnings(ids, period))

        trace = ValidationTrace(
            validated_at=datetime.now(timezone.utc),
            error_count=len(errors),
            warning_count=len(warnings),
            errors=errors,
            warnings=warnings,
            employees=summaries,
        )
        logger.info(
            "Validated %s: %d error(s), %d warning(s), %d employee(s)",
            run.run_number,
            trace.error_count,
            trace.warning_count,
            len(summaries),
        )
        return trace

    async def _find_concurrent_run(self, run: PayrollRun) -> PayrollRun | None:
        if run.run_type != "REGULAR":
            return None
        result = await self.session.execute(
            select(PayrollRun)
            .where(
                PayrollRun.company_id == run.company_id,
                PayrollRun.pay_period_id == run.pay_period_id,
                PayrollRun.payroll_run_id != run.payroll_run_id,
                PayrollRun.run_type == "REGULAR",
                PayrollRun.status != RunStatus.PAID.value,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _salaried_employee_ids(self, employee_ids: list[UUID]) -> set[UUID]:
        if not employee_ids:
            return set()
        result = await self.session.execute(
            select(EmployeeSalary.employee_id).where(
                EmployeeSalary.employee_id.in_(employee_ids),
                EmployeeSalary.is_active.is_(True),
            )
        )
        return set(result.scalars().all())

    async def _count_unapproved_dtr(self, employee_ids: list[UUID], period: PayPeriod) -> int:
        if not employee_ids:
            return 0
        count = await self.session.scalar(
            select(func.count())
            .select_from(DailyTimeRecord)
            .where(
                DailyTimeRecord.employee_id.in_(employee_ids),
                DailyTimeRecord.attendance_date >= period.cutoff_start,
                DailyTimeRecord.attendance_date <= period.cutoff_end,
                DailyTimeRecord.approval_status != "APPROVED",
            )
        )
        return count or 0

    async def _count_unresolved(self, model, employee_ids: list[UUID], period: PayPeriod) -> int:
        if not employee_ids:
            return 0
        if model is LeaveRequest:
            overlaps = (
                LeaveRequest.start_date <= period.cutoff_end,
                LeaveRequest.end_date >= period.cutoff_start,
            )
        else:
            overlaps = (
                OvertimeRequest.overtime_date >= period.cutoff_start,
                OvertimeRequest.overtime_date <= period.cutoff_end,
            )
        count = await self.session.scalar(
            select(func.count())
            .select_from(model)
            .where(
                model.employee_id.in_(employee_ids),
                model.status.in_(UNRESOLVED_REQUEST_STATUSES),
                *overlaps,
            )
        )
        return count or 0

    async def _summarize_attendance(
        self,
        employees: Sequence[Employee],
        period: PayPeriod,
    ) -> tuple[list[EmployeeAttendanceSummary], int]:
        """Per-employee summary and the count of DTR overtime without an approved request."""
        if not employees:
            return [], 0
        ids = [employee.employee_id for employee in employees]
        start, end = period.cutoff_start, period.cutoff_end

        holidays = await self.session.execute(
            select(Holiday.holiday_date).where(
                or_(Holiday.company_id == period.company_id, Holiday.company_id.is_(None)),
                Holiday.holiday_date >= start,
                Holiday.holiday_date <= end,
            )
        )
        holiday_dates = set(holidays.scalars().all())

        dtr_rows = await self.session.execute(
            select(DailyTimeRecord).where(
                DailyTimeRecord.employee_id.in_(ids),
                DailyTimeRecord.attendance_date >= start,
                DailyTimeRecord.attendance_date <= end,
                DailyTimeRecord.approval_status == "APPROVED",
            )
        )
        dtrs: dict[UUID, dict] = defaultdict(dict)
        for row in dtr_rows.scalars().all():
            dtrs[row.employee_id][row.attendance_date] = row

        leave_rows = await self.session.execute(
            select(LeaveRequest.employee_id, LeaveRequest.start_date, LeaveRequest.end_date).where(
                LeaveRequest.employee_id.in_(ids),
                LeaveRequest.status == RequestStatus.APPROVED.value,
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        )
        leaves: dict[UUID, list[tuple]] = defaultdict(list)
        for employee_id, leave_start, leave_end in leave_rows.all():
            leaves[employee_id].append((leave_start, leave_end))

        overtime_rows = await self.session.execute(
            select(OvertimeRequest).where(
                OvertimeRequest.employee_id.in_(ids),
                OvertimeRequest.status == RequestStatus.APPROVED.value,
                OvertimeRequest.overtime_date >= start,
                OvertimeRequest.overtime_date <= end,
            )
        )
        approved_hours: dict[tuple, Decimal] = defaultdict(lambda: ZERO)
        converted_hours: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for row in overtime_rows.scalars().all():
            approved_hours[(row.employee_id, row.overtime_date)] += to_decimal(row.hours)
            if row.cto_converted:
                converted_hours[row.employee_id] += to_decimal(row.hours)

        period_dates = dates_in_period(start, end)
        summaries: list[EmployeeAttendanceSummary] = []
        without_approval = 0
        for employee in employees:
            rest = parse_rest_days(employee.rest_days)
            by_date = dtrs.get(employee.employee_id, {})
            ranges = leaves.get(employee.employee_id, [])
            expected = missing = incomplete = 0
            present = absent = overtime = ZERO
            tardiness = undertime = 0

            for day in period_dates:
                is_rest_day = day_name(day) in rest
                if not is_rest_day:
                    expected += 1
                dtr = by_date.get(day)
                on_leave = any(lo <= day <= hi for lo, hi in ranges)
                if dtr is None:
                    if not (day in holiday_dates or is_rest_day or on_leave):
                        missing += 1
                    continue
                if dtr.is_incomplete:
                    incomplete += 1
                if dtr.status == "ABSENT":
                    absent += 1
                elif dtr.status in ("PRESENT", "HOLIDAY"):
                    present += 1
                tardiness += dtr.tardiness_mins
                undertime += dtr.undertime_mins
                hours = approved_hours.get((employee.employee_id, day), ZERO)
                overtime += hours
                if to_decimal(dtr.overtime_hours) > 0 and hours <= 0:
                    without_approval += 1

            summaries.append(
                EmployeeAttendanceSummary(
                    employee_id=employee.employee_id,
                    employee_number=employee.employee_number,
                    employee_name=f"{employee.last_name}, {employee.first_name}",
                    expected_days=expected,
                    present_days=present,
                    absent_days=absent,
                    missing_days=missing,
                    incomplete_days=incomplete,
                    tardiness_mins=tardiness,
                    undertime_mins=undertime,
                    approved_overtime_hours=round_currency(overtime),
                    cto_conversion_hours=round_currency(converted_hours.get(employee.employee_id, ZERO)),
                )
            )
        return summaries, without_approval

    async def _contribution_warnings(
        self, employee_ids: list[UUID], period: PayPeriod
    ) -> list[ValidationIssue]:
        """One warning per deduction kind applied this period but missing for some employees."""
        if not employee_ids:
            return []
        schedule = period.pay_schedule
        timing = TimingResolver(schedule.pay_frequency, period.period_half, schedule.statutory_schedule)
        result = await self.session.execute(
            select(StatutoryContribution.kind, StatutoryContribution.employee_id)
            .where(
                StatutoryContribution.employee_id.in_(employee_ids),
                StatutoryContribution.effective_from <= period.cutoff_end,
            )
            .distinct()
        )
        covered: dict[str, set[UUID]] = defaultdict(set)
        for kind, employee_id in result.all():
            covered[kind].add(employee_id)

        warnings: list[ValidationIssue] = []
        for kind in DeductionKind:
            if not timing.applies(kind):
                continue
            missing = len(set(employee_ids) - covered.get(kind.value, set()))
            if missing:
                label = CONTRIBUTION_LABELS[kind]
                warnings.append(
                    ValidationIssue(
                        code=f"MISSING_{kind.value}",
                        message=(
                            f"{missing} employee(s) have no {label} amount effective for this "
                            f"payroll cutoff; {label} deductions will be zero."
                        ),
                    )
                )
        return warnings
