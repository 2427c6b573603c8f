"""Payroll calculation engine - per-employee payslip computation."""

from __future__ import annotations

import hashlib
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_backoffice.calculators.attendance import (
    attendance_rule_deduction,
    calculate_attendance_snapshot,
    dates_in_period,
)
from payroll_backoffice.calculators.line_builder import LineItemBuilder, PayslipTotals
from payroll_backoffice.calculators.timing import DeductionKind, TimingResolver, is_second_half
from payroll_backoffice.calculators.types import (
    ApprovedLeave,
    AttendanceDay,
    AttendanceSnapshot,
    ContributionInput,
    DeductionRule,
    EmployeeInputs,
    HolidayInfo,
    LineCandidate,
    LineKind,
    PeriodInputs,
    RecurringDeductionInput,
    RecurringEarningInput,
    RunType,
    SalaryInput,
)
from payroll_backoffice.config import Settings, get_settings
from payroll_backoffice.models import (
    AttendanceDeductionRule,
    DailyTimeRecord,
    Employee,
    EmployeeSalary,
    Holiday,
    LeaveRequest,
    LeaveType,
    OvertimeRate,
    OvertimeRequest,
    PayPeriod,
    PayrollRun,
    Payslip,
    RecurringDeduction,
    RecurringEarning,
    StatutoryContribution,
)
from payroll_backoffice.money import ZERO, round_currency, round_rate, to_decimal

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = Decimal("365")

# (deduction kind, line code, description)
CONTRIBUTION_LINES = (
    (DeductionKind.SSS, "SSS", "SSS Contribution"),
    (DeductionKind.PHILHEALTH, "PHILHEALTH", "PhilHealth Contribution"),
    (DeductionKind.PAGIBIG, "PAGIBIG", "Pag-IBIG Contribution"),
)

BONUS_LINES = {
    RunType.THIRTEENTH_MONTH: ("THIRTEENTH_MONTH", "13th Month Pay"),
    RunType.MID_YEAR_BONUS: ("MID_YEAR_BONUS", "Mid-Year Bonus"),
}


@dataclass(frozen=True)
class StatutoryAmounts:
    sss_employee: Decimal = ZERO
    sss_employer: Decimal = ZERO
    philhealth_employee: Decimal = ZERO
    philhealth_employer: Decimal = ZERO
    pagibig_employee: Decimal = ZERO
    pagibig_employer: Decimal = ZERO
    withholding_tax: Decimal = ZERO

    @property
    def employer_total(self) -> Decimal:
        return round_currency(self.sss_employer + self.philhealth_employer + self.pagibig_employer)


@dataclass
class CalculationResult:
    """Result of calculating pay for one employee."""

    employee_id: UUID
    employee_number: str
    employee_name: str
    calculation_id: UUID
    base_salary: Decimal
    daily_rate: Decimal
    hourly_rate: Decimal
    working_days: Decimal
    basic_pay: Decimal
    totals: PayslipTotals
    statutory: StatutoryAmounts
    attendance: AttendanceSnapshot
    lines: list[LineCandidate]
    inputs_fingerprint: str
    calculation_version: str
    applied: dict[str, bool] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    @property
    def earning_lines(self) -> list[LineCandidate]:
        return [line for line in self.lines if line.kind is LineKind.EARNING]

    @property
    def deduction_lines(self) -> list[LineCandidate]:
        return [line for line in self.lines if line.kind is LineKind.DEDUCTION]


@dataclass
class RunCalculationResult:
    """Result of calculating every in-scope employee of a run."""

    payroll_run_id: UUID
    results: dict[UUID, CalculationResult]  # employee_id -> result
    skipped: dict[UUID, str] = field(default_factory=dict)  # employee_id -> reason
    total_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net: Decimal = ZERO
    total_employer_contributions: Decimal = ZERO
    error_count: int = 0


class PayrollEngine:
    """Per-employee payroll calculation.

    Calculation order per employee:
    1) Daily and hourly rates from salary configuration
    2) Attendance snapshot over the cutoff (skipped for bonus-only runs)
    3) Basic pay, recurring earnings, carried adjustments, overtime,
       night differential and holiday premium
    4) Tardiness and undertime per attendance rules
    5) Statutory contributions and withholding tax gated by the timing resolver
    6) Recurring deductions, then carried deduction adjustments
    7) Totals with net clamped at zero
    """

    def __init__(self, session: AsyncSession | None = None, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    # === Pure calculation ===

    def calculate_employee(self, inputs: EmployeeInputs, period: PeriodInputs) -> CalculationResult:
        warnings: list[str] = []
        salary = inputs.salary
        base_salary = round_currency(salary.base_salary)
        daily_rate, hourly_rate = self.resolve_rates(salary)
        bonus_only = period.run_type.is_bonus_only
        timing = TimingResolver(period.pay_frequency, period.period_half, period.statutory_schedule)
        second_half = is_second_half(period.pay_frequency, period.period_half)

        if bonus_only:
            snapshot = AttendanceSnapshot()
            if period.run_type is RunType.THIRTEENTH_MONTH:
                basic_pay = self.thirteenth_month_pay(inputs, period)
            else:
                basic_pay = self.mid_year_bonus_pay(base_salary)
        else:
            snapshot = calculate_attendance_snapshot(
                period_dates=dates_in_period(period.cutoff_start, period.cutoff_end),
                rest_days=inputs.rest_days,
                daily_rate=daily_rate,
                hourly_rate=hourly_rate,
                holidays=period.holidays,
                attendance=inputs.attendance,
                approved_leaves=inputs.approved_leaves,
                approved_overtime=inputs.approved_overtime,
                overtime_rates=period.overtime_rates,
                is_overtime_eligible=inputs.is_overtime_eligible,
                is_night_diff_eligible=inputs.is_night_diff_eligible,
            )
            basic_pay = self.regular_basic_pay(salary, base_salary, daily_rate, snapshot, period)

        lines: list[LineCandidate] = []

        # Earnings
        if bonus_only:
            code, description = BONUS_LINES[period.run_type]
            lines.append(LineItemBuilder.create_earning_line(code, description, basic_pay))
        else:
            lines.append(
                LineItemBuilder.create_earning_line(
                    "BASIC_PAY",
                    "Basic Pay",
                    basic_pay,
                    days=snapshot.payable_days,
                    rate=daily_rate,
                )
            )
            lines.extend(self._recurring_earning_lines(inputs.recurring_earnings, snapshot, second_half))

        lines.extend(line for line in inputs.carried_adjustments if line.kind is LineKind.EARNING)

        if not bonus_only:
            overtime_pay = round_currency(snapshot.overtime_pay)
            if overtime_pay > 0:
                lines.append(
                    LineItemBuilder.create_earning_line(
                        "OVERTIME",
                        "Overtime Pay",
                        overtime_pay,
                        hours=snapshot.overtime_hours,
                        rate=hourly_rate,
                    )
                )
            night_diff_pay = round_currency(
                snapshot.night_diff_hours * hourly_rate * self.settings.night_diff_rate
            )
            if night_diff_pay > 0:
                lines.append(
                    LineItemBuilder.create_earning_line(
                        "NIGHT_DIFF",
                        "Night Differential",
                        night_diff_pay,
                        hours=snapshot.night_diff_hours,
                        rate=hourly_rate,
                    )
                )
            if snapshot.holiday_premium_pay > 0:
                lines.append(
                    LineItemBuilder.create_earning_line(
                        "HOLIDAY_PAY", "Holiday Premium", snapshot.holiday_premium_pay
                    )
                )

        gross_pay = LineItemBuilder.calculate_gross_from_lines(lines)

        # Deductions
        tardiness = undertime = ZERO
        if not bonus_only:
            tardiness = attendance_rule_deduction(
                snapshot.tardiness_mins,
                hourly_rate,
                daily_rate,
                period.attendance_rules.get("TARDINESS"),
            )
            undertime = attendance_rule_deduction(
                snapshot.undertime_mins,
                hourly_rate,
                daily_rate,
                period.attendance_rules.get("UNDERTIME"),
            )
            if tardiness > 0:
                lines.append(
                    LineItemBuilder.create_deduction_line(
                        "TARDINESS", "Tardiness Deduction", tardiness, reference_type="ATTENDANCE"
                    )
                )
            if undertime > 0:
                lines.append(
                    LineItemBuilder.create_deduction_line(
                        "UNDERTIME", "Undertime Deduction", undertime, reference_type="ATTENDANCE"
                    )
                )

        applied = {kind.value: (not bonus_only) and timing.applies(kind) for kind in DeductionKind}
        shares: dict[str, tuple[Decimal, Decimal]] = {}
        for kind, code, description in CONTRIBUTION_LINES:
            employee_share = employer_share = ZERO
            contribution = inputs.contributions.get(kind.value)
            if applied[kind.value] and contribution is not None:
                employee_share = round_currency(contribution.employee_share)
                employer_share = round_currency(contribution.employer_share)
            shares[kind.value] = (employee_share, employer_share)
            if employee_share > 0:
                lines.append(
                    LineItemBuilder.create_deduction_line(
                        code,
                        description,
                        employee_share,
                        employer_share=employer_share,
                        reference_type="GOVERNMENT",
                    )
                )

        contributions_total = sum((share[0] for share in shares.values()), ZERO)

        withholding_tax = ZERO
        tax = inputs.contributions.get(DeductionKind.WITHHOLDING_TAX.value)
        if applied[DeductionKind.WITHHOLDING_TAX.value] and tax is not None:
            withholding_tax = round_currency(tax.employee_share)
        if withholding_tax > 0:
            lines.append(
                LineItemBuilder.create_deduction_line(
                    "WTAX", "Withholding Tax", withholding_tax, reference_type="TAX"
                )
            )

        if not bonus_only:
            net_base = max(gross_pay - (tardiness + undertime + contributions_total), ZERO)
            lines.extend(
                self._recurring_deduction_lines(
                    inputs.recurring_deductions,
                    basic_pay=basic_pay,
                    gross_pay=gross_pay,
                    net_base=net_base,
                    period_half=period.period_half,
                    second_half=second_half,
                )
            )

        lines.extend(line for line in inputs.carried_adjustments if line.kind is LineKind.DEDUCTION)

        totals = LineItemBuilder.totals_for_lines(basic_pay, lines)
        if totals.net_clamped:
            warnings.append(
                f"Deductions exceed gross pay for {inputs.employee_number}; net pay clamped to 0.00"
            )

        statutory = StatutoryAmounts(
            sss_employee=shares["SSS"][0],
            sss_employer=shares["SSS"][1],
            philhealth_employee=shares["PHILHEALTH"][0],
            philhealth_employer=shares["PHILHEALTH"][1],
            pagibig_employee=shares["PAGIBIG"][0],
            pagibig_employer=shares["PAGIBIG"][1],
            withholding_tax=withholding_tax,
        )

        if bonus_only:
            working_days = ZERO
        elif period.working_days is not None:
            working_days = round_currency(period.working_days)
        else:
            working_days = Decimal(snapshot.working_days)

        errors = LineItemBuilder.validate_line_signs(lines)
        inputs_fingerprint = self._compute_inputs_fingerprint(
            inputs, period, daily_rate, hourly_rate, snapshot, lines
        )
        return CalculationResult(
            employee_id=inputs.employee_id,
            employee_number=inputs.employee_number,
            employee_name=inputs.employee_name,
            calculation_id=self._generate_calculation_id(
                period.run_number, inputs.employee_id, period.cutoff_end, inputs_fingerprint
            ),
            base_salary=base_salary,
            daily_rate=round_rate(daily_rate),
            hourly_rate=round_rate(hourly_rate),
            working_days=working_days,
            basic_pay=basic_pay,
            totals=totals,
            statutory=statutory,
            attendance=snapshot,
            lines=lines,
            inputs_fingerprint=inputs_fingerprint,
            calculation_version=self.settings.calculation_version,
            applied=applied,
            warnings=warnings,
            errors=errors,
        )

    @staticmethod
    def resolve_rates(salary: SalaryInput) -> tuple[Decimal, Decimal]:
        """Daily and hourly rate, derived from the base salary when not set."""
        base = to_decimal(salary.base_salary)
        divisor = Decimal(salary.monthly_divisor or 365)
        hours_per_day = to_decimal(salary.hours_per_day) or Decimal("8")
        daily = to_decimal(salary.daily_rate) if salary.daily_rate else base * 12 / divisor
        hourly = to_decimal(salary.hourly_rate) if salary.hourly_rate else daily / hours_per_day
        return daily, hourly

    @staticmethod
    def regular_basic_pay(
        salary: SalaryInput,
        base_salary: Decimal,
        daily_rate: Decimal,
        snapshot: AttendanceSnapshot,
        period: PeriodInputs,
    ) -> Decimal:
        if salary.rate_type == "MONTHLY":
            period_base = base_salary * 12 / Decimal(max(period.periods_per_year, 1))
            return round_currency(max(period_base - snapshot.unpaid_absences * daily_rate, ZERO))
        return round_currency(snapshot.payable_days * daily_rate)

    @staticmethod
    def mid_year_bonus_pay(base_salary: Decimal) -> Decimal:
        return round_currency(base_salary / 2)

    @staticmethod
    def thirteenth_month_pay(inputs: EmployeeInputs, period: PeriodInputs) -> Decimal:
        """YTD regular basic pay / 12, or base salary prorated over days covered."""
        if inputs.ytd_regular_basic > 0:
            return round_currency(inputs.ytd_regular_basic / 12)
        year_start = date(period.cutoff_end.year, 1, 1)
        coverage_start = max(inputs.hire_date, year_start)
        coverage_end = period.cutoff_end
        if inputs.separation_date is not None and inputs.separation_date < coverage_end:
            coverage_end = inputs.separation_date
        covered_days = max((coverage_end - coverage_start).days + 1, 0)
        return round_currency(to_decimal(inputs.salary.base_salary) * covered_days / DAYS_PER_YEAR)

    def _recurring_earning_lines(
        self,
        earnings: Iterable[RecurringEarningInput],
        snapshot: AttendanceSnapshot,
        second_half: bool,
    ) -> list[LineCandidate]:
        lines: list[LineCandidate] = []
        for earning in earnings:
            if earning.frequency == "MONTHLY" and not second_half:
                continue
            amount = to_decimal(earning.amount)
            if earning.proration_rule == "PRORATED_DAYS" and snapshot.working_days > 0:
                amount = amount * snapshot.payable_days / Decimal(snapshot.working_days)
            amount = round_currency(max(amount, ZERO))
            if amount <= 0:
                continue
            lines.append(
                LineItemBuilder.create_earning_line(
                    earning.code, earning.description, amount, is_taxable=earning.is_taxable
                )
            )
        return lines

    def _recurring_deduction_lines(
        self,
        deductions: Iterable[RecurringDeductionInput],
        *,
        basic_pay: Decimal,
        gross_pay: Decimal,
        net_base: Decimal,
        period_half: str,
        second_half: bool,
    ) -> list[LineCandidate]:
        lines: list[LineCandidate] = []
        for deduction in deductions:
            if deduction.period_applicability == "FIRST_HALF" and period_half != "FIRST":
                continue
            if deduction.period_applicability == "SECOND_HALF" and period_half != "SECOND":
                continue
            if deduction.frequency == "MONTHLY" and not second_half:
                continue

            amount = to_decimal(deduction.amount)
            if deduction.is_percentage and deduction.percentage_rate:
                rate = to_decimal(deduction.percentage_rate)
                if deduction.percentage_base == "BASIC":
                    amount = basic_pay * rate
                elif deduction.percentage_base == "NET":
                    amount = net_base * rate
                else:
                    amount = gross_pay * rate
            if deduction.max_deduction_limit is not None:
                amount = min(amount, to_decimal(deduction.max_deduction_limit))
            amount = round_currency(max(amount, ZERO))
            if amount <= 0:
                continue
            lines.append(
                LineItemBuilder.create_deduction_line(
                    deduction.code,
                    deduction.description,
                    amount,
                    reference_type="RECURRING",
                    reference_id=deduction.recurring_deduction_id,
                    is_pre_tax=deduction.is_pre_tax,
                )
            )
        return lines

    def _generate_calculation_id(
        self,
        run_number: str,
        employee_id: UUID,
        as_of_date: date,
        inputs_fingerprint: str,
    ) -> UUID:
        """Generate deterministic calculation ID."""
        data = {
            "run_number": run_number,
            "employee_id": str(employee_id),
            "as_of_date": str(as_of_date),
            "calculation_version": self.settings.calculation_version,
            "inputs_fingerprint": inputs_fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])

    def _compute_inputs_fingerprint(
        self,
        inputs: EmployeeInputs,
        period: PeriodInputs,
        daily_rate: Decimal,
        hourly_rate: Decimal,
        snapshot: AttendanceSnapshot,
        lines: Sequence[LineCandidate],
    ) -> str:
        """Fingerprint of every input that shaped this payslip."""
        data: dict[str, Any] = {
            "employee_id": str(inputs.employee_id),
            "run_type": period.run_type.value,
            "cutoff": [str(period.cutoff_start), str(period.cutoff_end)],
            "salary": {
                "base": str(round_currency(inputs.salary.base_salary)),
                "rate_type": inputs.salary.rate_type,
                "daily": str(round_rate(daily_rate)),
                "hourly": str(round_rate(hourly_rate)),
            },
            "attendance": snapshot.to_trace(),
            "lines": [line.to_canonical_dict() for line in lines],
        }
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()

    # === Run orchestration ===

    async def calculate_run(
        self,
        run: PayrollRun,
        period: PayPeriod,
        employees: Sequence[Employee],
        carried_adjustments: dict[UUID, list[LineCandidate]] | None = None,
    ) -> RunCalculationResult:
        """Load inputs for every employee and calculate each one."""
        period_inputs = await self.load_period_inputs(run, period)
        employee_inputs, skipped = await self.load_employee_inputs(
            run, period, employees, carried_adjustments or {}
        )

        outcome = RunCalculationResult(payroll_run_id=run.payroll_run_id, results={}, skipped=skipped)
        for employee_id, inputs in employee_inputs.items():
            result = self.calculate_employee(inputs, period_inputs)
            outcome.results[employee_id] = result
            if not result.success:
                outcome.error_count += 1
                logger.warning(
                    "Calculation errors for %s in %s: %s",
                    inputs.employee_number,
                    run.run_number,
                    "; ".join(result.errors),
                )
                continue
            outcome.total_gross += result.totals.gross_pay
            outcome.total_deductions += result.totals.total_deductions
            outcome.total_net += result.totals.net_pay
            outcome.total_employer_contributions += result.statutory.employer_total

        outcome.total_gross = round_currency(outcome.total_gross)
        outcome.total_deductions = round_currency(outcome.total_deductions)
        outcome.total_net = round_currency(outcome.total_net)
        outcome.total_employer_contributions = round_currency(outcome.total_employer_contributions)
        return outcome

    async def load_period_inputs(self, run: PayrollRun, period: PayPeriod) -> PeriodInputs:
        schedule = period.pay_schedule
        return PeriodInputs(
            run_type=RunType(run.run_type),
            run_number=run.run_number,
            cutoff_start=period.cutoff_start,
            cutoff_end=period.cutoff_end,
            pay_frequency=schedule.pay_frequency,
            period_half=period.period_half,
            periods_per_year=schedule.periods_per_year,
            working_days=period.working_days,
            statutory_schedule=schedule.statutory_schedule,
            holidays=await self._get_holidays(run.company_id, period.cutoff_start, period.cutoff_end),
            overtime_rates=await self._get_overtime_rates(run.company_id),
            attendance_rules=await self._get_attendance_rules(run.company_id),
        )

    async def load_employee_inputs(
        self,
        run: PayrollRun,
        period: PayPeriod,
        employees: Sequence[Employee],
        carried_adjustments: dict[UUID, list[LineCandidate]],
    ) -> tuple[dict[UUID, EmployeeInputs], dict[UUID, str]]:
        """Returns inputs per employee and the employees skipped with a reason."""
        ids = [employee.employee_id for employee in employees]
        start, end = period.cutoff_start, period.cutoff_end
        salaries = await self._get_salaries(ids)
        attendance = await self._get_attendance(ids, start, end)
        leaves = await self._get_approved_leaves(ids, start, end)
        overtime = await self._get_payable_overtime(ids, start, end)
        contributions = await self._get_contributions(ids, end)
        earnings = await self._get_recurring_earnings(ids)
        deductions = await self._get_recurring_deductions(ids)
        ytd_basic: dict[UUID, Decimal] = {}
        if run.run_type == RunType.THIRTEENTH_MONTH.value:
            ytd_basic = await self._get_ytd_regular_basic(run.company_id, ids, end.year)

        inputs: dict[UUID, EmployeeInputs] = {}
        skipped: dict[UUID, str] = {}
        for employee in employees:
            salary = salaries.get(employee.employee_id)
            if salary is None:
                skipped[employee.employee_id] = "No active salary configuration"
                continue
            inputs[employee.employee_id] = EmployeeInputs(
                employee_id=employee.employee_id,
                employee_number=employee.employee_number,
                employee_name=f"{employee.last_name}, {employee.first_name}",
                salary=SalaryInput(
                    base_salary=salary.base_salary,
                    rate_type=salary.rate_type,
                    daily_rate=salary.daily_rate,
                    hourly_rate=salary.hourly_rate,
                    hours_per_day=salary.hours_per_day,
                    monthly_divisor=salary.monthly_divisor,
                ),
                hire_date=employee.hire_date,
                separation_date=employee.separation_date,
                is_overtime_eligible=employee.is_overtime_eligible,
                is_night_diff_eligible=employee.is_night_diff_eligible,
                rest_days=employee.rest_days,
                attendance=attendance.get(employee.employee_id, []),
                approved_leaves=leaves.get(employee.employee_id, []),
                approved_overtime=overtime.get(employee.employee_id, {}),
                contributions=contributions.get(employee.employee_id, {}),
                recurring_earnings=earnings.get(employee.employee_id, []),
                recurring_deductions=deductions.get(employee.employee_id, []),
                carried_adjustments=list(carried_adjustments.get(employee.employee_id, [])),
                ytd_regular_basic=ytd_basic.get(employee.employee_id, ZERO),
            )
        return inputs, skipped

    # === Data Loading Methods ===

    def _require_session(self) -> AsyncSession:
        if self.session is None:
            raise RuntimeError("PayrollEngine needs a session to load inputs")
        return self.session

    async def _get_salaries(self, employee_ids: list[UUID]) -> dict[UUID, EmployeeSalary]:
        result = await self._require_session().execute(
            select(EmployeeSalary).where(
                EmployeeSalary.employee_id.in_(employee_ids),
                EmployeeSalary.is_active.is_(True),
            )
        )
        return {row.employee_id: row for row in result.scalars().all()}

    async def _get_attendance(
        self, employee_ids: list[UUID], start: date, end: date
    ) -> dict[UUID, list[AttendanceDay]]:
        result = await self._require_session().execute(
            select(DailyTimeRecord).where(
                DailyTimeRecord.employee_id.in_(employee_ids),
                DailyTimeRecord.attendance_date >= start,
                DailyTimeRecord.attendance_date <= end,
                DailyTimeRecord.approval_status == "APPROVED",
            )
        )
        grouped: dict[UUID, list[AttendanceDay]] = defaultdict(list)
        for row in result.scalars().all():
            grouped[row.employee_id].append(
                AttendanceDay(
                    attendance_date=row.attendance_date,
                    status=row.status,
                    hours_worked=row.hours_worked,
                    night_diff_hours=row.night_diff_hours,
                    tardiness_mins=row.tardiness_mins,
                    undertime_mins=row.undertime_mins,
                    is_half_day=row.is_half_day,
                )
            )
        return grouped

    async def _get_approved_leaves(
        self, employee_ids: list[UUID], start: date, end: date
    ) -> dict[UUID, list[ApprovedLeave]]:
        result = await self._require_session().execute(
            select(LeaveRequest, LeaveType.is_paid)
            .join(LeaveType, LeaveType.leave_type_id == LeaveRequest.leave_type_id)
            .where(
                LeaveRequest.employee_id.in_(employee_ids),
                LeaveRequest.status == "APPROVED",
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        )
        grouped: dict[UUID, list[ApprovedLeave]] = defaultdict(list)
        for request, is_paid in result.all():
            grouped[request.employee_id].append(
                ApprovedLeave(
                    start_date=request.start_date,
                    end_date=request.end_date,
                    is_half_day=request.is_half_day,
                    is_paid=is_paid,
                )
            )
        return grouped

    async def _get_payable_overtime(
        self, employee_ids: list[UUID], start: date, end: date
    ) -> dict[UUID, dict[date, Decimal]]:
        """Approved overtime hours that were not converted to CTO."""
        result = await self._require_session().execute(
            select(OvertimeRequest).where(
                OvertimeRequest.employee_id.in_(employee_ids),
                OvertimeRequest.status == "APPROVED",
                OvertimeRequest.cto_converted.is_(False),
                OvertimeRequest.overtime_date >= start,
                OvertimeRequest.overtime_date <= end,
            )
        )
        grouped: dict[UUID, dict[date, Decimal]] = defaultdict(dict)
        for row in result.scalars().all():
            by_date = grouped[row.employee_id]
            by_date[row.overtime_date] = by_date.get(row.overtime_date, ZERO) + to_decimal(row.hours)
        return grouped

    async def _get_contributions(
        self, employee_ids: list[UUID], as_of: date
    ) -> dict[UUID, dict[str, ContributionInput]]:
        """Latest effective contribution per kind as of the cutoff end."""
        result = await self._require_session().execute(
            select(StatutoryContribution)
            .where(
                StatutoryContribution.employee_id.in_(employee_ids),
                StatutoryContribution.effective_from <= as_of,
            )
            .order_by(StatutoryContribution.effective_from)
        )
        grouped: dict[UUID, dict[str, ContributionInput]] = defaultdict(dict)
        for row in result.scalars().all():
            # Ordered ascending, so later rows win
            grouped[row.employee_id][row.kind] = ContributionInput(
                employee_share=row.employee_share,
                employer_share=row.employer_share,
            )
        return grouped

    async def _get_recurring_earnings(
        self, employee_ids: list[UUID]
    ) -> dict[UUID, list[RecurringEarningInput]]:
        result = await self._require_session().execute(
            select(RecurringEarning)
            .where(
                RecurringEarning.employee_id.in_(employee_ids),
                RecurringEarning.is_active.is_(True),
            )
            .order_by(RecurringEarning.code)
        )
        grouped: dict[UUID, list[RecurringEarningInput]] = defaultdict(list)
        for row in result.scalars().all():
            grouped[row.employee_id].append(
                RecurringEarningInput(
                    code=row.code,
                    description=row.description,
                    amount=row.amount,
                    frequency=row.frequency,
                    proration_rule=row.proration_rule,
                    is_taxable=row.is_taxable,
                )
            )
        return grouped

    async def _get_recurring_deductions(
        self, employee_ids: list[UUID]
    ) -> dict[UUID, list[RecurringDeductionInput]]:
        result = await self._require_session().execute(
            select(RecurringDeduction)
            .where(
                RecurringDeduction.employee_id.in_(employee_ids),
                RecurringDeduction.is_active.is_(True),
            )
            .order_by(RecurringDeduction.code)
        )
        grouped: dict[UUID, list[RecurringDeductionInput]] = defaultdict(list)
        for row in result.scalars().all():
            grouped[row.employee_id].append(
                RecurringDeductionInput(
                    recurring_deduction_id=row.recurring_deduction_id,
                    code=row.code,
                    description=row.description,
                    amount=row.amount,
                    is_percentage=row.is_percentage,
                    percentage_rate=row.percentage_rate,
                    percentage_base=row.percentage_base,
                    frequency=row.frequency,
                    period_applicability=row.period_applicability,
                    is_pre_tax=row.is_pre_tax,
                    max_deduction_limit=row.max_deduction_limit,
                )
            )
        return grouped

    async def _get_holidays(
        self, company_id: UUID, start: date, end: date
    ) -> dict[date, HolidayInfo]:
        """Holidays in range; a company entry overrides a global one on the same date."""
        result = await self._require_session().execute(
            select(Holiday).where(
                or_(Holiday.company_id == company_id, Holiday.company_id.is_(None)),
                Holiday.holiday_date >= start,
                Holiday.holiday_date <= end,
            )
        )
        holidays: dict[date, HolidayInfo] = {}
        scoped: set[date] = set()
        for row in result.scalars().all():
            if row.holiday_date in scoped:
                continue
            holidays[row.holiday_date] = HolidayInfo(
                holiday_type=row.holiday_type,
                pay_multiplier=row.pay_multiplier,
                name=row.name,
            )
            if row.company_id is not None:
                scoped.add(row.holiday_date)
        return holidays

    async def _get_overtime_rates(self, company_id: UUID) -> dict[str, Decimal]:
        result = await self._require_session().execute(
            select(OvertimeRate).where(
                OvertimeRate.company_id == company_id,
                OvertimeRate.is_active.is_(True),
            )
        )
        return {row.overtime_type: row.multiplier for row in result.scalars().all()}

    async def _get_attendance_rules(self, company_id: UUID) -> dict[str, DeductionRule]:
        result = await self._require_session().execute(
            select(AttendanceDeductionRule).where(
                AttendanceDeductionRule.company_id == company_id,
                AttendanceDeductionRule.is_active.is_(True),
            )
        )
        return {
            row.rule_type: DeductionRule(row.calculation_basis, row.threshold_mins)
            for row in result.scalars().all()
        }

    async def _get_ytd_regular_basic(
        self, company_id: UUID, employee_ids: list[UUID], year: int
    ) -> dict[UUID, Decimal]:
        """Basic pay from paid REGULAR runs of the year."""
        result = await self._require_session().execute(
            select(Payslip.employee_id, func.sum(Payslip.basic_pay))
            .join(PayrollRun, PayrollRun.payroll_run_id == Payslip.payroll_run_id)
            .join(PayPeriod, PayPeriod.pay_period_id == PayrollRun.pay_period_id)
            .where(
                PayrollRun.company_id == company_id,
                PayrollRun.run_type == RunType.REGULAR.value,
                PayrollRun.status == "PAID",
                PayPeriod.year == year,
                Payslip.employee_id.in_(employee_ids),
            )
            .group_by(Payslip.employee_id)
        )
        return {employee_id: to_decimal(total) for employee_id, total in result.all()}
