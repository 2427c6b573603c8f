"""Tests for the per-employee payroll engine."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_backoffice.calculators.engine import PayrollEngine
from payroll_backoffice.calculators.line_builder import LineItemBuilder
from payroll_backoffice.calculators.types import (
    AttendanceDay,
    ContributionInput,
    DeductionRule,
    EmployeeInputs,
    PeriodInputs,
    RecurringDeductionInput,
    RecurringEarningInput,
    RunType,
    SalaryInput,
)
from payroll_backoffice.config import Settings

CUTOFF_START = date(2026, 3, 1)
CUTOFF_END = date(2026, 3, 15)
REST_DAYS = ["SATURDAY", "SUNDAY"]


@pytest.fixture
def engine() -> PayrollEngine:
    settings = Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        calculation_version="TEST-CALC-V1",
        night_diff_rate=Decimal("0.10"),
        default_overtime_multiplier=Decimal("1.25"),
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
    )
    return PayrollEngine(settings=settings)


def weekdays(skip: tuple[int, ...] = ()) -> list[AttendanceDay]:
    days = []
    day = CUTOFF_START
    while day <= CUTOFF_END:
        if day.weekday() < 5 and day.day not in skip:
            days.append(AttendanceDay(attendance_date=day, status="PRESENT", hours_worked=Decimal("8")))
        day += timedelta(days=1)
    return days


def contributions() -> dict[str, ContributionInput]:
    return {
        "SSS": ContributionInput(Decimal("675.00"), Decimal("1350.00")),
        "PHILHEALTH": ContributionInput(Decimal("375.00"), Decimal("375.00")),
        "PAGIBIG": ContributionInput(Decimal("100.00"), Decimal("100.00")),
        "WITHHOLDING_TAX": ContributionInput(Decimal("500.00")),
    }


def make_inputs(**overrides) -> EmployeeInputs:
    params = dict(
        employee_id=uuid4(),
        employee_number="EMP-002",
        employee_name="Santos, Maria",
        salary=SalaryInput(base_salary=Decimal("30000.00")),
        hire_date=date(2024, 1, 15),
        rest_days=list(REST_DAYS),
        attendance=weekdays(),
        contributions=contributions(),
    )
    params.update(overrides)
    return EmployeeInputs(**params)


def make_period(**overrides) -> PeriodInputs:
    params = dict(
        run_type=RunType.REGULAR,
        run_number="RUN-2026-00001",
        cutoff_start=CUTOFF_START,
        cutoff_end=CUTOFF_END,
        pay_frequency="SEMI_MONTHLY",
        period_half="FIRST",
        periods_per_year=24,
    )
    params.update(overrides)
    return PeriodInputs(**params)


def amounts(result, code: str) -> list[Decimal]:
    return [line.amount for line in result.lines if line.code == code]


class TestRates:
    def test_rates_derived_from_monthly_salary(self):
        daily, hourly = PayrollEngine.resolve_rates(SalaryInput(base_salary=Decimal("30000")))
        assert LineItemBuilder.round_rate(daily) == Decimal("986.3014")
        assert LineItemBuilder.round_rate(hourly) == Decimal("123.2877")

    def test_configured_rates_win(self):
        daily, hourly = PayrollEngine.resolve_rates(
            SalaryInput(base_salary=Decimal("30000"), daily_rate=Decimal("1200"), hours_per_day=Decimal("8"))
        )
        assert daily == Decimal("1200")
        assert hourly == Decimal("150")


class TestRegularCalculation:
    def test_full_attendance_first_half(self, engine):
        """Half the monthly salary; PhilHealth, Pag-IBIG and tax only in the first half."""
        result = engine.calculate_employee(make_inputs(), make_period())

        assert result.success
        assert result.basic_pay == Decimal("15000.00")
        assert amounts(result, "BASIC_PAY") == [Decimal("15000.00")]
        assert amounts(result, "SSS") == []
        assert amounts(result, "PHILHEALTH") == [Decimal("375.00")]
        assert amounts(result, "PAGIBIG") == [Decimal("100.00")]
        assert amounts(result, "WTAX") == [Decimal("500.00")]
        assert result.totals.gross_pay == Decimal("15000.00")
        assert result.totals.total_deductions == Decimal("975.00")
        assert result.totals.net_pay == Decimal("14025.00")
        assert result.statutory.employer_total == Decimal("475.00")
        assert result.applied == {"SSS": False, "PHILHEALTH": True, "PAGIBIG": True, "WITHHOLDING_TAX": True}
        assert result.working_days == Decimal("10")

    def test_second_half_takes_sss(self, engine):
        result = engine.calculate_employee(make_inputs(), make_period(period_half="SECOND"))

        assert amounts(result, "SSS") == [Decimal("675.00")]
        assert amounts(result, "PHILHEALTH") == []
        assert result.statutory.sss_employer == Decimal("1350.00")
        assert result.totals.total_deductions == Decimal("1175.00")

    def test_disabled_schedule_entry_skips_the_deduction(self, engine):
        result = engine.calculate_employee(
            make_inputs(), make_period(statutory_schedule={"withholdingTax": "DISABLED"})
        )

        assert amounts(result, "WTAX") == []
        assert result.statutory.withholding_tax == Decimal("0")

    def test_absences_reduce_monthly_basic_pay(self, engine):
        result = engine.calculate_employee(make_inputs(attendance=weekdays(skip=(2, 3))), make_period())

        assert result.attendance.unpaid_absences == Decimal("2")
        # 15000 - 2 x 986.3014
        assert result.basic_pay == Decimal("13027.40")

    def test_recurring_earnings(self, engine):
        earnings = [
            RecurringEarningInput(code="RICE", description="Rice Allowance", amount=Decimal("1000.00")),
            RecurringEarningInput(
                code="TRANSPO", description="Transportation", amount=Decimal("2000.00"), frequency="MONTHLY"
            ),
        ]
        first = engine.calculate_employee(make_inputs(recurring_earnings=earnings), make_period())
        second = engine.calculate_employee(
            make_inputs(recurring_earnings=earnings), make_period(period_half="SECOND")
        )

        assert amounts(first, "RICE") == [Decimal("1000.00")]
        assert amounts(first, "TRANSPO") == []
        assert amounts(second, "TRANSPO") == [Decimal("2000.00")]
        assert first.totals.total_earnings == Decimal("1000.00")

    def test_percentage_deduction_is_capped(self, engine):
        deductions = [
            RecurringDeductionInput(
                recurring_deduction_id=uuid4(),
                code="COOP",
                description="Cooperative",
                is_percentage=True,
                percentage_rate=Decimal("0.05"),
                percentage_base="BASIC",
                max_deduction_limit=Decimal("500.00"),
            )
        ]
        result = engine.calculate_employee(make_inputs(recurring_deductions=deductions), make_period())

        assert amounts(result, "COOP") == [Decimal("500.00")]

    def test_second_half_only_deduction(self, engine):
        deductions = [
            RecurringDeductionInput(
                recurring_deduction_id=uuid4(),
                code="LOAN",
                description="Salary Loan",
                amount=Decimal("1500.00"),
                period_applicability="SECOND_HALF",
            )
        ]
        first = engine.calculate_employee(make_inputs(recurring_deductions=deductions), make_period())
        second = engine.calculate_employee(
            make_inputs(recurring_deductions=deductions), make_period(period_half="SECOND")
        )

        assert amounts(first, "LOAN") == []
        assert amounts(second, "LOAN") == [Decimal("1500.00")]

    def test_overtime_and_tardiness(self, engine):
        attendance = weekdays(skip=(3,)) + [
            AttendanceDay(attendance_date=date(2026, 3, 3), status="PRESENT", tardiness_mins=20)
        ]
        result = engine.calculate_employee(
            make_inputs(attendance=attendance, approved_overtime={date(2026, 3, 4): Decimal("2")}),
            make_period(
                overtime_rates={"REGULAR_OT": Decimal("1.25")},
                attendance_rules={"TARDINESS": DeductionRule(calculation_basis="PER_15_MINS", threshold_mins=5)},
            ),
        )

        # 2h x 123.2877 x 1.25
        assert amounts(result, "OVERTIME") == [Decimal("308.22")]
        # One 15-minute block at a quarter of the hourly rate
        assert amounts(result, "TARDINESS") == [Decimal("30.82")]

    def test_net_pay_clamped_with_warning(self, engine):
        deductions = [
            RecurringDeductionInput(
                recurring_deduction_id=uuid4(),
                code="LOAN",
                description="Salary Loan",
                amount=Decimal("20000.00"),
            )
        ]
        result = engine.calculate_employee(make_inputs(recurring_deductions=deductions), make_period())

        assert result.totals.net_pay == Decimal("0.00")
        assert result.success
        assert any("clamped" in warning for warning in result.warnings)

    def test_carried_adjustments_are_kept(self, engine):
        carried = [
            LineItemBuilder.create_earning_line("ADJUSTMENT", "Missed allowance", Decimal("250"), is_adjustment=True),
            LineItemBuilder.create_deduction_line("ADJUSTMENT", "Uniform", Decimal("100"), is_adjustment=True),
        ]
        result = engine.calculate_employee(make_inputs(carried_adjustments=carried), make_period())

        assert result.totals.gross_pay == Decimal("15250.00")
        assert result.totals.total_deductions == Decimal("1075.00")
        assert sum(1 for line in result.lines if line.is_adjustment) == 2

    def test_calculation_is_deterministic(self, engine):
        inputs = make_inputs()
        first = engine.calculate_employee(inputs, make_period())
        second = engine.calculate_employee(inputs, make_period())

        assert first.calculation_id == second.calculation_id
        assert first.inputs_fingerprint == second.inputs_fingerprint
        assert first.calculation_version == "TEST-CALC-V1"

    def test_fingerprint_changes_with_inputs(self, engine):
        inputs = make_inputs()
        base = engine.calculate_employee(inputs, make_period())
        absent = engine.calculate_employee(make_inputs(employee_id=inputs.employee_id, attendance=weekdays(skip=(2,))), make_period())

        assert base.inputs_fingerprint != absent.inputs_fingerprint


class TestThirteenthMonth:
    def test_from_year_to_date_basic(self, engine):
        result = engine.calculate_employee(
            make_inputs(ytd_regular_basic=Decimal("180000.00")),
            make_period(run_type=RunType.THIRTEENTH_MONTH),
        )

        assert amounts(result, "THIRTEENTH_MONTH") == [Decimal("15000.00")]
        assert amounts(result, "BASIC_PAY") == []
        assert result.totals.total_deductions == Decimal("0.00")
        assert not any(result.applied.values())
        assert result.working_days == Decimal("0")

    def test_prorated_when_no_history(self, engine):
        """30000 x 74 days covered (1 Jan to 15 Mar) / 365."""
        result = engine.calculate_employee(make_inputs(), make_period(run_type=RunType.THIRTEENTH_MONTH))

        assert result.basic_pay == Decimal("6082.19")


class TestMidYearBonus:
    def test_half_of_base_salary_only(self, engine):
        result = engine.calculate_employee(
            make_inputs(
                recurring_earnings=[
                    RecurringEarningInput(code="RICE", description="Rice Allowance", amount=Decimal("1000.00"))
                ],
                recurring_deductions=[
                    RecurringDeductionInput(
                        recurring_deduction_id=uuid4(),
                        code="LOAN",
                        description="Salary Loan",
                        amount=Decimal("1500.00"),
                    )
                ],
                attendance=weekdays(skip=(2, 3)),
            ),
            make_period(run_type=RunType.MID_YEAR_BONUS, period_half="SECOND"),
        )

        assert [(line.code, line.description) for line in result.lines] == [("MID_YEAR_BONUS", "Mid-Year Bonus")]
        assert result.basic_pay == Decimal("15000.00")
        assert result.totals.net_pay == Decimal("15000.00")
        assert not any(result.applied.values())
        assert result.attendance.unpaid_absences == 0

    def test_ignores_year_to_date_basic(self, engine):
        result = engine.calculate_employee(
            make_inputs(ytd_regular_basic=Decimal("180000.00")),
            make_period(run_type=RunType.MID_YEAR_BONUS),
        )

        assert amounts(result, "MID_YEAR_BONUS") == [Decimal("15000.00")]
        assert amounts(result, "THIRTEENTH_MONTH") == []
