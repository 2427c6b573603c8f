"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from payroll_backoffice.money import ZERO


class LineKind(str, Enum):
    """Payslip line kinds. Amounts are stored positive for both."""

    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"


class RunType(str, Enum):
    REGULAR = "REGULAR"
    TRIAL_RUN = "TRIAL_RUN"
    THIRTEENTH_MONTH = "THIRTEENTH_MONTH"
    MID_YEAR_BONUS = "MID_YEAR_BONUS"

    @property
    def is_bonus_only(self) -> bool:
        """Bonus runs carry a single bonus line: no attendance, statutory or recurring lines."""
        return self in (RunType.THIRTEENTH_MONTH, RunType.MID_YEAR_BONUS)


@dataclass
class LineCandidate:
    """A payslip line before persistence."""

    kind: LineKind
    code: str
    description: str
    amount: Decimal

    # Earning quantities
    hours: Decimal | None = None
    days: Decimal | None = None
    rate: Decimal | None = None
    is_taxable: bool = True

    # Deduction details
    employer_share: Decimal | None = None
    reference_type: str | None = None
    reference_id: UUID | None = None
    is_pre_tax: bool = False

    is_adjustment: bool = False
    created_by_id: UUID | None = None

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "kind": self.kind.value,
            "code": self.code,
            "description": self.description,
            "amount": str(self.amount),
            "hours": str(self.hours) if self.hours is not None else None,
            "days": str(self.days) if self.days is not None else None,
            "rate": str(self.rate) if self.rate is not None else None,
            "employer_share": str(self.employer_share) if self.employer_share is not None else None,
            "reference_type": self.reference_type,
            "reference_id": str(self.reference_id) if self.reference_id else None,
            "is_adjustment": self.is_adjustment,
        }


@dataclass(frozen=True)
class HolidayInfo:
    holiday_type: str  # REGULAR, SPECIAL_NON_WORKING, SPECIAL_WORKING
    pay_multiplier: Decimal = Decimal("1")
    name: str = ""

    @property
    def is_regular(self) -> bool:
        return self.holiday_type == "REGULAR"

    @property
    def is_special(self) -> bool:
        return self.holiday_type in ("SPECIAL_NON_WORKING", "SPECIAL_WORKING")


@dataclass(frozen=True)
class ApprovedLeave:
    start_date: date
    end_date: date
    is_half_day: bool
    is_paid: bool

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class AttendanceDay:
    """The parts of a daily time record the snapshot reads."""

    attendance_date: date
    status: str
    hours_worked: Decimal = ZERO
    night_diff_hours: Decimal = ZERO
    tardiness_mins: int = 0
    undertime_mins: int = 0
    is_half_day: bool = False


@dataclass(frozen=True)
class DeductionRule:
    calculation_basis: str
    threshold_mins: int = 0


@dataclass
class AttendanceSnapshot:
    """Per-employee attendance totals for one pay period."""

    working_days: int = 0
    payable_days: Decimal = ZERO
    unpaid_absences: Decimal = ZERO
    tardiness_mins: int = 0
    undertime_mins: int = 0
    overtime_hours: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    night_diff_hours: Decimal = ZERO
    holiday_premium_pay: Decimal = ZERO
    hours_worked: Decimal = ZERO

    def to_trace(self) -> dict[str, Any]:
        return {
            "working_days": self.working_days,
            "payable_days": str(self.payable_days),
            "unpaid_absences": str(self.unpaid_absences),
            "tardiness_mins": self.tardiness_mins,
            "undertime_mins": self.undertime_mins,
            "overtime_hours": str(self.overtime_hours),
            "night_diff_hours": str(self.night_diff_hours),
        }


@dataclass(frozen=True)
class SalaryInput:
    base_salary: Decimal
    rate_type: str = "MONTHLY"
    daily_rate: Decimal | None = None
    hourly_rate: Decimal | None = None
    hours_per_day: Decimal = Decimal("8")
    monthly_divisor: int = 365


@dataclass(frozen=True)
class RecurringEarningInput:
    code: str
    description: str
    amount: Decimal
    frequency: str = "PER_PAYROLL"
    proration_rule: str = "NONE"
    is_taxable: bool = True


@dataclass(frozen=True)
class RecurringDeductionInput:
    recurring_deduction_id: UUID | None
    code: str
    description: str
    amount: Decimal = ZERO
    is_percentage: bool = False
    percentage_rate: Decimal | None = None
    percentage_base: str = "GROSS"
    frequency: str = "PER_PAYROLL"
    period_applicability: str = "EVERY_PERIOD"
    is_pre_tax: bool = False
    max_deduction_limit: Decimal | None = None


@dataclass(frozen=True)
class ContributionInput:
    """Pre-computed statutory amounts for one kind."""

    employee_share: Decimal
    employer_share: Decimal = ZERO


@dataclass
class EmployeeInputs:
    """Everything the engine reads for one employee, loaded up front."""

    employee_id: UUID
    employee_number: str
    employee_name: str
    salary: SalaryInput
    hire_date: date
    separation_date: date | None = None
    is_overtime_eligible: bool = True
    is_night_diff_eligible: bool = False
    rest_days: list[str] | None = None
    attendance: list[AttendanceDay] = field(default_factory=list)
    approved_leaves: list[ApprovedLeave] = field(default_factory=list)
    approved_overtime: dict[date, Decimal] = field(default_factory=dict)
    contributions: dict[str, ContributionInput] = field(default_factory=dict)
    recurring_earnings: list[RecurringEarningInput] = field(default_factory=list)
    recurring_deductions: list[RecurringDeductionInput] = field(default_factory=list)
    carried_adjustments: list[LineCandidate] = field(default_factory=list)
    ytd_regular_basic: Decimal = ZERO


@dataclass(frozen=True)
class PeriodInputs:
    """Run- and period-level inputs shared by every employee."""

    run_type: RunType
    run_number: str
    cutoff_start: date
    cutoff_end: date
    pay_frequency: str
    period_half: str
    periods_per_year: int
    working_days: Decimal | None = None
    statutory_schedule: dict[str, Any] | None = None
    holidays: dict[date, HolidayInfo] = field(default_factory=dict)
    overtime_rates: dict[str, Decimal] = field(default_factory=dict)
    attendance_rules: dict[str, DeductionRule] = field(default_factory=dict)
