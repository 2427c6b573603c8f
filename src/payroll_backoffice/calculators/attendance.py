"""Attendance snapshot and attendance-rule deductions."""

from __future__ import annotations

import math
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Mapping

from payroll_backoffice.calculators.types import (
    ApprovedLeave,
    AttendanceDay,
    AttendanceSnapshot,
    DeductionRule,
    HolidayInfo,
)
from payroll_backoffice.money import ZERO, round_currency, round_quantity, to_decimal

DAY_NAMES = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")
DEFAULT_REST_DAYS = ("SATURDAY", "SUNDAY")
FALLBACK_OVERTIME_MULTIPLIER = Decimal("1.25")

HALF = Decimal("0.5")
ONE = Decimal("1")


def dates_in_period(start: date, end: date) -> list[date]:
    """Inclusive list of dates; empty when end precedes start."""
    days = (end - start).days
    return [start + timedelta(days=offset) for offset in range(days + 1)] if days >= 0 else []


def day_name(day: date) -> str:
    return DAY_NAMES[day.weekday()]


def parse_rest_days(value: object) -> list[str]:
    """Upper-cased day names; Saturday/Sunday when nothing usable is stored."""
    if not isinstance(value, (list, tuple)):
        return list(DEFAULT_REST_DAYS)
    parsed = [entry.upper() for entry in value if isinstance(entry, str)]
    return parsed or list(DEFAULT_REST_DAYS)


def overtime_type_for(is_rest_day: bool, holiday: HolidayInfo | None) -> str:
    is_regular = holiday is not None and holiday.is_regular
    is_special = holiday is not None and holiday.is_special
    if is_rest_day and (is_regular or is_special):
        return "REST_DAY_HOLIDAY_OT"
    if is_regular:
        return "REGULAR_HOLIDAY_OT"
    if is_special:
        return "SPECIAL_HOLIDAY_OT"
    if is_rest_day:
        return "REST_DAY_OT"
    return "REGULAR_OT"


def attendance_rule_deduction(
    minutes: int,
    hourly_rate: Decimal,
    daily_rate: Decimal,
    rule: DeductionRule | None,
) -> Decimal:
    """Money deducted for tardiness or undertime minutes.

    Minutes at or under the rule's threshold are free. Without a rule the
    remaining minutes are charged per minute at the hourly rate.
    """
    if minutes <= 0:
        return ZERO
    threshold = rule.threshold_mins if rule else 0
    deductible = max(0, minutes - threshold)
    if deductible == 0:
        return ZERO

    hourly_rate = to_decimal(hourly_rate)
    basis = rule.calculation_basis if rule else "PER_MINUTE"
    if basis == "PER_15_MINS":
        return round_currency(math.ceil(deductible / 15) * (hourly_rate / 4))
    if basis == "PER_30_MINS":
        return round_currency(math.ceil(deductible / 30) * (hourly_rate / 2))
    if basis == "PER_HOUR":
        return round_currency(math.ceil(deductible / 60) * hourly_rate)
    if basis == "DAILY_RATE":
        return round_currency(daily_rate)
    return round_currency(Decimal(deductible) / 60 * hourly_rate)


def calculate_attendance_snapshot(
    *,
    period_dates: Iterable[date],
    rest_days: object,
    daily_rate: Decimal,
    hourly_rate: Decimal,
    holidays: Mapping[date, HolidayInfo],
    attendance: Iterable[AttendanceDay],
    approved_leaves: Iterable[ApprovedLeave],
    approved_overtime: Mapping[date, Decimal],
    overtime_rates: Mapping[str, Decimal],
    is_overtime_eligible: bool,
    is_night_diff_eligible: bool,
) -> AttendanceSnapshot:
    """Walk each day of the period and classify it.

    Precedence per day: holiday, approved leave (paid or unpaid), rest day,
    time record status, and finally an unpaid absence.
    """
    rest = parse_rest_days(rest_days)
    by_date = {row.attendance_date: row for row in attendance}
    leaves = list(approved_leaves)
    snap = AttendanceSnapshot()
    payable = ZERO
    absences = ZERO
    overtime_hours = ZERO
    overtime_pay = ZERO
    night_diff = ZERO
    premium = ZERO
    hours_worked = ZERO

    for day in period_dates:
        holiday = holidays.get(day)
        is_rest_day = day_name(day) in rest
        dtr = by_date.get(day)
        if not is_rest_day:
            snap.working_days += 1

        leave = next((lv for lv in leaves if lv.covers(day)), None)
        leave_value = HALF if leave is not None and leave.is_half_day else ONE
        dtr_value = HALF if dtr is not None and dtr.is_half_day else ONE

        if holiday is not None:
            payable += ONE
        elif leave is not None and leave.is_paid:
            payable += leave_value
        elif leave is not None:
            absences += leave_value
        elif is_rest_day or (dtr is not None and dtr.status == "REST_DAY"):
            payable += ONE
        elif dtr is not None and dtr.status in ("PRESENT", "HOLIDAY"):
            payable += dtr_value
            if dtr.is_half_day:
                absences += HALF
        elif dtr is not None and dtr.status == "ON_LEAVE":
            absences += dtr_value
        else:
            absences += ONE

        if dtr is None:
            continue

        snap.tardiness_mins += dtr.tardiness_mins
        snap.undertime_mins += dtr.undertime_mins
        hours_worked += to_decimal(dtr.hours_worked)
        if is_night_diff_eligible:
            night_diff += to_decimal(dtr.night_diff_hours)

        if holiday is not None and dtr.status == "PRESENT":
            multiplier = to_decimal(holiday.pay_multiplier)
            premium += round_currency(to_decimal(daily_rate) * max(multiplier - ONE, ZERO))

        if not is_overtime_eligible:
            continue
        ot_hours = to_decimal(approved_overtime.get(day))
        if ot_hours <= 0:
            continue
        overtime_hours += ot_hours
        ot_type = overtime_type_for(is_rest_day, holiday)
        multiplier = to_decimal(overtime_rates.get(ot_type, FALLBACK_OVERTIME_MULTIPLIER))
        overtime_pay += round_currency(ot_hours * to_decimal(hourly_rate) * multiplier)

    snap.payable_days = round_quantity(payable)
    snap.unpaid_absences = round_quantity(absences)
    snap.overtime_hours = round_quantity(overtime_hours)
    snap.overtime_pay = round_currency(overtime_pay)
    snap.night_diff_hours = round_quantity(night_diff)
    snap.holiday_premium_pay = round_currency(premium)
    snap.hours_worked = round_quantity(hours_worked)
    return snap
