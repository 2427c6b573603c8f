"""Statutory deduction timing.

Decides whether a pre-computed statutory amount is taken in a given pay
period. A "skip" decision zeroes this period's amount; it never removes the
deduction from the employee's configuration.

Truth table:
- DISABLED: never
- EVERY_PERIOD: always
- any other timing on a non-semi-monthly schedule: always
- FIRST_HALF / SECOND_HALF on semi-monthly: only in the matching half
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class DeductionKind(str, Enum):
    SSS = "SSS"
    PHILHEALTH = "PHILHEALTH"
    PAGIBIG = "PAGIBIG"
    WITHHOLDING_TAX = "WITHHOLDING_TAX"


class DeductionTiming(str, Enum):
    FIRST_HALF = "FIRST_HALF"
    SECOND_HALF = "SECOND_HALF"
    EVERY_PERIOD = "EVERY_PERIOD"
    DISABLED = "DISABLED"


class PayFrequency(str, Enum):
    WEEKLY = "WEEKLY"
    BI_WEEKLY = "BI_WEEKLY"
    SEMI_MONTHLY = "SEMI_MONTHLY"
    MONTHLY = "MONTHLY"


class PeriodHalf(str, Enum):
    FIRST = "FIRST"
    SECOND = "SECOND"


# Keys as stored on PaySchedule.statutory_schedule
SCHEDULE_KEYS: dict[DeductionKind, str] = {
    DeductionKind.SSS: "sss",
    DeductionKind.PHILHEALTH: "philHealth",
    DeductionKind.PAGIBIG: "pagIbig",
    DeductionKind.WITHHOLDING_TAX: "withholdingTax",
}

DEFAULT_SCHEDULE: dict[DeductionKind, DeductionTiming] = {
    DeductionKind.SSS: DeductionTiming.SECOND_HALF,
    DeductionKind.PHILHEALTH: DeductionTiming.FIRST_HALF,
    DeductionKind.PAGIBIG: DeductionTiming.FIRST_HALF,
    DeductionKind.WITHHOLDING_TAX: DeductionTiming.EVERY_PERIOD,
}


def should_apply(
    kind: DeductionKind | str,
    timing: DeductionTiming | str,
    pay_frequency: PayFrequency | str,
    period_half: PeriodHalf | str,
) -> bool:
    """Return True when `kind` is taken this period under `timing`.

    `kind` does not change the outcome; it is accepted so callers resolve
    one decision per deduction kind.
    """
    DeductionKind(kind)
    timing = DeductionTiming(timing)
    if timing is DeductionTiming.DISABLED:
        return False
    if timing is DeductionTiming.EVERY_PERIOD:
        return True
    if PayFrequency(pay_frequency) is not PayFrequency.SEMI_MONTHLY:
        return True
    half = PeriodHalf(period_half)
    if timing is DeductionTiming.FIRST_HALF:
        return half is PeriodHalf.FIRST
    return half is PeriodHalf.SECOND


def parse_statutory_schedule(
    raw: Mapping[str, Any] | None,
) -> dict[DeductionKind, DeductionTiming]:
    """Read a stored schedule; unknown or missing entries take the default."""
    schedule = dict(DEFAULT_SCHEDULE)
    if not isinstance(raw, Mapping):
        return schedule
    for kind, key in SCHEDULE_KEYS.items():
        value = raw.get(key)
        try:
            schedule[kind] = DeductionTiming(value)
        except ValueError:
            continue
    return schedule


def is_second_half(pay_frequency: PayFrequency | str, period_half: PeriodHalf | str) -> bool:
    """Monthly items land in the second half, or every period off semi-monthly."""
    if PayFrequency(pay_frequency) is not PayFrequency.SEMI_MONTHLY:
        return True
    return PeriodHalf(period_half) is PeriodHalf.SECOND


class TimingResolver:
    """Per-run timing decisions for one pay schedule."""

    def __init__(
        self,
        pay_frequency: PayFrequency | str,
        period_half: PeriodHalf | str,
        schedule: Mapping[str, Any] | None = None,
    ):
        self.pay_frequency = PayFrequency(pay_frequency)
        self.period_half = PeriodHalf(period_half)
        self.schedule = parse_statutory_schedule(schedule)

    def applies(self, kind: DeductionKind | str) -> bool:
        kind = DeductionKind(kind)
        return should_apply(kind, self.schedule[kind], self.pay_frequency, self.period_half)

    def decisions(self) -> dict[str, bool]:
        return {kind.value: self.applies(kind) for kind in DeductionKind}
