"""Tests for statutory deduction timing."""

import pytest

from payroll_backoffice.calculators.timing import (
    DEFAULT_SCHEDULE,
    DeductionKind,
    DeductionTiming,
    TimingResolver,
    is_second_half,
    parse_statutory_schedule,
    should_apply,
)


class TestShouldApply:
    """Truth table for one deduction kind."""

    @pytest.mark.parametrize(
        "timing,frequency,half,expected",
        [
            ("DISABLED", "SEMI_MONTHLY", "FIRST", False),
            ("DISABLED", "MONTHLY", "FIRST", False),
            ("EVERY_PERIOD", "SEMI_MONTHLY", "FIRST", True),
            ("EVERY_PERIOD", "SEMI_MONTHLY", "SECOND", True),
            ("FIRST_HALF", "SEMI_MONTHLY", "FIRST", True),
            ("FIRST_HALF", "SEMI_MONTHLY", "SECOND", False),
            ("SECOND_HALF", "SEMI_MONTHLY", "FIRST", False),
            ("SECOND_HALF", "SEMI_MONTHLY", "SECOND", True),
            ("FIRST_HALF", "MONTHLY", "SECOND", True),
            ("SECOND_HALF", "WEEKLY", "FIRST", True),
            ("SECOND_HALF", "BI_WEEKLY", "FIRST", True),
        ],
    )
    def test_truth_table(self, timing, frequency, half, expected):
        assert should_apply("SSS", timing, frequency, half) is expected

    def test_kind_does_not_change_the_outcome(self):
        for kind in DeductionKind:
            assert should_apply(kind, "FIRST_HALF", "SEMI_MONTHLY", "FIRST") is True

    def test_unknown_values_are_rejected(self):
        with pytest.raises(ValueError):
            should_apply("SSS", "SOMETIMES", "SEMI_MONTHLY", "FIRST")


class TestScheduleParsing:
    def test_missing_schedule_uses_defaults(self):
        assert parse_statutory_schedule(None) == DEFAULT_SCHEDULE

    def test_stored_keys_override_defaults(self):
        schedule = parse_statutory_schedule({"sss": "FIRST_HALF", "withholdingTax": "DISABLED"})
        assert schedule[DeductionKind.SSS] is DeductionTiming.FIRST_HALF
        assert schedule[DeductionKind.WITHHOLDING_TAX] is DeductionTiming.DISABLED
        assert schedule[DeductionKind.PHILHEALTH] is DeductionTiming.FIRST_HALF

    def test_unknown_timing_falls_back_to_default(self):
        schedule = parse_statutory_schedule({"pagIbig": "WHENEVER"})
        assert schedule[DeductionKind.PAGIBIG] is DEFAULT_SCHEDULE[DeductionKind.PAGIBIG]


class TestTimingResolver:
    def test_default_first_half_decisions(self):
        resolver = TimingResolver("SEMI_MONTHLY", "FIRST")
        assert resolver.decisions() == {
            "SSS": False,
            "PHILHEALTH": True,
            "PAGIBIG": True,
            "WITHHOLDING_TAX": True,
        }

    def test_default_second_half_decisions(self):
        resolver = TimingResolver("SEMI_MONTHLY", "SECOND")
        assert resolver.applies("SSS") is True
        assert resolver.applies("PHILHEALTH") is False

    def test_monthly_schedule_applies_everything_enabled(self):
        resolver = TimingResolver("MONTHLY", "FIRST", {"sss": "DISABLED"})
        assert resolver.decisions() == {
            "SSS": False,
            "PHILHEALTH": True,
            "PAGIBIG": True,
            "WITHHOLDING_TAX": True,
        }

    def test_second_half_helper(self):
        assert is_second_half("SEMI_MONTHLY", "SECOND") is True
        assert is_second_half("SEMI_MONTHLY", "FIRST") is False
        assert is_second_half("WEEKLY", "FIRST") is True
