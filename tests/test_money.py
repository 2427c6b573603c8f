"""Tests for fixed-precision money helpers."""

from decimal import Decimal

import pytest

from payroll_backoffice.money import (
    decimal_text,
    non_negative,
    round_currency,
    round_rate,
    sum_amounts,
    to_decimal,
)


class TestRounding:
    def test_currency_rounds_half_up(self):
        assert round_currency(Decimal("10.125")) == Decimal("10.13")
        assert round_currency(Decimal("10.124")) == Decimal("10.12")
        assert round_currency(Decimal("0.005")) == Decimal("0.01")

    def test_rate_keeps_four_places(self):
        assert round_rate(Decimal("986.30136986")) == Decimal("986.3014")

    def test_floats_go_through_their_string_form(self):
        """0.1 + 0.2 must not pick up binary noise."""
        assert to_decimal(0.1) + to_decimal(0.2) == Decimal("0.3")

    def test_none_is_zero(self):
        assert to_decimal(None) == Decimal("0")

    def test_garbage_is_rejected(self):
        with pytest.raises(ValueError):
            to_decimal("twelve")


class TestHelpers:
    def test_decimal_text(self):
        assert decimal_text(Decimal("1.5")) == "1.50"
        assert decimal_text(3) == "3.00"

    def test_non_negative(self):
        assert non_negative(Decimal("-4.00")) == Decimal("0")
        assert non_negative(Decimal("4.00")) == Decimal("4.00")

    def test_sum_amounts_rounds_the_total(self):
        assert sum_amounts([Decimal("0.333"), Decimal("0.333"), "0.334"]) == Decimal("1.00")
