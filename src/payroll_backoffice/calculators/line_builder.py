"""Payslip line builder and totals."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Iterable
from uuid import UUID

from payroll_backoffice.calculators.types import LineCandidate, LineKind
from payroll_backoffice.money import ZERO

if TYPE_CHECKING:
    from payroll_backoffice.models import Payslip


@dataclass(frozen=True)
class PayslipTotals:
    gross_pay: Decimal
    total_earnings: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    net_clamped: bool = False


class LineItemBuilder:
    """Builds payslip lines and derives payslip totals from them.

    Sign conventions:
    - Every line amount is stored positive; the kind decides its direction
    - gross = sum(EARNING)
    - total deductions = sum(DEDUCTION)
    - net = max(gross - total deductions, 0)

    Rounding:
    - Amounts to 2 decimals when a line is built
    - Rates keep 4 decimals
    """

    PRECISION = Decimal("0.0001")
    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (cents)."""
        return Decimal(amount).quantize(LineItemBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def round_rate(amount: Decimal) -> Decimal:
        return Decimal(amount).quantize(LineItemBuilder.PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def compute_line_hash(line: LineCandidate) -> str:
        """Deterministic hash over the line's defining fields."""
        canonical = line.to_canonical_dict()
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def create_earning_line(
        code: str,
        description: str,
        amount: Decimal,
        hours: Decimal | None = None,
        days: Decimal | None = None,
        rate: Decimal | None = None,
        is_taxable: bool = True,
        is_adjustment: bool = False,
        created_by_id: UUID | None = None,
    ) -> LineCandidate:
        return LineCandidate(
            kind=LineKind.EARNING,
            code=code,
            description=description,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            hours=hours,
            days=days,
            rate=LineItemBuilder.round_rate(rate) if rate is not None else None,
            is_taxable=is_taxable,
            is_adjustment=is_adjustment,
            created_by_id=created_by_id,
        )

    @staticmethod
    def create_deduction_line(
        code: str,
        description: str,
        amount: Decimal,
        employer_share: Decimal | None = None,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        is_pre_tax: bool = False,
        is_adjustment: bool = False,
        created_by_id: UUID | None = None,
    ) -> LineCandidate:
        return LineCandidate(
            kind=LineKind.DEDUCTION,
            code=code,
            description=description,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            employer_share=(
                LineItemBuilder.round_to_cents(employer_share) if employer_share is not None else None
            ),
            reference_type=reference_type,
            reference_id=reference_id,
            is_pre_tax=is_pre_tax,
            is_adjustment=is_adjustment,
            created_by_id=created_by_id,
        )

    @staticmethod
    def calculate_gross_from_lines(lines: Iterable[LineCandidate]) -> Decimal:
        gross = ZERO
        for line in lines:
            if line.kind is LineKind.EARNING:
                gross += line.amount
        return LineItemBuilder.round_to_cents(gross)

    @staticmethod
    def calculate_deductions_from_lines(lines: Iterable[LineCandidate]) -> Decimal:
        total = ZERO
        for line in lines:
            if line.kind is LineKind.DEDUCTION:
                total += line.amount
        return LineItemBuilder.round_to_cents(total)

    @staticmethod
    def compute_totals(
        basic_pay: Decimal,
        earning_amounts: Iterable[Decimal],
        deduction_amounts: Iterable[Decimal],
    ) -> PayslipTotals:
        """Totals from raw line amounts; net is clamped at zero."""
        gross = LineItemBuilder.round_to_cents(sum(earning_amounts, ZERO))
        deductions = LineItemBuilder.round_to_cents(sum(deduction_amounts, ZERO))
        raw_net = gross - deductions
        return PayslipTotals(
            gross_pay=gross,
            total_earnings=LineItemBuilder.round_to_cents(gross - basic_pay),
            total_deductions=deductions,
            net_pay=LineItemBuilder.round_to_cents(max(raw_net, ZERO)),
            net_clamped=raw_net < 0,
        )

    @staticmethod
    def totals_for_lines(basic_pay: Decimal, lines: list[LineCandidate]) -> PayslipTotals:
        return LineItemBuilder.compute_totals(
            basic_pay,
            (line.amount for line in lines if line.kind is LineKind.EARNING),
            (line.amount for line in lines if line.kind is LineKind.DEDUCTION),
        )

    @staticmethod
    def totals_for_payslip(payslip: Payslip) -> PayslipTotals:
        """Recompute totals from a persisted payslip's current lines."""
        return LineItemBuilder.compute_totals(
            payslip.basic_pay,
            (line.amount for line in payslip.earnings),
            (line.amount for line in payslip.deductions),
        )

    @staticmethod
    def validate_line_signs(lines: Iterable[LineCandidate]) -> list[str]:
        """Every stored amount must be non-negative.

        Returns list of error messages (empty if all valid).
        """
        errors: list[str] = []
        for i, line in enumerate(lines):
            if line.amount < 0:
                errors.append(
                    f"Line {i} ({line.kind.value} {line.code}) has negative amount {line.amount}"
                )
        return errors

    @staticmethod
    def sum_by_code(lines: Iterable[LineCandidate]) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = {}
        for line in lines:
            totals[line.code] = totals.get(line.code, ZERO) + line.amount
        return totals
