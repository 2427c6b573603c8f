"""Fixed-precision decimal helpers for money, day and hour quantities.

Rounding:
- Currency and day/hour balances to 2 decimals at every comparison and write
- Rates (daily/hourly rates, percentages) to 4 decimals
- Always ROUND_HALF_UP; floats never enter a computation
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")
CENT = Decimal("0.01")  # 2 decimal places for currency and balances
RATE_PRECISION = Decimal("0.0001")  # 4 decimal places for rates


def to_decimal(value: object) -> Decimal:
    """Coerce a stored or submitted value to Decimal.

    Floats are converted through their string form so 0.1 stays 0.1.
    None is treated as zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a decimal value: {value!r}") from exc


def round_currency(amount: object) -> Decimal:
    """Round to 2 decimal places."""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def round_rate(amount: object) -> Decimal:
    """Round to 4 decimal places."""
    return to_decimal(amount).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


# Day and hour quantities use the same precision as rates until persisted
round_quantity = round_rate


def decimal_text(amount: object) -> str:
    """Format as a 2-decimal string, the persisted text form."""
    return format(round_currency(amount), "f")


def non_negative(amount: Decimal) -> Decimal:
    return amount if amount > ZERO else ZERO


def sum_amounts(amounts) -> Decimal:
    """Sum decimals and round the total to cents."""
    total = ZERO
    for amount in amounts:
        total += to_decimal(amount)
    return round_currency(total)
