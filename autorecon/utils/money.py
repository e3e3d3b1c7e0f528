from decimal import Decimal, Inexact, InvalidOperation, ROUND_HALF_EVEN, localcontext
from typing import Iterable

from autorecon.config import CURRENCY_MINOR_UNITS
from autorecon.exceptions import ValidationError

ZERO = Decimal("0")

# Working precision for sums; wide enough that real ledgers never come near it
SUM_PRECISION = 60


def to_decimal(value, field: str = "amount") -> Decimal:
    """Coerce an amount to Decimal without passing through binary floats."""
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValidationError(f"{field} must be a finite number", {"value": str(value)})
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(
            f"{field} must be a Decimal, int or numeric string, not {type(value).__name__}",
            {"value": repr(value)},
        )
    if isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise ValidationError(f"{field} is not a valid number", {"value": value})
        if not result.is_finite():
            raise ValidationError(f"{field} must be a finite number", {"value": value})
        return result
    raise ValidationError(f"{field} has unsupported type {type(value).__name__}")


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    """Exact sum of Decimal amounts; never rounds.

    The sum runs in a widened local context with Inexact trapped, so a total
    needing more than SUM_PRECISION digits is refused instead of rounded.
    """
    with localcontext() as ctx:
        ctx.prec = SUM_PRECISION
        ctx.traps[Inexact] = True
        try:
            return sum(amounts, ZERO)
        except Inexact:
            raise ValidationError(
                f"Sum exceeds {SUM_PRECISION} significant digits and cannot be represented exactly"
            )


def minor_units(currency: str) -> int:
    return CURRENCY_MINOR_UNITS.get(currency.upper(), 2)


def quantize_amount(amount: Decimal, currency: str) -> Decimal:
    """Round an amount for presentation in the given currency (banker's rounding)."""
    exponent = Decimal(1).scaleb(-minor_units(currency))
    return amount.quantize(exponent, rounding=ROUND_HALF_EVEN)
