"""
Money Helpers

All monetary values in the ledger are Decimals quantized to cents.
Floats are accepted at the edges but always pass through str() first,
so 0.1 + 0.2 style drift never reaches a stored balance.
"""

import re
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[Decimal, int, float, str, None]

_CURRENCY_PREFIX = re.compile(r"^(R\$|\$|€|£)\s*")


def quantize_money(value: Decimal) -> Decimal:
    """Round a Decimal to cents (half-up)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def floor_to_cent(value: Decimal) -> Decimal:
    """Truncate a Decimal down to the cent."""
    return value.quantize(CENT, rounding=ROUND_FLOOR)


def _normalize_string(raw: str) -> str:
    text = _CURRENCY_PREFIX.sub("", raw.strip()).replace(" ", "")
    separators = [c for c in text if c in ",."]
    if not separators:
        return text

    if len(set(separators)) == 2:
        # "1.234,56" / "1,234.56": the last separator is the decimal one
        decimal_sep = separators[-1]
    else:
        sep = separators[0]
        whole, _, fraction = text.rpartition(sep)
        grouped = len(separators) > 1 or (
            len(fraction) == 3 and whole.lstrip("-+") not in ("", "0")
        )
        # "1,234" / "1.234.567" group thousands; "1234,56" / "3.5" are decimals
        decimal_sep = None if grouped else sep

    if decimal_sep is None:
        return text.replace(",", "").replace(".", "")
    thousands_sep = "." if decimal_sep == "," else ","
    return text.replace(thousands_sep, "").replace(decimal_sep, ".")


def to_decimal(value: AmountLike) -> Decimal:
    """
    Convert a number or a formatted amount string to a cent Decimal.

    Accepts Decimal, int, float and strings such as "1.234,56",
    "1,234.56", "1234,56", "1234.56" or "R$ 10,00". A lone separator
    followed by exactly three digits groups thousands ("1,234" is 1234).
    Anything unparseable (None, "", "abc", NaN, infinity) yields
    Decimal("0.00").
    """
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        if isinstance(value, Decimal):
            parsed = value
        elif isinstance(value, (int, float)):
            parsed = Decimal(str(value))
        else:
            parsed = Decimal(_normalize_string(str(value)))
    except (InvalidOperation, TypeError, ValueError):
        return ZERO
    if not parsed.is_finite():
        return ZERO
    return quantize_money(parsed)


def to_cents(value: AmountLike) -> int:
    """Amount in integer minor units."""
    return int(to_decimal(value) * 100)


def magnitude(value: AmountLike) -> Decimal:
    """Absolute cent value, the form in which transaction amounts are stored."""
    return abs(to_decimal(value))
