"""
backoffice/numbers.py

European number notation ("." thousands, "," decimals) used by every amount, fee
and percentage the back office stores or displays.

Rules:
- Parsing never coerces garbage to zero: invalid input yields None.
- Only aggregation sums treat invalid values as zero, through amount_or_zero().
- Amounts are persisted as two-decimal European strings ("1.234,50"), so a stored
  value always contains a comma and parses unambiguously.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

_WHITESPACE = re.compile(r"\s")
_NOT_NUMERIC = re.compile(r"[^\d,.-]")

ZERO = Decimal("0.00")


def parse_european_number(value) -> Decimal | None:
    """
    Parse a European-notation number.

    - "1.234,56" => 1234.56
    - "1234.56"  => 1234.56 (a single dot is a decimal point)
    - "1.234.567" => 1234.567 (only the last dot-segment is decimal)
    - "", "abc", "1,2,3", None => None

    Numbers (int/float/Decimal) are accepted as-is when finite.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
        return number if number.is_finite() else None

    cleaned = str(value).strip()
    if not cleaned:
        return None

    sanitized = _NOT_NUMERIC.sub("", _WHITESPACE.sub("", cleaned))
    if not sanitized:
        return None

    if "," in sanitized:
        normalized = sanitized.replace(".", "").replace(",", ".")
    elif sanitized.count(".") > 1:
        *head, decimal = sanitized.split(".")
        normalized = f"{''.join(head)}.{decimal or '0'}"
    else:
        normalized = sanitized

    try:
        number = Decimal(normalized)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def amount_or_zero(value) -> Decimal:
    """Parse for aggregation: missing/invalid values count as zero."""
    number = parse_european_number(value)
    return ZERO if number is None else number


def money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_number(value, *, min_fraction_digits: int = 0, max_fraction_digits: int = 2) -> str:
    """
    Format using "." thousands and "," decimals.

    Rounds half away from zero to max_fraction_digits and trims trailing zeros
    down to min_fraction_digits. Grouped whole numbers keep a ",0" so they
    parse back to the same value. Returns "-" for anything that does not parse.
    """
    number = parse_european_number(value)
    if number is None:
        return "-"

    try:
        rounded = number.quantize(Decimal(1).scaleb(-max_fraction_digits), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return "-"

    sign = "-" if rounded < 0 else ""
    integer_part, _, fraction = f"{abs(rounded):f}".partition(".")
    fraction = fraction.rstrip("0")
    if len(fraction) < min_fraction_digits:
        fraction = fraction.ljust(min_fraction_digits, "0")

    grouped = f"{int(integer_part):,}".replace(",", ".")
    if not fraction and "." in grouped:
        # a lone grouping dot reads back as a decimal point
        fraction = "0"
    if fraction:
        return f"{sign}{grouped},{fraction}"
    return f"{sign}{grouped}"


def format_amount(value) -> str:
    """Two-decimal European string, the persisted form of amounts and fees."""
    return format_number(value, min_fraction_digits=2, max_fraction_digits=2)


def format_currency(value) -> str:
    """
    Currency display: "100.500,22 €".

    None / "" / "-" / unparseable => "-"; zero => "0,00 €".
    """
    if value is None:
        return "-"
    if isinstance(value, str) and value.strip() in ("", "-"):
        return "-"

    number = parse_european_number(value)
    if number is None:
        return "-"
    if number == 0:
        return "0,00 €"

    return f"{format_amount(number)} €"
