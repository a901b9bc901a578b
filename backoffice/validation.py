"""
Input validation helpers shared by the edit flows.

Dates are typed as dd/mm/yyyy and stored as ISO YYYY-MM-DD.
"""

from __future__ import annotations

import calendar
import re
from datetime import date

from .numbers import parse_european_number

_DMY = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")


def is_valid_date(value: str | None) -> bool:
    """Calendar-valid dd/mm/yyyy (year >= 1900)."""
    match = _DMY.match((value or "").strip())
    if not match:
        return False
    day, month, year = (int(g) for g in match.groups())
    if year < 1900 or not 1 <= month <= 12:
        return False
    return 1 <= day <= calendar.monthrange(year, month)[1]


def dmy_to_iso(value: str) -> str:
    """Convert a validated dd/mm/yyyy to YYYY-MM-DD."""
    day, month, year = value.strip().split("/")
    return f"{year}-{month}-{day}"


def iso_to_dmy(value: str | None) -> str:
    """YYYY-MM-DD (or full ISO timestamp) to dd/mm/yyyy; '' if unparseable."""
    if not value:
        return ""
    try:
        parsed = date.fromisoformat(str(value)[:10])
    except ValueError:
        return ""
    return parsed.strftime("%d/%m/%Y")


def parse_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def require_text(errors: dict, data: dict, field: str, message: str) -> str:
    """Return the stripped field value; record an error when empty."""
    value = str(data.get(field) or "").strip()
    if not value:
        errors[field] = message
    return value


def validate_positive_amount(errors: dict, raw, field: str = "amount"):
    """Parse a required positive European amount; record an error otherwise."""
    if raw is None or not str(raw).strip():
        errors[field] = "Amount is required"
        return None
    amount = parse_european_number(raw)
    if amount is None or amount <= 0:
        errors[field] = "Amount must be a valid positive number"
        return None
    return amount


def validate_due_date(errors: dict, raw, field: str = "dueDate") -> str | None:
    """Required dd/mm/yyyy date; returns ISO on success."""
    value = str(raw or "").strip()
    if not value:
        errors[field] = "Due Date is required"
        return None
    if not is_valid_date(value):
        errors[field] = "Due Date must be valid (dd/mm/yyyy)"
        return None
    return dmy_to_iso(value)
