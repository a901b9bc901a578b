"""
Utility functions shared across the app. This includes:
- utcnow / to_iso / parse_timestamp: the ISO-8601 UTC timestamps stored in documents.
- today_iso: default start date of derived projects.
- json_body: request payload helper for the JSON blueprints.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Optional

from flask import request

# Injectable clock; engines take `clock=` and fall back to this.
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a trailing Z."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a stored ISO timestamp; None if missing or malformed."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def today_iso(clock: Clock | None = None) -> str:
    moment = (clock or utcnow)()
    return moment.date().isoformat()


def today(clock: Clock | None = None) -> date:
    return (clock or utcnow)().date()


def json_body() -> dict:
    """Request JSON as a dict; anything else (missing, list, invalid) becomes {}."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
