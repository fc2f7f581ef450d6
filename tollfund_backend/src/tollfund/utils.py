from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional, Sequence, Tuple, Union

# Shared type for incoming calendar days which can be a date, datetime, or ISO8601 string
DayInput = Union[date, datetime, str]


# PUBLIC_INTERFACE
def to_naive(value: Optional[datetime]) -> Optional[datetime]:
    """
    Convert an offset-aware datetime to naive local time; naive values and None
    pass through. Stored timestamps, range bounds and the clock are all naive.
    """
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


# PUBLIC_INTERFACE
def start_of_day(value: DayInput) -> datetime:
    """
    Normalize a day-ish value to a naive datetime at 00:00 of that day.

    - If value is a string, parse it with datetime.fromisoformat, falling back to
      date.fromisoformat for plain dates. A trailing 'Z' means UTC.
    - Offset-aware datetimes are converted to local time first.
    - If value is a date or datetime, the time-of-day is dropped.
    """
    if isinstance(value, datetime):
        local = to_naive(value)
        return datetime(local.year, local.month, local.day)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, str):
        s = value.strip()
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            try:
                d = date.fromisoformat(s)
            except ValueError as e:
                raise ValueError(
                    "Invalid day format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e
            return datetime(d.year, d.month, d.day)
        return start_of_day(parsed)

    raise ValueError("Invalid type for day; expected date, datetime, or ISO8601 string.")


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


# PUBLIC_INTERFACE
def month_bounds(moment: datetime, offset: int = 0) -> Tuple[datetime, datetime]:
    """
    Return the half-open interval [start, end) of the calendar month containing
    `moment`, shifted by `offset` months (negative offsets go back in time).
    """
    year, month = _shift_month(moment.year, moment.month, offset)
    next_year, next_month = _shift_month(year, month, 1)
    return datetime(year, month, 1), datetime(next_year, next_month, 1)


# PUBLIC_INTERFACE
def pagination_envelope(items: Sequence[Any], total: int, limit: int, offset: int) -> Dict[str, Any]:
    """Wrap one page of a list endpoint as {items, total, limit, offset}; limit and offset are clamped at 0."""
    return {"items": list(items), "total": int(total), "limit": max(int(limit), 0), "offset": max(int(offset), 0)}
