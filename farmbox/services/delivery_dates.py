"""
Delivery Date Calculator: next delivery day for a weekly/biweekly box.

Rules:
  - Weekdays are numbered 0 = Sunday … 6 = Saturday
  - The next delivery is always strictly after ``from_date`` (never "today")
  - Biweekly: if the candidate is less than 7 days from the wall-clock ``now``,
    push it one more week

The biweekly check is anchored on ``now``, not on ``from_date``. A caller that
passes a future ``from_date`` (e.g. the current next delivery) can therefore
get a date less than 14 days after that delivery.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from farmbox.domain import Frequency
from farmbox.errors import ValidationError


def weekday_of(d: date) -> int:
    """Weekday of ``d`` with Sunday as 0."""
    return (d.weekday() + 1) % 7


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def next_delivery_date(
    from_date: date | datetime,
    weekday: int,
    frequency: Frequency | str,
    now: datetime | date | None = None,
) -> date:
    """
    Compute the next delivery date.

    Args:
        from_date: Reference date; the result is strictly after it
        weekday: Target delivery weekday (0 = Sunday … 6 = Saturday)
        frequency: WEEKLY or BIWEEKLY
        now: Wall-clock anchor for the biweekly rule (defaults to UTC now)

    Returns:
        The delivery date (a calendar date, no time component)
    """
    if not isinstance(weekday, int) or isinstance(weekday, bool) or not 0 <= weekday <= 6:
        raise ValidationError("Delivery day must be between 0 (Sunday) and 6 (Saturday)")
    try:
        frequency = Frequency(frequency)
    except ValueError:
        raise ValidationError(f"Invalid frequency: {frequency}")

    start = _as_date(from_date)
    delta = weekday - weekday_of(start)
    if delta <= 0:
        delta += 7
    candidate = start + timedelta(days=delta)

    if frequency == Frequency.BIWEEKLY:
        today = _as_date(now if now is not None else datetime.utcnow())
        if (candidate - today).days < 7:
            candidate += timedelta(days=7)

    return candidate
