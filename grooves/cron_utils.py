"""
Cron expression helpers.

Schedules are written in standard 5-field cron syntax
(minute hour day-of-month month day-of-week). Internally they are
normalized to 6 fields with a leading seconds field, e.g.
"0 8 * * *" -> "0 0 8 * * *".
"""

from datetime import datetime
from typing import Optional

from croniter import croniter

_WEEKDAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def normalize(schedule: str) -> str:
    """Prepend a "0" seconds field to 5-field expressions; leave others alone."""
    trimmed = schedule.strip()
    if len(trimmed.split()) == 5:
        return f"0 {trimmed}"
    return trimmed


def _iterator(cron: str, start: datetime) -> croniter:
    parts = normalize(cron).split()
    if len(parts) != 6:
        raise ValueError(f"Expected 5 or 6 cron fields, got {len(parts)}: '{cron}'")
    # croniter expects the seconds field last
    return croniter(" ".join(parts[1:] + parts[:1]), start)


def is_valid(cron: str) -> bool:
    """True for parseable 5- or 6-field expressions."""
    if len(cron.split()) not in (5, 6):
        return False
    try:
        _iterator(cron, datetime.now())
    except Exception:
        return False
    return True


def most_recent_firing(cron: str, now: datetime) -> Optional[datetime]:
    """
    Latest scheduled instant at or before ``now``; None if the expression
    cannot be parsed.

    The result carries the same tzinfo as ``now`` (naive in, naive out).
    """
    try:
        prev = _iterator(cron, now).get_prev(datetime)
        # get_prev() is strictly before the start time; an exact hit on
        # ``now`` is the firing after ``prev``.
        following = _iterator(cron, prev).get_next(datetime)
    except Exception:
        return None
    if following <= now:
        return following
    return prev


def _clock(hour: int, minute: int) -> str:
    suffix = "AM" if hour < 12 else "PM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


def describe(cron: str) -> Optional[str]:
    """
    Human-readable description for the common schedule shapes, or None.

    Examples:
        "* * * * *"   -> "Every minute"
        "*/15 * * * *" -> "Every 15 minutes"
        "30 * * * *"  -> "At 30 minutes past the hour"
        "0 8 * * *"   -> "At 8:00 AM"
        "0 8 * * 1"   -> "At 8:00 AM, only on Monday"
        "0 8 1 * *"   -> "At 8:00 AM, on day 1 of the month"
    """
    if not is_valid(cron):
        return None

    parts = normalize(cron).split()
    seconds, minute, hour, day, month, weekday = parts
    if seconds != "0" or month != "*":
        return None

    if minute == "*" and hour == "*" and day == "*" and weekday == "*":
        return "Every minute"
    if day != "*" and weekday != "*":
        return None

    if hour == "*" and day == "*" and weekday == "*":
        if minute.startswith("*/") and minute[2:].isdigit():
            return f"Every {int(minute[2:])} minutes"
        if minute.isdigit():
            return f"At {int(minute)} minutes past the hour"
        return None

    if minute == "0" and hour.startswith("*/") and hour[2:].isdigit() and day == "*" and weekday == "*":
        return f"Every {int(hour[2:])} hours"

    if not (minute.isdigit() and hour.isdigit()):
        return None

    at = f"At {_clock(int(hour), int(minute))}"
    if day == "*" and weekday == "*":
        return at
    if weekday.isdigit():
        return f"{at}, only on {_WEEKDAYS[int(weekday)]}"
    if day.isdigit():
        return f"{at}, on day {int(day)} of the month"
    return None
