"""
Time-boundary calculator.

All bucket due dates come from here. Pure functions over aware UTC datetimes,
stored at millisecond precision to match BSON dates.

* Task day: the UTC calendar day (05:30 to 05:29:59.999 IST). A today item is
  due at its last millisecond.
* Week: a week item is due at the last millisecond of its Sunday (UTC). On
  that Sunday it is due today, so the summary turns it into a daily task.
  From a Sunday the upcoming Sunday is the next one.
* Month: the civil month in the fixed zone (IST by default, no DST).
"""

import math
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Optional

from revision_scheduler.config import settings
from revision_scheduler.exceptions import InvalidTime

ONE_MS = timedelta(milliseconds=1)
ONE_DAY = timedelta(days=1)
ONE_WEEK = timedelta(days=7)

SUNDAY = 6
LATE_WEEK_DAYS = (4, 5)  # Friday, Saturday (UTC)


class Clock:
    """Source of the current instant. Engines take one so tests can pin time."""

    def now(self) -> datetime:
        return to_utc(datetime.now(timezone.utc))


class FixedClock(Clock):
    """A clock that always reports the same instant."""

    def __init__(self, instant: Any):
        self.instant = to_utc(instant)

    def now(self) -> datetime:
        return self.instant


def to_utc(value: Any) -> datetime:
    """
    Coerce `value` to an aware UTC datetime truncated to the millisecond.

    Accepts aware or naive datetimes (naive means UTC) and epoch seconds.

    Raises:
        InvalidTime: On `None`, NaN, infinity, out-of-range or unsupported values.
    """
    if value is None or isinstance(value, bool):
        raise InvalidTime(f"Invalid instant: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise InvalidTime(f"Non-finite instant: {value!r}")
        try:
            dt = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise InvalidTime(f"Instant out of range: {value!r}") from e
    elif isinstance(value, datetime):
        dt = value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
    else:
        raise InvalidTime(f"Unsupported instant type: {type(value).__name__}")
    return dt.replace(microsecond=dt.microsecond // 1000 * 1000)


def _zone(zone: Optional[tzinfo]) -> tzinfo:
    return zone if zone is not None else settings.revision_timezone


# Task day
def start_of_task_day(now: Any) -> datetime:
    now = to_utc(now)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_task_day(now: Any) -> datetime:
    return start_of_task_day(now) + ONE_DAY - ONE_MS


def today_due_at(now: Any) -> datetime:
    """End of the current task day (inclusive, last millisecond)."""
    return end_of_task_day(now)


# Week
def _upcoming_week_due(now: datetime) -> datetime:
    start = start_of_task_day(now)
    days_until_sunday = (SUNDAY - start.weekday()) % 7 or 7
    return start + timedelta(days=days_until_sunday) + ONE_DAY - ONE_MS


def _is_late_week(now: datetime) -> bool:
    return now.weekday() in LATE_WEEK_DAYS


def upcoming_week_due_at(now: Any) -> datetime:
    """End of the first Sunday after the current task day."""
    return _upcoming_week_due(to_utc(now))


def next_week_due_at(now: Any) -> datetime:
    """One week after `upcoming_week_due_at(now)`."""
    return _upcoming_week_due(to_utc(now)) + ONE_WEEK


def _week_due_with_late_push(now: Any) -> datetime:
    now = to_utc(now)
    if _is_late_week(now):
        return next_week_due_at(now)
    return upcoming_week_due_at(now)


def week_due_at(now: Any) -> datetime:
    """
    Default due date for an item entering `week`.

    Items added on a Friday or Saturday (UTC) skip the imminent Sunday so a
    weekly window is never just a day or two long.
    """
    return _week_due_with_late_push(now)


def weekly_due_at_after_completion(now: Any) -> datetime:
    """
    Due date for an item that stays in or moves to `week` after a completion.

    Currently applies the same Friday/Saturday push as `week_due_at`; kept as a
    separate entry point so the two rules can diverge.
    """
    return _week_due_with_late_push(now)


# Month
def start_of_month(now: Any, zone: Optional[tzinfo] = None) -> datetime:
    """First instant of the civil month containing `now`, as UTC."""
    local = to_utc(now).astimezone(_zone(zone))
    first = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return first.astimezone(timezone.utc)


def month_due_at(now: Any, zone: Optional[tzinfo] = None) -> datetime:
    """Last millisecond of the civil month containing `now`, as UTC."""
    local = to_utc(now).astimezone(_zone(zone))
    if local.month == 12:
        next_first = local.replace(year=local.year + 1, month=1, day=1)
    else:
        next_first = local.replace(month=local.month + 1, day=1)
    next_first = next_first.replace(hour=0, minute=0, second=0, microsecond=0)
    return next_first.astimezone(timezone.utc) - ONE_MS


def month_key(value: Any, zone: Optional[tzinfo] = None) -> str:
    """`YYYY-MM` of the civil month containing `value`."""
    local = to_utc(value).astimezone(_zone(zone))
    return f"{local.year:04d}-{local.month:02d}"


def due_at_for_bucket(bucket: str, now: Any) -> datetime:
    if bucket == "today":
        return today_due_at(now)
    if bucket == "week":
        return week_due_at(now)
    if bucket == "month":
        return month_due_at(now)
    raise ValueError(f"Unknown bucket: {bucket!r}")
