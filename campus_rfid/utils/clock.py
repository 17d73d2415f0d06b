"""
Campus clock helpers.

Timestamps are stored naive in campus-local time so that schedule windows
(HH:MM in the timetable) and the late-night rule compare directly.
"""
from datetime import datetime, date, time, timedelta
from zoneinfo import ZoneInfo

from campus_rfid.config import settings

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def campus_now() -> datetime:
    """Current campus-local time, naive."""
    return datetime.now(ZoneInfo(settings.CAMPUS_TIMEZONE)).replace(tzinfo=None)


def weekday_name(moment: datetime) -> str:
    return WEEKDAYS[moment.weekday()]


def at_time(day: date, clock_time: time) -> datetime:
    return datetime.combine(day, clock_time)


def minutes_between(later: datetime, earlier: datetime) -> int:
    """Whole minutes from earlier to later, floored (negative if later < earlier)."""
    return int((later - earlier) // timedelta(minutes=1))


def window_start(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)
