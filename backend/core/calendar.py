"""
School Calendar Utilities

All calendar dates are stored as ISO strings (YYYY-MM-DD) and interpreted
in the school's local timezone. Day-of-week numbers follow the admin
panel convention:

- 0 = Sunday
- 1 = Monday
- ...
- 6 = Saturday
"""

import calendar as _calendar
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Tuple, Union
from zoneinfo import ZoneInfo

from .config import SCHOOL_TIMEZONE

DateLike = Union[date, datetime, str]

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp used for createdAt/updatedAt audit fields."""
    return datetime.now(timezone.utc).isoformat()


class SchoolCalendar:
    """Date helpers anchored to the school's timezone"""

    TZ = ZoneInfo(SCHOOL_TIMEZONE)

    @staticmethod
    def now() -> datetime:
        return datetime.now(SchoolCalendar.TZ)

    @staticmethod
    def today() -> date:
        return SchoolCalendar.now().date()

    @staticmethod
    def tomorrow() -> date:
        return SchoolCalendar.today() + timedelta(days=1)

    @staticmethod
    def days_from_today(days: int) -> date:
        return SchoolCalendar.today() + timedelta(days=days)

    @staticmethod
    def to_date(value: DateLike) -> date:
        """
        Coerce a date, datetime or ISO string into a calendar date.

        Datetimes carrying a timezone are converted to school time first so a
        late-evening UTC timestamp lands on the correct local day.

        Raises:
            ValueError: If the value cannot be interpreted as a date
        """
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(SchoolCalendar.TZ)
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str) and value:
            text = value.strip()
            if len(text) == 10:
                return date.fromisoformat(text)
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            return SchoolCalendar.to_date(parsed)
        raise ValueError(f"Invalid date: {value!r}")

    @staticmethod
    def date_key(value: DateLike) -> str:
        """YYYY-MM-DD key used for storage and comparisons"""
        return SchoolCalendar.to_date(value).isoformat()

    @staticmethod
    def day_of_week(value: DateLike) -> int:
        """Day of week with Sunday as 0"""
        return (SchoolCalendar.to_date(value).weekday() + 1) % 7

    @staticmethod
    def day_name(day: int) -> str:
        return DAY_NAMES[day % 7]

    @staticmethod
    def iter_dates(start: DateLike, end: DateLike) -> Iterator[date]:
        """Yield every date from start to end, inclusive"""
        current = SchoolCalendar.to_date(start)
        last = SchoolCalendar.to_date(end)
        while current <= last:
            yield current
            current += timedelta(days=1)

    @staticmethod
    def month_bounds(year: int, month: int) -> Tuple[str, str]:
        """First and last date keys of a month"""
        last_day = _calendar.monthrange(year, month)[1]
        return date(year, month, 1).isoformat(), date(year, month, last_day).isoformat()

    @staticmethod
    def year_bounds(year: int) -> Tuple[str, str]:
        return date(year, 1, 1).isoformat(), date(year, 12, 31).isoformat()

    @staticmethod
    def combine(day: DateLike, time_text: str) -> datetime:
        """Aware datetime for a date key plus an HH:MM time in school time"""
        hours, minutes = (int(part) for part in time_text.split(":")[:2])
        d = SchoolCalendar.to_date(day)
        return datetime(d.year, d.month, d.day, hours, minutes, tzinfo=SchoolCalendar.TZ)

    @staticmethod
    def is_past(day: DateLike, time_text: str = "23:59") -> bool:
        """True once the given date and time are behind the school clock"""
        return SchoolCalendar.combine(day, time_text) < SchoolCalendar.now()


def today_key() -> str:
    """Convenience function for today's date key in school time"""
    return SchoolCalendar.today().isoformat()
