"""
Date normalization and recurrence evaluation.
All comparisons happen on UTC calendar dates with the time component stripped.
"""
import logging
from datetime import datetime, date, timedelta, timezone
from typing import Iterable, Optional, Union

from fitquest.constants import (
    RECURRENCE_ONCE,
    RECURRENCE_DAILY,
    RECURRENCE_WEEKDAYS,
    RECURRENCE_WEEKENDS,
    RECURRENCE_WEEKLY,
    RECURRENCE_CUSTOM,
    SUNDAY,
    SATURDAY,
)
from fitquest.exceptions import InvalidTimeFormatException

logger = logging.getLogger("fitquest.dates")

DateLike = Union[date, datetime, str]


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DateService:
    """Service for date-related operations"""

    @staticmethod
    def today_utc() -> date:
        """Get today's UTC calendar date"""
        return datetime.now(timezone.utc).date()

    @staticmethod
    def normalize_date(value: DateLike) -> date:
        """
        Normalize a date, datetime or ISO string to a UTC calendar date.

        Aware datetimes are converted to UTC first; naive datetimes are
        taken to already be in UTC.

        Args:
            value: Date to normalize

        Returns:
            Calendar date at UTC midnight
        """
        if isinstance(value, str):
            value = DateService._parse_iso(value)

        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc)
            return value.date()

        return value

    @staticmethod
    def _parse_iso(value: str) -> DateLike:
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)

    @staticmethod
    def date_key(value: DateLike) -> str:
        """Format a date as its YYYY-MM-DD key"""
        return DateService.normalize_date(value).isoformat()

    @staticmethod
    def days_between(first: DateLike, second: DateLike) -> int:
        """Whole days from first to second (negative if second is earlier)"""
        return (DateService.normalize_date(second) - DateService.normalize_date(first)).days

    @staticmethod
    def weekday_index(value: date) -> int:
        """Weekday with 0 = Sunday ... 6 = Saturday"""
        return (value.weekday() + 1) % 7

    @staticmethod
    def is_due(
        recurrence_pattern: str,
        start_date: DateLike,
        check_date: DateLike,
        custom_days: Optional[Iterable[int]] = None
    ) -> bool:
        """
        Check whether a recurring item is due on a date.

        Args:
            recurrence_pattern: once, daily, weekdays, weekends, weekly or custom
            start_date: Creation/reference date of the item
            check_date: Date to check
            custom_days: Weekday indices (0 = Sunday) for the custom pattern

        Returns:
            True if due. Unknown patterns are never due.
        """
        check = DateService.normalize_date(check_date)
        start = DateService.normalize_date(start_date)

        if recurrence_pattern == RECURRENCE_ONCE:
            return check == start

        if check < start:
            return False

        weekday = DateService.weekday_index(check)

        if recurrence_pattern == RECURRENCE_DAILY:
            return True
        if recurrence_pattern == RECURRENCE_WEEKDAYS:
            return SUNDAY < weekday < SATURDAY
        if recurrence_pattern == RECURRENCE_WEEKENDS:
            return weekday in (SUNDAY, SATURDAY)
        if recurrence_pattern == RECURRENCE_WEEKLY:
            return (check - start).days % 7 == 0
        if recurrence_pattern == RECURRENCE_CUSTOM:
            return weekday in set(custom_days or [])

        logger.warning(f"Unknown recurrence pattern: {recurrence_pattern}")
        return False

    @staticmethod
    def parse_time(time_str: str) -> tuple[int, int]:
        """
        Parse time string into hour and minute.

        Args:
            time_str: Time string in "HH:MM" format

        Returns:
            Tuple of (hour, minute)

        Raises:
            InvalidTimeFormatException: If time string is invalid
        """
        parts = time_str.split(":") if time_str else []
        try:
            if len(parts) != 2 or len(parts[1]) != 2:
                raise ValueError(time_str)
            hour = int(parts[0])
            minute = int(parts[1])
        except ValueError:
            raise InvalidTimeFormatException(time_str)

        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise InvalidTimeFormatException(time_str)
        return hour, minute

    @staticmethod
    def get_day_range(target_date: date) -> tuple[datetime, datetime]:
        """
        Get datetime range for a full day (midnight to midnight).

        Args:
            target_date: Date to get range for

        Returns:
            Tuple of (day_start, day_end) datetimes
        """
        day_start = datetime.combine(target_date, datetime.min.time())
        day_end = datetime.combine(target_date + timedelta(days=1), datetime.min.time())
        return day_start, day_end
