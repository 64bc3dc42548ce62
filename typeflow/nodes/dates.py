"""Date helpers for the DateTime node. All arithmetic is done in UTC."""

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from .base import DateUnit

FORMAT_TOKENS = re.compile(r"YYYY|MM|DD|HH|mm|ss")

_FIXED_UNITS = {
    DateUnit.SECONDS: timedelta(seconds=1),
    DateUnit.MINUTES: timedelta(minutes=1),
    DateUnit.HOURS: timedelta(hours=1),
    DateUnit.DAYS: timedelta(days=1),
    DateUnit.WEEKS: timedelta(weeks=1),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value: Any) -> datetime:
    """Parse an ISO-8601 string, epoch milliseconds or a datetime.

    Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid date value: {value!r}") from None
    else:
        raise ValueError(f"Invalid date value: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso_string(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. ``2024-01-25T00:00:00.000Z``."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def format_date(moment: datetime, pattern: Optional[str] = None) -> str:
    """Apply ``YYYY MM DD HH mm ss`` tokens; no pattern gives ISO-8601."""
    if not pattern:
        return to_iso_string(moment)
    moment = moment.astimezone(timezone.utc)
    values = {
        "YYYY": f"{moment.year:04d}",
        "MM": f"{moment.month:02d}",
        "DD": f"{moment.day:02d}",
        "HH": f"{moment.hour:02d}",
        "mm": f"{moment.minute:02d}",
        "ss": f"{moment.second:02d}",
    }
    return FORMAT_TOKENS.sub(lambda match: values[match.group(0)], pattern)


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def add_to_date(moment: datetime, amount: float, unit: DateUnit) -> datetime:
    """Shift by ``amount`` units. Month and year shifts clamp to month end."""
    unit = DateUnit(unit)
    if unit in _FIXED_UNITS:
        return moment + _FIXED_UNITS[unit] * amount
    if unit == DateUnit.MONTHS:
        return _add_months(moment, int(amount))
    return _add_months(moment, int(amount) * 12)


def extract_from_date(moment: datetime, part: str) -> int:
    """Numeric part of a date; month is 1-indexed, dayOfWeek has Sunday as 0."""
    moment = moment.astimezone(timezone.utc)
    if part == "year":
        return moment.year
    if part == "month":
        return moment.month
    if part == "day":
        return moment.day
    if part == "hour":
        return moment.hour
    if part == "minute":
        return moment.minute
    if part == "second":
        return moment.second
    if part == "dayOfWeek":
        return (moment.weekday() + 1) % 7
    return 0
