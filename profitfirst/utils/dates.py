"""
IST calendar helpers

Every day bucket, cache key and source query is expressed in India Standard
Time (UTC+5:30). Instants coming from sources are converted with ist_day()
before they are compared against a DateRange.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator, List, Optional, Tuple

import pytz
from dateutil import parser as date_parser

from profitfirst.exceptions import InvalidDateRange

IST = pytz.timezone("Asia/Kolkata")


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of IST calendar days."""
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise InvalidDateRange(
                f"start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def iter_days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def key(self) -> str:
        return f"{self.start.isoformat()}:{self.end.isoformat()}"

    def to_dict(self) -> dict:
        return {"startDate": self.start.isoformat(), "endDate": self.end.isoformat()}


def today_ist(now: Optional[datetime] = None) -> date:
    """Current calendar day in IST."""
    now = now or datetime.now(pytz.UTC)
    if now.tzinfo is None:
        now = pytz.UTC.localize(now)
    return now.astimezone(IST).date()


def to_ist(dt: datetime, naive_tz=pytz.UTC) -> datetime:
    """Convert an instant to IST. Naive values are read in ``naive_tz``."""
    if dt.tzinfo is None:
        dt = naive_tz.localize(dt)
    return dt.astimezone(IST)


def ist_day(dt: datetime, naive_tz=pytz.UTC) -> date:
    """IST calendar day an instant falls on."""
    return to_ist(dt, naive_tz).date()


def day_label(day: date) -> str:
    """Chart label, e.g. 'Oct 2'."""
    return f"{day.strftime('%b')} {day.day}"


def parse_instant(value, naive_tz=pytz.UTC) -> Optional[datetime]:
    """Parse an ISO or free-form timestamp into an aware datetime (None if unparseable)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
        return IST.localize(dt)
    else:
        try:
            dt = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = naive_tz.localize(dt)
    return dt


def parse_day(value: str) -> date:
    """
    Parse a date parameter into an IST calendar day.

    Plain 'YYYY-MM-DD' strings are taken as-is; full timestamps are converted
    to the IST day they fall on.
    """
    text = (value or "").strip()
    if not text:
        raise InvalidDateRange("empty date")
    try:
        if len(text) == 10:
            return datetime.strptime(text, "%Y-%m-%d").date()
        return ist_day(date_parser.isoparse(text))
    except (ValueError, OverflowError) as e:
        raise InvalidDateRange(f"invalid date '{value}': {e}") from e


def default_range(days: int = 30, now: Optional[datetime] = None) -> DateRange:
    """Trailing window ending today (IST), inclusive of today."""
    end = today_ist(now)
    start = end - timedelta(days=max(days, 1) - 1)
    return DateRange(start, end)


def resolve_range(
    start: Optional[str],
    end: Optional[str],
    default_days: int = 30,
    now: Optional[datetime] = None,
) -> DateRange:
    """Build the request range; both bounds missing (or either) falls back to the default window."""
    if not start or not end:
        return default_range(default_days, now)
    return DateRange(parse_day(start), parse_day(end))


def utc_bounds(date_range: DateRange) -> Tuple[str, str]:
    """UTC ISO timestamps covering the IST days of the range (start 00:00:00, end 23:59:59)."""
    start = IST.localize(datetime.combine(date_range.start, time(0, 0, 0)))
    end = IST.localize(datetime.combine(date_range.end, time(23, 59, 59)))
    fmt = "%Y-%m-%dT%H:%M:%SZ"
    return start.astimezone(pytz.UTC).strftime(fmt), end.astimezone(pytz.UTC).strftime(fmt)


def month_start(day: date) -> date:
    return day.replace(day=1)


def add_months(day: date, months: int) -> date:
    """First day of the month ``months`` away from ``day``'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_name(day: date) -> str:
    return day.strftime("%B")


def trailing_months(today: date, count: int) -> List[date]:
    """First days of the ``count`` complete months before ``today``'s month, oldest first."""
    return [add_months(today, -i) for i in range(count, 0, -1)]
