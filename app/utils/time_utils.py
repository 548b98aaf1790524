"""
Time-of-day helpers for the scheduling core.

All schedule times are wall-clock "HH:MM" strings in the cleaner's timezone
and are compared as minutes since midnight. Intervals are half-open
[start, end): an interval ending at 10:00 does not overlap one starting at
10:00. "24:00" is accepted as an end time and means end of day.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config.config import Config

MINUTES_PER_DAY = 24 * 60

_TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')


def parse_time(value: str, allow_end_of_day: bool = False) -> int:
    """Parse "HH:MM" into minutes since midnight"""
    if not isinstance(value, str):
        raise ValueError(f"Invalid time: {value!r}")
    match = _TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time format: {value!r} (expected HH:MM)")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59:
        raise ValueError(f"Invalid time: {value!r}")
    total = hours * 60 + minutes
    if total == MINUTES_PER_DAY and allow_end_of_day:
        return total
    if hours > 23:
        raise ValueError(f"Invalid time: {value!r}")
    return total


def format_minutes(minutes: int) -> str:
    """Format minutes since midnight as "HH:MM" ("24:00" for end of day)"""
    if minutes < 0 or minutes > MINUTES_PER_DAY:
        raise ValueError(f"Minutes out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def hours_to_minutes(hours: float) -> int:
    return int(round(float(hours) * 60))


def end_time_for(start_time: str, hours: float) -> str:
    """End time of a slot starting at start_time lasting the given hours"""
    end = parse_time(start_time) + hours_to_minutes(hours)
    if end > MINUTES_PER_DAY:
        raise ValueError(f"A {hours}h slot starting at {start_time} runs past midnight")
    return format_minutes(end)


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """
    True when two half-open intervals share at least one minute.

    Covers a starting inside b, ending inside b, being contained by b and
    containing b. Touching endpoints are not an overlap.
    """
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class Interval:
    """An occupied stretch of one calendar day"""

    start: int
    end: int
    source: str
    title: Optional[str] = None
    booking_id: Optional[int] = None

    @property
    def start_time(self) -> str:
        return format_minutes(self.start)

    @property
    def end_time(self) -> str:
        return format_minutes(self.end)

    def overlaps(self, start: int, end: int) -> bool:
        return intervals_overlap(self.start, self.end, start, end)

    def to_dict(self) -> dict:
        data = {
            'start_time': self.start_time,
            'end_time': self.end_time,
            'source': self.source
        }
        if self.title:
            data['title'] = self.title
        if self.booking_id is not None:
            data['booking_id'] = self.booking_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Interval':
        return cls(
            start=parse_time(data['start_time']),
            end=parse_time(data['end_time'], allow_end_of_day=True),
            source=data['source'],
            title=data.get('title'),
            booking_id=data.get('booking_id')
        )


def parse_date(value) -> date:
    """Parse a YYYY-MM-DD string (dates and datetimes pass through)"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f"Invalid date format: {value!r} (expected YYYY-MM-DD)")


def get_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or Config.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(Config.DEFAULT_TIMEZONE)


def today_in(timezone_name: Optional[str]) -> date:
    """Today's date in the given IANA timezone"""
    return datetime.now(get_zone(timezone_name)).date()
