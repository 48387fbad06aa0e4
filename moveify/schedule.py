"""
Weekly schedules: weekday masks and program date ranges.

Masks are stored as a JSON list of day names ("Mon", "Wed", ...) in the
programs table and handled as frozensets of Weekday everywhere else.
"""

import json
import re
from datetime import date, timedelta
from enum import Enum

from moveify.errors import ValidationError


class Weekday(Enum):
    MON = 'Mon'
    TUE = 'Tue'
    WED = 'Wed'
    THU = 'Thu'
    FRI = 'Fri'
    SAT = 'Sat'
    SUN = 'Sun'

    @classmethod
    def of(cls, day: date) -> 'Weekday':
        return _BY_INDEX[day.weekday()]

    @classmethod
    def parse(cls, value) -> 'Weekday':
        if isinstance(value, Weekday):
            return value
        key = str(value).strip()[:3].capitalize()
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(f'Unknown weekday {value!r}')


_BY_INDEX = list(Weekday)


def parse_mask(values) -> frozenset:
    """Builds a weekday mask from day names (or Weekday members)"""
    return frozenset(Weekday.parse(v) for v in (values or []))


def encode_mask(mask) -> str:
    """Serializes a mask for the programs.frequency column (week order)"""
    return json.dumps([d.value for d in Weekday if d in mask])


def decode_mask(raw) -> frozenset:
    if not raw:
        return frozenset()
    return parse_mask(json.loads(raw))


def is_scheduled_day(day: date, weekday_mask) -> bool:
    return Weekday.of(day) in weekday_mask


def duration_end_date(start: date, duration: str, custom_end_date: date = None):
    """
    Last day covered by a program duration policy.

    'ongoing' (or empty) -> None, '<N>weeks' -> start + N weeks - 1 day,
    'custom' -> custom_end_date.
    """
    if not duration or duration == 'ongoing':
        return None
    if duration == 'custom':
        return custom_end_date
    match = re.fullmatch(r'(\d+)\s*weeks?', duration)
    if not match:
        raise ValidationError(f'Unknown program duration {duration!r}')
    return start + timedelta(weeks=int(match.group(1))) - timedelta(days=1)


def date_range(start: date, end: date):
    """Inclusive day iterator; empty when start > end"""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)
