from __future__ import annotations

from datetime import date, datetime
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import holidays as pyholidays

from .errors import InvalidTimeFormat, ValidationError

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")
_HOLIDAY_CACHE: dict[tuple[str, int], set[date]] = {}


def parse_date(date_text: str) -> date:
    if not isinstance(date_text, str) or not _DATE_RE.match(date_text):
        raise InvalidTimeFormat(f"Invalid date {date_text!r}. Expected format: YYYY-MM-DD")
    try:
        return datetime.strptime(date_text, "%Y-%m-%d").date()
    except ValueError as error:
        raise InvalidTimeFormat(f"Invalid date {date_text!r}: {error}") from error


def parse_time(time_text: str) -> tuple[int, int]:
    if not isinstance(time_text, str) or not _TIME_RE.match(time_text):
        raise InvalidTimeFormat(f"Invalid time {time_text!r}. Expected format: HH:MM")
    hour, minute = time_text.split(":")
    return int(hour), int(minute)


def parse_slot(date_text: str, time_text: str, timezone: str = "UTC") -> datetime:
    """Combine a ``YYYY-MM-DD`` date and a ``HH:MM`` time into an aware datetime."""
    day = parse_date(date_text)
    hour, minute = parse_time(time_text)
    try:
        zone = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as error:
        raise InvalidTimeFormat(f"Unknown timezone {timezone!r}") from error
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=zone)


def has_time_overlap(new_start, new_end, exist_start, exist_end) -> bool:
    """Return True when two time intervals overlap by even one minute.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 10:00-11:00 and 11:00-12:00) do not overlap.
    Works with datetimes and with zero-padded ``HH:MM`` strings on the same day.
    """
    if new_start >= new_end:
        raise ValueError("new_start must be earlier than new_end.")
    if exist_start >= exist_end:
        raise ValueError("exist_start must be earlier than exist_end.")

    return new_start < exist_end and new_end > exist_start


def duration_minutes(start_time: str, end_time: str) -> int:
    start_hour, start_minute = parse_time(start_time)
    end_hour, end_minute = parse_time(end_time)
    minutes = (end_hour * 60 + end_minute) - (start_hour * 60 + start_minute)
    if minutes <= 0:
        raise ValidationError("End time must be after start time")
    return minutes


def is_public_holiday(target_date: date, country: str) -> bool:
    key = (country.upper(), target_date.year)
    if key not in _HOLIDAY_CACHE:
        holiday_map = pyholidays.country_holidays(key[0], years=[key[1]])
        _HOLIDAY_CACHE[key] = set(holiday_map.keys())
    return target_date in _HOLIDAY_CACHE[key]
