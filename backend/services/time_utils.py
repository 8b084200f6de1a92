# backend/services/time_utils.py
"""
Clock, normalization and validation helpers for appointment dates and times.

Canonical formats are "YYYY-MM-DD" for dates and "HH:MM" (24-hour) for times.
"""

import os
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Kolkata")

DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
DATE_IN_TEXT_RE = re.compile(r'\b(\d{4}-\d{2}-\d{2})\b')
TIME_RE = re.compile(r'^\d{2}:\d{2}$')
AMPM_RE = re.compile(r'^(\d{1,2})(?::(\d{2}))?\s*(am|pm)$')
TODAY_RE = re.compile(r'\btoday\b', re.I)
TOMORROW_RE = re.compile(r'\btomorrow\b', re.I)

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}
MONTH_PATTERN = "|".join(sorted(MONTHS, key=len, reverse=True))
DAY_MONTH_RE = re.compile(r'\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?(' + MONTH_PATTERN + r')\b\.?', re.I)
MONTH_DAY_RE = re.compile(r'\b(' + MONTH_PATTERN + r')\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b', re.I)


def _clinic_tz():
    try:
        return ZoneInfo(CLINIC_TIMEZONE)
    except ZoneInfoNotFoundError:
        # no tz database on this host; IST fixed offset
        return timezone(timedelta(hours=5, minutes=30))


def now_local() -> datetime:
    return datetime.now(tz=_clinic_tz())


def today() -> date:
    return now_local().date()


def now_iso() -> str:
    """ISO timestamp in the clinic time zone."""
    return now_local().isoformat()


def convert_12h(hour: int, ampm: Optional[str]) -> int:
    """Apply the am/pm rule: pm adds 12 to 1-11, 12am is midnight."""
    ampm = (ampm or "").lower()
    if ampm == "pm" and hour < 12:
        return hour + 12
    if ampm == "am" and hour == 12:
        return 0
    return hour


def normalize_time(text: str) -> str:
    """
    Convert "4pm", "11am", "2:30pm", "12am" to "HH:MM".
    "HH:MM" passes through; anything unrecognized is returned as-is (trimmed),
    so callers still need is_valid_time().
    """
    if not text:
        return ""
    s = text.strip().lower()
    if TIME_RE.match(s):
        return s
    m = AMPM_RE.match(s)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        if 1 <= hour <= 12 and 0 <= minute < 60:
            return f"{convert_12h(hour, m.group(3)):02d}:{minute:02d}"
    return text.strip()


def month_number(name: str) -> Optional[int]:
    return MONTHS.get((name or "").lower().rstrip("."))


def resolve_month_day(month: int, day: int, ref: Optional[date] = None) -> str:
    """Resolve a month/day without a year: this year, or next year if already past."""
    ref = ref or today()
    try:
        cand = date(ref.year, month, day)
    except ValueError:
        return ""
    if cand < ref:
        try:
            cand = date(ref.year + 1, month, day)
        except ValueError:
            # 29 feb with no leap year ahead
            return ""
    return cand.isoformat()


def normalize_date(text: str, ref: Optional[date] = None) -> str:
    """
    Resolve "today", "tomorrow", "on 2025-11-04", "4 nov", "november 4th" to "YYYY-MM-DD".
    Returns "" when nothing date-like is found.
    """
    if not text:
        return ""
    s = text.strip()
    if DATE_RE.match(s):
        return s
    ref = ref or today()
    if TODAY_RE.search(s):
        return ref.isoformat()
    if TOMORROW_RE.search(s):
        return (ref + timedelta(days=1)).isoformat()
    m = DATE_IN_TEXT_RE.search(s)
    if m and is_valid_date(m.group(1)):
        return m.group(1)
    m = DAY_MONTH_RE.search(s)
    if m:
        return resolve_month_day(month_number(m.group(2)), int(m.group(1)), ref)
    m = MONTH_DAY_RE.search(s)
    if m:
        return resolve_month_day(month_number(m.group(1)), int(m.group(2)), ref)
    return ""


def is_valid_date(value: str) -> bool:
    if not value or not DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def is_valid_time(value: str) -> bool:
    if not value or not TIME_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%H:%M")
    except ValueError:
        return False
    return True


def validate_appointment_fields(date_str: str, time_str: str) -> None:
    """Reject directly supplied date/time values that are not canonical."""
    if not is_valid_date(date_str):
        raise ValueError(f"invalid date {date_str!r}: expected a real calendar date as YYYY-MM-DD")
    if not is_valid_time(time_str):
        raise ValueError(f"invalid time {time_str!r}: expected 24-hour HH:MM")
