"""Parsing of spoken and typed dates and times.

Used both for voice function arguments (which the agent usually fills in
ISO form) and for free-text slot extraction in the conversation layer.
Relative phrases ("tomorrow", "next friday") are resolved here; absolute
dates and clock times are handed to dateutil.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil import parser as dtparser

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
MONTHS = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

_ISO_DATE = re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b")
_MONTH_DAY = re.compile(
    r"\b(?:" + "|".join(MONTHS) + r"|jan|feb|mar|apr|jun|jul|aug|sept?|oct|nov|dec)\.?\s+"
    r"\d{1,2}(?:st|nd|rd|th)?\b(?:,?\s*(\d{4}))?",
    re.IGNORECASE,
)
_DAY_MONTH = re.compile(
    r"\b\d{1,2}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:" + "|".join(MONTHS) + r")\b(?:,?\s*(\d{4}))?",
    re.IGNORECASE,
)
_WEEKDAY = re.compile(r"\b(next\s+)?(" + "|".join(WEEKDAYS) + r")\b", re.IGNORECASE)

_TIME_12H = re.compile(
    r"\b(\d{1,2})(?::(\d{2}))?\s*(a\.?m\.?|p\.?m\.?)(?=\W|$)", re.IGNORECASE
)
_TIME_24H = re.compile(r"(?<![\d-])(?:[01]?\d|2[0-3]):[0-5]\d(?::\d{2})?(?![\d-])")
_NOON = re.compile(r"\b(noon|midday)\b", re.IGNORECASE)

# Fields a fragment leaves out come from here; only hour/minute are read back.
_TIME_ANCHOR = datetime(2000, 1, 1)


def _parse(fragment: str, default: datetime) -> Optional[datetime]:
    try:
        return dtparser.parse(fragment, fuzzy=True, default=default)
    except (ValueError, OverflowError):
        return None


def _calendar_date(fragment: str, today: date, explicit_year: bool) -> Optional[date]:
    parsed = _parse(fragment, datetime(today.year, 1, 1))
    if parsed is None:
        return None
    candidate = parsed.date()
    if not explicit_year and candidate < today:
        try:
            candidate = candidate.replace(year=today.year + 1)
        except ValueError:
            return None
    return candidate


def find_date(text: str, today: date) -> Optional[date]:
    """Find the first date mentioned in ``text``, relative to ``today``."""
    lowered = text.lower()

    match = _ISO_DATE.search(lowered)
    if match:
        parsed = _parse(match.group(0), datetime(today.year, 1, 1))
        return parsed.date() if parsed else None

    if "day after tomorrow" in lowered:
        return today + timedelta(days=2)
    if re.search(r"\btomorrow\b", lowered):
        return today + timedelta(days=1)
    if re.search(r"\btoday\b|\bthis (?:afternoon|morning|evening)\b", lowered):
        return today

    match = _MONTH_DAY.search(lowered) or _DAY_MONTH.search(lowered)
    if match:
        return _calendar_date(match.group(0), today, explicit_year=bool(match.group(1)))

    match = _WEEKDAY.search(lowered)
    if match:
        target = WEEKDAYS.index(match.group(2).lower())
        ahead = (target - today.weekday()) % 7
        if ahead == 0 or match.group(1):
            ahead = ahead or 7
        return today + timedelta(days=ahead)

    return None


def find_time(text: str) -> Optional[time]:
    """Find the first clock time mentioned in ``text``."""
    match = _TIME_12H.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        # dateutil reads "13pm" as 13:00; a spoken 12-hour time can't be.
        if not 1 <= hour <= 12 or minute > 59:
            return None
        suffix = match.group(3).replace(".", "").lower()
        parsed = _parse(f"{hour}:{minute:02d} {suffix}", _TIME_ANCHOR)
        return parsed.time() if parsed else None

    match = _TIME_24H.search(text)
    if match:
        parsed = _parse(match.group(0), _TIME_ANCHOR)
        return parsed.time().replace(second=0) if parsed else None

    if _NOON.search(text):
        return time(12, 0)
    return None


def parse_date(value: str, today: date) -> date:
    """Parse a voice-function date argument. Raises ValueError."""
    parsed = find_date(value.strip(), today)
    if parsed is None:
        raise ValueError(f"unrecognised date {value!r}")
    return parsed


def parse_time(value: str) -> time:
    """Parse a voice-function time argument. Raises ValueError."""
    parsed = find_time(value.strip())
    if parsed is None:
        raise ValueError(f"unrecognised time {value!r}")
    return parsed
