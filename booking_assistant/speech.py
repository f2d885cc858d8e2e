"""Helpers that turn dates and times into text suitable for TTS."""

from __future__ import annotations

from datetime import date, datetime, time


def say_time(value: time | datetime) -> str:
    """``14:00`` → ``2 PM``, ``09:30`` → ``9:30 AM``."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    if value.minute:
        return f"{hour}:{value.minute:02d} {suffix}"
    return f"{hour} {suffix}"


def say_date(value: date | datetime) -> str:
    """``2099-01-01`` → ``Thursday, January 1``."""
    return f"{value.strftime('%A, %B')} {value.day}"


def say_when(value: datetime) -> str:
    return f"{say_date(value)} at {say_time(value)}"


def say_list(items: list[str]) -> str:
    """Join items the way a person would read them out."""
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + f" and {items[-1]}"


def redact_pii(value: str) -> str:
    """Mask PII for logging; show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]
