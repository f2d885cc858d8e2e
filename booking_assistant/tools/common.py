"""Argument coercion and payload shaping shared by the voice functions."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional
from zoneinfo import ZoneInfo

from booking_assistant.errors import ValidationError
from booking_assistant.models.booking import Booking
from booking_assistant.speech import say_when
from booking_assistant.timeparse import parse_date


def require(value: Any, field: str, question: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(question, field=field)
    return str(value).strip()


def coerce_date(value: Optional[str], today: date) -> date:
    text = require(value, "date", "Which day would you like?")
    try:
        day = parse_date(text, today)
    except ValueError:
        raise ValidationError(
            "I didn't catch the date. Could you say it another way?", field="date"
        ) from None
    if day < today:
        raise ValidationError("That day has already passed.", field="date")
    return day


def coerce_duration(value: Any, default: int, allowed: list[int]) -> int:
    if value is None or value == "":
        return default
    try:
        minutes = int(float(value))
    except (TypeError, ValueError):
        raise ValidationError("How many minutes should I book?", field="duration") from None
    if minutes not in allowed:
        options = ", ".join(str(d) for d in allowed)
        raise ValidationError(
            f"Appointments can be {options} minutes long.", field="duration"
        )
    return minutes


def appointment_payload(booking: Booking, tz: ZoneInfo) -> dict[str, Any]:
    local = booking.start_time.astimezone(tz)
    return {
        "booking_id": booking.id,
        "date": local.date().isoformat(),
        "time": local.strftime("%H:%M"),
        "start_time": local.isoformat(),
        "duration": booking.duration,
        "status": booking.status.value,
        "when": say_when(local),
    }
