"""Booking function for the voice agent.

The agent calls ``book_appointment`` after the caller has confirmed the
details.  It creates the booking and returns a speakable confirmation;
emails, calendar and CRM follow in the background.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from booking_assistant.config import Settings
from booking_assistant.errors import ValidationError
from booking_assistant.models.booking import BookingRequest
from booking_assistant.models.envelope import VoiceFunctionResult
from booking_assistant.orchestrator import BookingOrchestrator
from booking_assistant.speech import say_when
from booking_assistant.timeparse import parse_time

from .base import VoiceFunction
from .common import appointment_payload, coerce_date, coerce_duration, require

logger = logging.getLogger(__name__)


class BookAppointmentFunction(VoiceFunction):
    """Book an appointment.

    Parameters accepted from the agent:

    * ``name``, ``email``  -- Requester (required).
    * ``phone``, ``company``, ``inquiry`` -- Optional details.
    * ``date``             -- Date string ``YYYY-MM-DD``.
    * ``time``             -- Time string ``HH:MM`` (24-hour) or ``2 PM``.
    * ``duration``         -- Minutes (default from settings).
    """

    def __init__(self, orchestrator: BookingOrchestrator, settings: Settings) -> None:
        self._orchestrator = orchestrator
        self._settings = settings

    @property
    def name(self) -> str:
        return "book_appointment"

    @property
    def description(self) -> str:
        return (
            "Book an appointment once the caller has confirmed the details. "
            "Requires name, email, date and time."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Full name of the caller."},
                "email": {"type": "string", "description": "Email address of the caller."},
                "phone": {"type": "string", "description": "Phone number of the caller."},
                "company": {"type": "string", "description": "Company the caller represents."},
                "date": {"type": "string", "description": "Appointment date in YYYY-MM-DD format."},
                "time": {"type": "string", "description": "Start time in HH:MM (24-hour) format."},
                "duration": {
                    "type": "integer",
                    "enum": list(self._settings.allowed_durations),
                    "description": "Appointment length in minutes.",
                },
                "inquiry": {"type": "string", "description": "What the caller wants to discuss."},
            },
            "required": ["name", "email", "date", "time"],
        }

    async def execute(
        self,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        company: Optional[str] = None,
        date: Optional[str] = None,
        time: Optional[str] = None,
        duration: Any = None,
        inquiry: Optional[str] = None,
        **_: Any,
    ) -> VoiceFunctionResult:
        tz = self._settings.tz
        caller = require(name, "name", "Who should I put the booking under?")
        address = require(email, "email", "What email address should I send the confirmation to?")
        day = coerce_date(date, self._orchestrator.now().astimezone(tz).date())
        try:
            start_clock = parse_time(require(time, "time", "What time works for you?"))
        except ValueError:
            raise ValidationError(
                "I didn't catch the time. Could you say it again?", field="time"
            ) from None
        minutes = coerce_duration(
            duration, self._settings.default_duration_minutes, self._settings.allowed_durations
        )

        request = BookingRequest(
            name=caller,
            email=address,
            phone=phone or "",
            company=company or None,
            start_time=datetime.combine(day, start_clock, tzinfo=tz),
            duration=minutes,
            inquiry=inquiry or "",
        )
        booking = await self._orchestrator.create_booking(request)

        first_name = booking.name.split()[0]
        when = say_when(booking.start_time.astimezone(tz))
        logger.info("Voice booking %s created", booking.id)
        return VoiceFunctionResult.ok(
            f"You're all set, {first_name}. Your {booking.duration} minute appointment "
            f"is booked for {when}. A confirmation email is on its way to {booking.email}.",
            booking_id=booking.id,
            booking=appointment_payload(booking, tz),
        )
