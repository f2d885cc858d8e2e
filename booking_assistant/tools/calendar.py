"""Check-availability function for the voice agent.

The agent calls ``check_availability`` with a date and a duration to hear
which start times are still open that day.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from booking_assistant.config import Settings
from booking_assistant.models.envelope import VoiceFunctionResult
from booking_assistant.orchestrator import BookingOrchestrator
from booking_assistant.speech import say_date, say_list, say_time

from .base import VoiceFunction
from .common import coerce_date, coerce_duration

logger = logging.getLogger(__name__)

# How many start times to read out before summarising the rest
SPOKEN_SLOTS = 3


class CheckAvailabilityFunction(VoiceFunction):
    """Return open start times on a date.

    Parameters accepted from the agent:

    * ``date``     -- Date string ``YYYY-MM-DD`` (``today``/``tomorrow`` work too).
    * ``duration`` -- Appointment length in minutes (default from settings).
    """

    def __init__(self, orchestrator: BookingOrchestrator, settings: Settings) -> None:
        self._orchestrator = orchestrator
        self._settings = settings

    @property
    def name(self) -> str:
        return "check_availability"

    @property
    def description(self) -> str:
        return (
            "Check which appointment start times are open on a given date. "
            "Returns the open slots in order."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "date": {
                    "type": "string",
                    "description": "Date to check in YYYY-MM-DD format.",
                },
                "duration": {
                    "type": "integer",
                    "enum": list(self._settings.allowed_durations),
                    "description": "Appointment length in minutes.",
                },
            },
            "required": ["date"],
        }

    async def execute(
        self, date: Optional[str] = None, duration: Any = None, **_: Any,
    ) -> VoiceFunctionResult:
        tz = self._settings.tz
        now = self._orchestrator.now()
        day = coerce_date(date, now.astimezone(tz).date())
        minutes = coerce_duration(
            duration, self._settings.default_duration_minutes, self._settings.allowed_durations
        )

        slots = await self._orchestrator.calendar.available_slots(day, minutes, now=now)
        available = [
            {
                "start": slot.start.isoformat(),
                "end": slot.end.isoformat(),
                "time": slot.start.strftime("%H:%M"),
            }
            for slot in slots
        ]
        logger.info("%d open slots on %s for %d minutes", len(available), day, minutes)

        if not slots:
            return VoiceFunctionResult.ok(
                f"I don't have any openings on {say_date(day)}. Would another day work?",
                date=day.isoformat(),
                duration=minutes,
                available_slots=[],
            )

        spoken = [say_time(slot.start) for slot in slots[:SPOKEN_SLOTS]]
        message = f"On {say_date(day)} I have openings at {say_list(spoken)}"
        remaining = len(slots) - len(spoken)
        if remaining:
            message += f", plus {remaining} more"
        message += ". Which time works best for you?"

        return VoiceFunctionResult.ok(
            message,
            date=day.isoformat(),
            duration=minutes,
            available_slots=available,
        )
