"""Functions that let a caller review and cancel their own appointments."""

from __future__ import annotations

import logging
from typing import Any, Optional

from booking_assistant.config import Settings
from booking_assistant.models.booking import BookingStatus
from booking_assistant.models.envelope import VoiceFunctionResult
from booking_assistant.orchestrator import BookingOrchestrator
from booking_assistant.speech import say_when

from .base import VoiceFunction
from .common import appointment_payload, require

logger = logging.getLogger(__name__)


class GetUpcomingAppointmentsFunction(VoiceFunction):
    """List a caller's future appointments, soonest first."""

    def __init__(self, orchestrator: BookingOrchestrator, settings: Settings) -> None:
        self._orchestrator = orchestrator
        self._settings = settings

    @property
    def name(self) -> str:
        return "get_upcoming_appointments"

    @property
    def description(self) -> str:
        return "Look up the caller's upcoming appointments by email address."

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "email": {
                    "type": "string",
                    "description": "Email address the appointments were booked with.",
                },
            },
            "required": ["email"],
        }

    async def execute(self, email: Optional[str] = None, **_: Any) -> VoiceFunctionResult:
        address = require(email, "email", "What email address did you book with?")
        bookings = await self._orchestrator.list_upcoming(address)
        tz = self._settings.tz
        appointments = [appointment_payload(b, tz) for b in bookings]

        if not bookings:
            message = f"I don't see any upcoming appointments for {address.lower()}."
        elif len(bookings) == 1:
            message = f"You have one upcoming appointment, on {appointments[0]['when']}."
        else:
            message = (
                f"You have {len(bookings)} upcoming appointments. "
                f"The next one is on {appointments[0]['when']}."
            )
        return VoiceFunctionResult.ok(message, appointments=appointments)


class CancelAppointmentFunction(VoiceFunction):
    """Cancel an appointment after checking it belongs to the caller."""

    def __init__(self, orchestrator: BookingOrchestrator, settings: Settings) -> None:
        self._orchestrator = orchestrator
        self._settings = settings

    @property
    def name(self) -> str:
        return "cancel_appointment"

    @property
    def description(self) -> str:
        return (
            "Cancel one of the caller's appointments. The email must match "
            "the one the appointment was booked with."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "email": {
                    "type": "string",
                    "description": "Email address the appointment was booked with.",
                },
                "booking_id": {
                    "type": "string",
                    "description": "Reference of the appointment to cancel.",
                },
            },
            "required": ["email", "booking_id"],
        }

    async def execute(
        self,
        email: Optional[str] = None,
        booking_id: Optional[str] = None,
        **_: Any,
    ) -> VoiceFunctionResult:
        address = require(email, "email", "What email address did you book with?")
        reference = require(booking_id, "booking_id", "Which appointment would you like to cancel?")

        before = await self._orchestrator.get_booking_by_id(reference)
        booking = await self._orchestrator.cancel_booking(reference, requester_email=address)
        when = say_when(booking.start_time.astimezone(self._settings.tz))

        if before.status == BookingStatus.CANCELLED:
            message = f"Your appointment on {when} was already cancelled."
        else:
            logger.info("Voice cancellation of booking %s", booking.id)
            message = f"Your appointment on {when} has been cancelled."
        return VoiceFunctionResult.ok(message, booking_id=booking.id)
