"""Bridge between the external voice agent and the booking orchestrator.

Every operation returns a ``VoiceFunctionResult``; no exception escapes.
The agent platform reaches these either through ``call`` (dispatch by
function name, used by the HTTP endpoint) or through the typed methods.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from booking_assistant.config import Settings
from booking_assistant.models.envelope import VoiceFunctionResult
from booking_assistant.orchestrator import BookingOrchestrator
from booking_assistant.tools import (
    BookAppointmentFunction,
    CancelAppointmentFunction,
    CheckAvailabilityFunction,
    GetUpcomingAppointmentsFunction,
    VoiceFunction,
)

log = logging.getLogger("booking_assistant.voice_functions")

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    """``bookingId`` → ``booking_id``; agent platforms send either form."""
    return _CAMEL.sub("_", key).lower()


class VoiceFunctionsService:
    """The fixed set of operations exposed to the voice agent."""

    def __init__(self, orchestrator: BookingOrchestrator, settings: Settings) -> None:
        self._orchestrator = orchestrator
        functions: list[VoiceFunction] = [
            CheckAvailabilityFunction(orchestrator, settings),
            BookAppointmentFunction(orchestrator, settings),
            GetUpcomingAppointmentsFunction(orchestrator, settings),
            CancelAppointmentFunction(orchestrator, settings),
        ]
        self._functions = {fn.name: fn for fn in functions}

    @property
    def names(self) -> list[str]:
        return list(self._functions)

    def function_schemas(self) -> list[dict]:
        return [fn.schema() for fn in self._functions.values()]

    async def call(
        self, name: str, arguments: Optional[dict[str, Any]] = None,
    ) -> VoiceFunctionResult:
        fn = self._functions.get(name)
        if fn is None:
            log.warning("Unknown voice function %r", name)
            return VoiceFunctionResult.fail(
                "Sorry, I can't do that yet.", "unknown_function"
            )
        kwargs = {_snake(str(k)): v for k, v in (arguments or {}).items()}
        result = await fn.run(**kwargs)
        log.info(
            "Voice function %s -> %s%s",
            name, "ok" if result.success else "failed",
            "" if result.success else f" ({result.error})",
        )
        return result

    # ── Typed entry points ────────────────────────────────────

    async def check_availability(
        self, date: Optional[str] = None, duration: Any = None,
    ) -> VoiceFunctionResult:
        return await self.call("check_availability", {"date": date, "duration": duration})

    async def book_appointment(
        self,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        company: Optional[str] = None,
        date: Optional[str] = None,
        time: Optional[str] = None,
        duration: Any = None,
        inquiry: Optional[str] = None,
    ) -> VoiceFunctionResult:
        return await self.call(
            "book_appointment",
            {
                "name": name, "email": email, "phone": phone, "company": company,
                "date": date, "time": time, "duration": duration, "inquiry": inquiry,
            },
        )

    async def get_upcoming_appointments(self, email: Optional[str] = None) -> VoiceFunctionResult:
        return await self.call("get_upcoming_appointments", {"email": email})

    async def cancel_appointment(
        self, email: Optional[str] = None, booking_id: Optional[str] = None,
    ) -> VoiceFunctionResult:
        return await self.call("cancel_appointment", {"email": email, "booking_id": booking_id})
