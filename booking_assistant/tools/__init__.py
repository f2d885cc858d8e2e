"""Agent-callable voice functions."""

from .appointments import CancelAppointmentFunction, GetUpcomingAppointmentsFunction
from .base import VoiceFunction
from .booking import BookAppointmentFunction
from .calendar import CheckAvailabilityFunction

__all__ = [
    "BookAppointmentFunction",
    "CancelAppointmentFunction",
    "CheckAvailabilityFunction",
    "GetUpcomingAppointmentsFunction",
    "VoiceFunction",
]
