"""Data models for the booking assistant."""

from .booking import (
    Booking,
    BookingFilter,
    BookingRequest,
    BookingStatus,
    BookingUpdate,
)
from .conversation import (
    ConversationReply,
    ConversationSession,
    DialogueState,
    Intent,
)
from .envelope import VoiceFunctionResult

__all__ = [
    "Booking",
    "BookingFilter",
    "BookingRequest",
    "BookingStatus",
    "BookingUpdate",
    "ConversationReply",
    "ConversationSession",
    "DialogueState",
    "Intent",
    "VoiceFunctionResult",
]
