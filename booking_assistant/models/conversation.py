"""Pydantic models tracking a caller's dialogue across turns."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Intent(str, Enum):
    BOOK = "book"
    CHECK_AVAILABILITY = "check_availability"
    LIST_APPOINTMENTS = "list_appointments"
    CANCEL = "cancel"
    UNKNOWN = "unknown"


class DialogueState(str, Enum):
    IDLE = "idle"
    COLLECTING_SLOTS = "collecting_slots"
    CONFIRMING = "confirming"
    FULFILLED = "fulfilled"


# Slots that belong to the caller rather than to a single request. They
# survive fulfilment so a returning caller isn't asked for them twice.
CONTACT_SLOTS = ("name", "email", "phone", "company")
REQUEST_SLOTS = ("date", "time", "duration", "inquiry", "booking_id")


class Turn(BaseModel):
    role: str  # "user" or "assistant"
    text: str
    at: float = Field(default_factory=time.time)


class ConversationSession(BaseModel):
    """Mutable dialogue state for one session id.

    Slots are populated progressively as the caller supplies details and
    persist across turns until the intent is fulfilled or abandoned.
    """

    session_id: str
    intent: Intent = Intent.UNKNOWN
    state: DialogueState = DialogueState.IDLE
    slots: dict[str, Any] = {}
    history: list[Turn] = []
    last_active: float = 0.0

    def missing(self, required: tuple[str, ...]) -> list[str]:
        return [name for name in required if not self.slots.get(name)]

    def clear_request_slots(self) -> None:
        for name in REQUEST_SLOTS:
            self.slots.pop(name, None)

    def add_turn(self, role: str, text: str, max_turns: int) -> None:
        self.history.append(Turn(role=role, text=text))
        if len(self.history) > max_turns:
            self.history = self.history[-max_turns:]


class ConversationReply(BaseModel):
    """What one processed turn hands back: text for TTS plus the context."""

    response: str
    context: ConversationSession
