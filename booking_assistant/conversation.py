"""Multi-turn dialogue on top of the voice functions.

Each session id gets a ``ConversationSession`` held in a ``SessionStore``.
A turn runs through the state machine::

    idle -> collecting_slots -> confirming -> fulfilled
                 ^                  |
                 +-- correction ----+

An intent on its own keeps the session idle until a date, time, email or
booking reference arrives.  Read-only intents (availability, listing) skip
``confirming``.  Side effects only ever happen through
``VoiceFunctionsService``, so this layer sees envelopes and never
exceptions from below.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import date, datetime, time as dt_time, timezone
from typing import Any, Callable, Optional

from booking_assistant.config import Settings
from booking_assistant.extraction import IntentExtractor, RuleBasedExtractor
from booking_assistant.models.conversation import (
    ConversationReply,
    ConversationSession,
    DialogueState,
    Intent,
)
from booking_assistant.models.envelope import VoiceFunctionResult
from booking_assistant.speech import say_date, say_list, say_time
from booking_assistant.voice_functions import VoiceFunctionsService

log = logging.getLogger("booking_assistant.conversation")

REQUIRED_SLOTS: dict[Intent, tuple[str, ...]] = {
    Intent.BOOK: ("date", "time", "email"),
    Intent.CHECK_AVAILABILITY: ("date",),
    Intent.LIST_APPOINTMENTS: ("email",),
    Intent.CANCEL: ("email", "booking_id"),
}
READ_ONLY_INTENTS = (Intent.CHECK_AVAILABILITY, Intent.LIST_APPOINTMENTS)

# Slot collection starts once an utterance carries one of these.
SLOT_ENTITIES = frozenset({"date", "time", "email", "booking_id"})

QUESTIONS = {
    "date": "What day works for you?",
    "time": "What time would you like?",
    "email": "What's your email address?",
    "booking_id": "Which appointment would you like to cancel?",
}

GREETING_HELP = (
    "I can check availability, book an appointment, or look up or cancel "
    "an existing one. What would you like to do?"
)

_AFFIRMATIVE = re.compile(
    r"^\W*(?:yes|yeah|yep|yup|sure|correct|right|ok(?:ay)?|confirm(?:ed)?|"
    r"please\s+do|go\s+ahead|sounds\s+good|that'?s\s+(?:right|correct)|perfect|absolutely)\b",
    re.IGNORECASE,
)
_NEGATIVE = re.compile(
    r"^\W*(?:no|nope|nah|not\s+quite|wrong|incorrect|that'?s\s+not\s+right)\b",
    re.IGNORECASE,
)
_RESET = re.compile(r"\b(?:start\s+over|never\s*mind|forget\s+it)\b", re.IGNORECASE)


def _display_name(email: str) -> str:
    local = email.split("@", 1)[0]
    return " ".join(p for p in re.split(r"[._+-]+", local) if p).title() or email


class SessionStore:
    """Keyed registry of live sessions with idle eviction.

    Sessions live in memory only.  Any session untouched for
    ``idle_timeout`` seconds is dropped on the next access.
    """

    def __init__(
        self, idle_timeout: float = 1800.0, clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: dict[str, ConversationSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Optional[ConversationSession]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> ConversationSession:
        self.evict_idle()
        session = self._sessions.get(session_id)
        if session is None:
            session = ConversationSession(session_id=session_id)
            self._sessions[session_id] = session
            log.info("Session started: %s", session_id)
        session.last_active = self._clock()
        return session

    def lock(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    def drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)

    def evict_idle(self) -> int:
        cutoff = self._clock() - self._idle_timeout
        stale = [sid for sid, s in self._sessions.items() if s.last_active < cutoff]
        evicted = 0
        for sid in stale:
            lock = self._locks.get(sid)
            if lock is not None and lock.locked():
                continue
            self.drop(sid)
            evicted += 1
            log.info("Session evicted after idle timeout: %s", sid)
        return evicted


class ConversationService:
    """Runs the dialogue state machine for every session."""

    def __init__(
        self,
        voice_functions: VoiceFunctionsService,
        settings: Settings,
        extractor: Optional[IntentExtractor] = None,
        sessions: Optional[SessionStore] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=timezone.utc),
    ) -> None:
        self._functions = voice_functions
        self._settings = settings
        self._extractor = extractor or RuleBasedExtractor()
        self._sessions = sessions or SessionStore(settings.session_idle_timeout_seconds)
        self._clock = clock

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    def today(self) -> date:
        return self._clock().astimezone(self._settings.tz).date()

    async def process_message(self, session_id: str, text: str) -> ConversationReply:
        """Handle one caller utterance and return the reply plus context."""
        session = self._sessions.get_or_create(session_id)
        async with self._sessions.lock(session_id):
            max_turns = self._settings.max_history_turns
            session.add_turn("user", text, max_turns)
            try:
                response = await self._handle(session, text)
            except Exception:
                log.exception("Session %s: turn failed", session_id)
                pending = session.intent != Intent.UNKNOWN
                self._transition(
                    session, DialogueState.COLLECTING_SLOTS if pending else DialogueState.IDLE
                )
                response = "Sorry, something went wrong on my end. Could you say that again?"
            session.add_turn("assistant", response, max_turns)
            return ConversationReply(response=response, context=session.model_copy(deep=True))

    # ── State machine ─────────────────────────────────────────

    def _transition(self, session: ConversationSession, state: DialogueState) -> None:
        if session.state != state:
            log.info(
                "Session %s: %s -> %s (%s)",
                session.session_id, session.state.value, state.value, session.intent.value,
            )
            session.state = state

    async def _handle(self, session: ConversationSession, text: str) -> str:
        if _RESET.search(text):
            session.intent = Intent.UNKNOWN
            session.clear_request_slots()
            self._transition(session, DialogueState.IDLE)
            return "No problem, let's start over. " + GREETING_HELP

        extraction = self._extractor.extract(text, self.today())
        entities = extraction.entities
        # Asking for the same thing again after it was done starts a fresh request.
        switched = extraction.intent != Intent.UNKNOWN and (
            extraction.intent != session.intent or session.state == DialogueState.FULFILLED
        )

        if switched:
            self._start_intent(session, extraction.intent)
            session.slots.update(entities)
            missing = session.missing(REQUIRED_SLOTS[session.intent])
            if missing and not SLOT_ENTITIES.intersection(entities):
                # Intent without details: stay idle and ask for the first one.
                self._transition(session, DialogueState.IDLE)
                return QUESTIONS[missing[0]]
            return await self._advance(session)

        if session.state == DialogueState.CONFIRMING:
            return await self._confirming(session, text, entities)

        if session.intent == Intent.UNKNOWN or session.state == DialogueState.FULFILLED:
            # Nothing pending: keep any details offered and ask what they want.
            session.slots.update(entities)
            session.intent = Intent.UNKNOWN
            self._transition(session, DialogueState.IDLE)
            return GREETING_HELP

        if not entities:
            missing = session.missing(REQUIRED_SLOTS[session.intent])
            question = QUESTIONS[missing[0]] if missing else GREETING_HELP
            return "Sorry, I didn't catch that. " + question

        session.slots.update(entities)
        return await self._advance(session)

    def _start_intent(self, session: ConversationSession, intent: Intent) -> None:
        if intent == Intent.BOOK:
            session.slots.pop("booking_id", None)
        session.intent = intent
        log.info("Session %s: intent %s", session.session_id, intent.value)

    async def _confirming(
        self, session: ConversationSession, text: str, entities: dict[str, Any],
    ) -> str:
        corrections = {k: v for k, v in entities.items() if session.slots.get(k) != v}
        if corrections:
            log.info("Session %s: correction of %s", session.session_id, sorted(corrections))
            self._transition(session, DialogueState.COLLECTING_SLOTS)
            session.slots.update(corrections)
            if "email" in corrections and session.intent == Intent.CANCEL:
                session.slots.pop("booking_id", None)
            return await self._advance(session)
        if _AFFIRMATIVE.search(text):
            return await self._fulfil(session)
        if _NEGATIVE.search(text):
            self._transition(session, DialogueState.COLLECTING_SLOTS)
            return "Okay, what would you like to change?"
        return "Sorry, I didn't catch that. Should I go ahead? Please say yes or no."

    async def _advance(self, session: ConversationSession) -> str:
        """Ask for the next missing slot, confirm, or run a read-only intent."""
        if session.state in (DialogueState.IDLE, DialogueState.FULFILLED):
            self._transition(session, DialogueState.COLLECTING_SLOTS)
        if session.intent == Intent.CANCEL and session.slots.get("email"):
            question = await self._resolve_booking(session)
            if question:
                return question

        missing = session.missing(REQUIRED_SLOTS[session.intent])
        if missing:
            self._transition(session, DialogueState.COLLECTING_SLOTS)
            return QUESTIONS[missing[0]]

        if session.intent in READ_ONLY_INTENTS:
            return await self._fulfil(session)

        self._transition(session, DialogueState.CONFIRMING)
        return await self._summary(session)

    async def _resolve_booking(self, session: ConversationSession) -> Optional[str]:
        """Fill ``booking_id`` from the caller's upcoming appointments.

        Returns a reply when the caller has to choose or has nothing to
        cancel, else None.
        """
        if session.slots.get("booking_id"):
            return None
        result = await self._functions.get_upcoming_appointments(session.slots["email"])
        if not result.success:
            return result.message
        appointments = result.data.get("appointments", [])

        if session.slots.get("date"):
            narrowed = [a for a in appointments if a["date"] == session.slots["date"]]
            if session.slots.get("time"):
                narrowed = [a for a in narrowed if a["time"] == session.slots["time"]] or narrowed
            appointments = narrowed or appointments

        if len(appointments) == 1:
            session.slots["booking_id"] = appointments[0]["booking_id"]
            return None
        if not appointments:
            session.intent = Intent.UNKNOWN
            session.clear_request_slots()
            self._transition(session, DialogueState.IDLE)
            return result.message + " Is there anything else I can help with?"
        self._transition(session, DialogueState.COLLECTING_SLOTS)
        options = say_list([a["when"] for a in appointments])
        return f"You have appointments on {options}. Which one would you like to cancel?"

    async def _summary(self, session: ConversationSession) -> str:
        slots = session.slots
        if session.intent == Intent.BOOK:
            day = date.fromisoformat(slots["date"])
            start = dt_time.fromisoformat(slots["time"])
            duration = slots.get("duration") or self._settings.default_duration_minutes
            return (
                f"Just to confirm: a {duration} minute appointment on {say_date(day)} "
                f"at {say_time(start)}, with the confirmation sent to {slots['email']}. "
                "Shall I book it?"
            )

        result = await self._functions.get_upcoming_appointments(slots["email"])
        match = [
            a for a in result.data.get("appointments", [])
            if a["booking_id"] == slots["booking_id"]
        ]
        what = f"your appointment on {match[0]['when']}" if match else (
            f"booking {slots['booking_id']}"
        )
        return (
            f"Just to confirm: you'd like to cancel {what}, booked under "
            f"{slots['email']}. Shall I go ahead?"
        )

    async def _fulfil(self, session: ConversationSession) -> str:
        result = await self._invoke(session)
        if result.success:
            self._transition(session, DialogueState.FULFILLED)
            session.clear_request_slots()
            return f"{result.message} Is there anything else I can help with?"

        self._transition(session, DialogueState.COLLECTING_SLOTS)
        if session.intent == Intent.BOOK and result.error == "validation_error":
            session.slots.pop("time", None)
            return f"{result.message} {QUESTIONS['time']}"
        if session.intent == Intent.CANCEL and result.error in ("not_found", "unauthorized"):
            session.slots.pop("booking_id", None)
            return f"{result.message} {QUESTIONS['booking_id']}"
        return result.message

    async def _invoke(self, session: ConversationSession) -> VoiceFunctionResult:
        slots = session.slots
        if session.intent == Intent.BOOK:
            email = slots["email"]
            return await self._functions.book_appointment(
                name=slots.get("name") or _display_name(email),
                email=email,
                phone=slots.get("phone"),
                company=slots.get("company"),
                date=slots["date"],
                time=slots["time"],
                duration=slots.get("duration"),
                inquiry=slots.get("inquiry"),
            )
        if session.intent == Intent.CHECK_AVAILABILITY:
            return await self._functions.check_availability(
                date=slots["date"], duration=slots.get("duration"),
            )
        if session.intent == Intent.LIST_APPOINTMENTS:
            return await self._functions.get_upcoming_appointments(email=slots["email"])
        return await self._functions.cancel_appointment(
            email=slots["email"], booking_id=slots["booking_id"],
        )
