"""Intent and slot extraction for the conversation layer.

``IntentExtractor`` is the seam: the conversation service only needs an
``Extraction`` (intent plus entities) per utterance.  ``RuleBasedExtractor``
covers the phrasings callers actually use on the phone; an LLM-backed
extractor can be dropped in behind the same interface.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from booking_assistant.models.conversation import Intent
from booking_assistant.timeparse import find_date, find_time


@dataclass
class Extraction:
    intent: Intent = Intent.UNKNOWN
    entities: dict[str, Any] = field(default_factory=dict)


class IntentExtractor(ABC):
    """Turns one utterance into an intent and slot values."""

    @abstractmethod
    def extract(self, text: str, today: date) -> Extraction:
        """``today`` anchors relative dates in the business time zone."""


# Checked in order; the first match wins.
_INTENT_PATTERNS: list[tuple[Intent, re.Pattern]] = [
    (Intent.CANCEL, re.compile(r"\bcancel", re.IGNORECASE)),
    (
        Intent.LIST_APPOINTMENTS,
        re.compile(
            r"\b(?:my|upcoming|existing|scheduled)\s+(?:appointments?|bookings?|meetings?)\b"
            r"|\bwhat\s+appointments\b|\bdo\s+i\s+have\b|\bwhen\s+is\s+my\b",
            re.IGNORECASE,
        ),
    ),
    (
        Intent.CHECK_AVAILABILITY,
        re.compile(
            r"\bavailab|\bopenings?\b|\bopen\s+slots?\b|\bfree\s+slots?\b"
            r"|\bwhat\s+times\b|\bany\s+time\s+free\b|\bare\s+you\s+free\b",
            re.IGNORECASE,
        ),
    ),
    (
        Intent.BOOK,
        re.compile(
            r"\bbook\b|\bschedule\b|\breserve\b"
            r"|\b(?:make|set\s+up|arrange|need|want|like)\s+(?:an?\s+)?"
            r"(?:appointment|meeting|consultation|call)\b",
            re.IGNORECASE,
        ),
    ),
]

_EMAIL = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE = re.compile(r"\+?\d[\d\s().-]{7,}\d")
_DURATION = re.compile(r"\b(\d{1,3})\s*-?\s*(?:minutes?|mins?)\b", re.IGNORECASE)
_HALF_HOUR = re.compile(r"\bhalf\s+(?:an\s+)?hour\b", re.IGNORECASE)
_QUARTER_HOUR = re.compile(r"\bquarter\s+(?:of\s+)?(?:an\s+)?hour\b", re.IGNORECASE)
_HOUR = re.compile(r"\b(?:an|one|1)\s+hour\b", re.IGNORECASE)
_NAME_STATED = re.compile(
    r"\bmy\s+name\s+is\s+([a-z][a-z'-]+(?:\s+[a-z][a-z'-]+)?)", re.IGNORECASE
)
_NAME_INTRO = re.compile(
    r"\b(?:[Tt]his\s+is|I\s+am|I'm)\s+([A-Z][a-zA-Z'-]+(?:\s+[A-Z][a-zA-Z'-]+)?)"
)
_COMPANY = re.compile(
    r"\b(?:[Cc]ompany\s+is|[Ww]ork\s+(?:for|at)|[Cc]alling\s+from)\s+"
    r"([A-Z][\w&.-]*(?:\s+[A-Z][\w&.-]*)*)"
)
_INQUIRY = re.compile(
    r"\b(?:about|regarding|to\s+discuss)\s+(?!(?:\d|noon))(.+?)\s*(?:[.!?]|$)",
    re.IGNORECASE,
)
_NOT_NAMES = {"and", "my", "from", "at", "with", "here", "calling", "looking", "the"}
_DATE_OR_CLOCK = re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b|\b\d{1,2}:\d{2}\b")
_BOOKING_ID = re.compile(
    r"\b([0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12})\b",
    re.IGNORECASE,
)


class RuleBasedExtractor(IntentExtractor):
    """Regex-driven extraction. Deterministic, no external calls."""

    def extract(self, text: str, today: date) -> Extraction:
        return Extraction(intent=self.detect_intent(text), entities=self.entities(text, today))

    @staticmethod
    def detect_intent(text: str) -> Intent:
        for intent, pattern in _INTENT_PATTERNS:
            if pattern.search(text):
                return intent
        return Intent.UNKNOWN

    def entities(self, text: str, today: date) -> dict[str, Any]:
        found: dict[str, Any] = {}

        email = _EMAIL.search(text)
        if email:
            found["email"] = email.group(0).rstrip(".").lower()
        # Drop the address so its digits and words don't leak into other slots.
        rest = _EMAIL.sub(" ", text)

        booking_id = _BOOKING_ID.search(rest)
        if booking_id:
            found["booking_id"] = booking_id.group(1).replace("-", "").lower()
            rest = _BOOKING_ID.sub(" ", rest)

        day = find_date(rest, today)
        if day is not None:
            found["date"] = day.isoformat()

        clock = find_time(rest)
        if clock is not None:
            found["time"] = clock.strftime("%H:%M")

        numbers = _DATE_OR_CLOCK.sub(" ", rest)
        duration = self._duration(numbers)
        if duration is not None:
            found["duration"] = duration

        phone = self._phone(numbers)
        if phone:
            found["phone"] = phone

        name = _NAME_STATED.search(rest) or _NAME_INTRO.search(rest)
        if name:
            words = []
            for word in name.group(1).split():
                if word.lower() in _NOT_NAMES:
                    break
                words.append(word)
            if words:
                found["name"] = " ".join(words).title()

        company = _COMPANY.search(rest)
        if company:
            found["company"] = company.group(1).strip()

        inquiry = _INQUIRY.search(rest)
        if inquiry:
            found["inquiry"] = inquiry.group(1).strip()

        return found

    @staticmethod
    def _duration(text: str) -> Optional[int]:
        match = _DURATION.search(text)
        if match:
            return int(match.group(1))
        if _QUARTER_HOUR.search(text):
            return 15
        if _HALF_HOUR.search(text):
            return 30
        if _HOUR.search(text):
            return 60
        return None

    @staticmethod
    def _phone(text: str) -> Optional[str]:
        for match in _PHONE.finditer(text):
            candidate = match.group(0).strip()
            if len(re.sub(r"\D", "", candidate)) >= 10:
                return candidate
        return None
