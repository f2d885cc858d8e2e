"""Base class for functions the voice agent can call.

Each function declares a name, a description and a JSON-schema for its
arguments (what the agent platform's function-calling config needs), and
implements ``execute``.  ``run`` is the boundary the agent talks to: it
turns every error raised underneath into a failure envelope.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from booking_assistant.errors import BookingError
from booking_assistant.models.envelope import VoiceFunctionResult

log = logging.getLogger("booking_assistant.tools")

GENERIC_FAILURE = (
    "Sorry, I ran into a problem on my end. "
    "Please try again in a moment."
)


class VoiceFunction(ABC):
    """One named operation exposed to the voice agent."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable function name used by the agent platform."""

    @property
    @abstractmethod
    def description(self) -> str:
        """What the function does, phrased for the agent's LLM."""

    @property
    @abstractmethod
    def parameters_schema(self) -> dict:
        """JSON-schema object describing the arguments."""

    @abstractmethod
    async def execute(self, **kwargs: Any) -> VoiceFunctionResult:
        """Do the work. May raise; ``run`` translates errors."""

    def schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters_schema,
        }

    async def run(self, **kwargs: Any) -> VoiceFunctionResult:
        """Execute and always return an envelope."""
        try:
            return await self.execute(**kwargs)
        except BookingError as exc:
            log.info("%s refused: %s (%s)", self.name, exc.message, exc.code)
            return VoiceFunctionResult.fail(exc.message, exc.code)
        except Exception:
            log.exception("%s failed unexpectedly", self.name)
            return VoiceFunctionResult.fail(GENERIC_FAILURE, "internal_error")
