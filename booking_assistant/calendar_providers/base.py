"""Abstract base class for calendar providers.

Defines the interface for checking availability and managing the events
that mirror bookings.  Any calendar backend (Google, Outlook, etc.)
implements this ABC.  Events are keyed by booking id so a booking can be
moved or removed without remembering provider-side identifiers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class TimeSlot:
    """A window of availability on a calendar."""

    start: datetime
    end: datetime


@dataclass
class CalendarEvent:
    """Represents a calendar event to be created or updated."""

    summary: str
    start: datetime
    end: datetime
    description: str = ""
    attendees: list[str] = field(default_factory=list)  # email addresses
    location: str = ""


class CalendarProvider(ABC):
    """Abstract calendar backend.

    Subclasses must implement availability checking plus event creation,
    update and deletion.  Implementations raise
    ``TransientGatewayError`` for failures worth retrying.
    """

    @abstractmethod
    async def get_available_slots(
        self,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int = 30,
    ) -> list[TimeSlot]:
        """Return free windows within the given range.

        Args:
            range_start: Beginning of the search window.
            range_end: End of the search window.
            duration_minutes: Minimum window length in minutes.

        Returns:
            Ordered list of TimeSlot objects that are free and at least
            ``duration_minutes`` long.
        """

    @abstractmethod
    async def create_event(self, booking_id: str, event: CalendarEvent) -> str:
        """Create the event mirroring a booking.

        Returns:
            The provider's event identifier.
        """

    @abstractmethod
    async def update_event(self, booking_id: str, event: CalendarEvent) -> None:
        """Move or edit the event that mirrors a booking."""

    @abstractmethod
    async def delete_event(self, booking_id: str) -> bool:
        """Remove the event for a booking.

        Returns:
            True if an event was removed, False if there was nothing to
            remove.  Providers that can't delete raise NotImplementedError.
        """
