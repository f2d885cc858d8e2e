"""Booking persistence.

``BookingStore`` is the contract the orchestrator depends on. Relational
storage lives outside this package; ``InMemoryBookingStore`` implements the
contract for local development, diagnostics and tests.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from booking_assistant.errors import NotFoundError
from booking_assistant.models.booking import Booking, BookingFilter

log = logging.getLogger("booking_assistant.store")


class BookingStore(ABC):
    """Abstract booking persistence backend."""

    @abstractmethod
    async def create(self, fields: dict[str, Any]) -> Booking:
        """Persist a new booking built from ``fields`` and return it."""

    @abstractmethod
    async def update(self, booking_id: str, patch: dict[str, Any]) -> Booking:
        """Apply ``patch`` to a booking.

        Raises:
            NotFoundError: if no booking has that id.
        """

    @abstractmethod
    async def find_by_id(self, booking_id: str) -> Booking | None:
        """Return the booking, or None if it doesn't exist."""

    @abstractmethod
    async def find_many(
        self,
        filter: BookingFilter | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> list[Booking]:
        """Return matching bookings ordered by start time ascending."""

    @abstractmethod
    async def delete(self, booking_id: str) -> None:
        """Remove a booking. Unknown ids are ignored."""


class InMemoryBookingStore(BookingStore):
    """Process-local store. Returns copies so callers can't mutate state."""

    def __init__(self) -> None:
        self._bookings: dict[str, Booking] = {}
        self._lock = asyncio.Lock()

    async def create(self, fields: dict[str, Any]) -> Booking:
        booking = Booking(**fields)
        async with self._lock:
            self._bookings[booking.id] = booking
        log.info("Booking %s stored (start=%s)", booking.id, booking.start_time.isoformat())
        return booking.model_copy(deep=True)

    async def update(self, booking_id: str, patch: dict[str, Any]) -> Booking:
        async with self._lock:
            current = self._bookings.get(booking_id)
            if current is None:
                raise NotFoundError(f"Booking {booking_id} not found")
            updated = current.model_copy(
                update={**patch, "updated_at": datetime.now(tz=timezone.utc)},
                deep=True,
            )
            self._bookings[booking_id] = updated
        return updated.model_copy(deep=True)

    async def find_by_id(self, booking_id: str) -> Booking | None:
        booking = self._bookings.get(booking_id)
        return booking.model_copy(deep=True) if booking else None

    async def find_many(
        self,
        filter: BookingFilter | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> list[Booking]:
        criteria = filter or BookingFilter()
        matches = sorted(
            (b for b in self._bookings.values() if criteria.matches(b)),
            key=lambda b: b.start_time,
        )
        offset = max(page - 1, 0) * limit
        return [b.model_copy(deep=True) for b in matches[offset:offset + limit]]

    async def delete(self, booking_id: str) -> None:
        async with self._lock:
            self._bookings.pop(booking_id, None)
