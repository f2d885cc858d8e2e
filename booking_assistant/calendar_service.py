"""Business-hours availability on top of the calendar provider and the store.

Open slots for a day are the business-hours window, narrowed to whatever
the calendar provider reports as free, minus existing bookings, cut into
``duration``-long slots starting on the ``slot_increment_minutes`` grid.
Without a calendar provider the whole business-hours window counts as free.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from booking_assistant.calendar_providers.base import (
    CalendarEvent,
    CalendarProvider,
    TimeSlot,
)
from booking_assistant.config import Settings
from booking_assistant.models.booking import ACTIVE_STATUSES, Booking, BookingFilter
from booking_assistant.store import BookingStore

log = logging.getLogger("booking_assistant.calendar_service")


class CalendarService:
    """Availability and event mapping for bookings."""

    def __init__(
        self,
        settings: Settings,
        store: BookingStore,
        provider: Optional[CalendarProvider] = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._provider = provider

    @property
    def provider(self) -> Optional[CalendarProvider]:
        return self._provider

    # ── Business hours ────────────────────────────────────────

    def business_window(self, day: date) -> TimeSlot | None:
        """Opening and closing time for ``day``, or None on closed days."""
        if day.weekday() not in self._settings.business_days:
            return None
        tz = self._settings.tz
        return TimeSlot(
            start=datetime.combine(day, self._settings.opening_time, tzinfo=tz),
            end=datetime.combine(day, self._settings.closing_time, tzinfo=tz),
        )

    def within_business_hours(self, start: datetime, duration_minutes: int) -> bool:
        local = start.astimezone(self._settings.tz)
        window = self.business_window(local.date())
        if window is None:
            return False
        end = local + timedelta(minutes=duration_minutes)
        return window.start <= local and end <= window.end

    # ── Availability ──────────────────────────────────────────

    async def available_slots(
        self,
        day: date,
        duration_minutes: int,
        now: datetime | None = None,
    ) -> list[TimeSlot]:
        """Ordered open slots on ``day`` that fit ``duration_minutes``."""
        window = self.business_window(day)
        if window is None:
            return []

        now = now or datetime.now(tz=timezone.utc)
        if window.end <= now:
            return []

        if self._provider is not None:
            free = await self._provider.get_available_slots(
                window.start, window.end, duration_minutes
            )
        else:
            free = [window]

        longest = max(self._settings.allowed_durations)
        booked = await self._store.find_many(
            BookingFilter(
                statuses=list(ACTIVE_STATUSES),
                start_from=window.start - timedelta(minutes=longest),
                start_before=window.end,
            ),
            limit=1000,
        )

        step = timedelta(minutes=self._settings.slot_increment_minutes)
        length = timedelta(minutes=duration_minutes)
        tz = self._settings.tz
        slots: dict[datetime, TimeSlot] = {}

        for free_window in free:
            # Keep slot starts on the grid anchored at opening time
            offset = max(free_window.start - window.start, timedelta(0))
            cursor = window.start + step * math.ceil(offset / step)
            limit = min(free_window.end, window.end)
            while cursor + length <= limit:
                end = cursor + length
                if cursor > now and not any(b.overlaps(cursor, end) for b in booked):
                    slots[cursor] = TimeSlot(start=cursor.astimezone(tz), end=end.astimezone(tz))
                cursor += step

        log.debug("%d open %d-minute slots on %s", len(slots), duration_minutes, day)
        return [slots[k] for k in sorted(slots)]

    # ── Event mapping ─────────────────────────────────────────

    def event_for(self, booking: Booking) -> CalendarEvent:
        """The calendar event that mirrors ``booking``."""
        who = booking.name
        if booking.company:
            who = f"{booking.name} ({booking.company})"
        description = f"Booked by {who} <{booking.email}>"
        if booking.phone:
            description += f"\nPhone: {booking.phone}"
        if booking.inquiry:
            description += f"\n\n{booking.inquiry}"
        return CalendarEvent(
            summary=f"{self._settings.business_name} consultation - {booking.name}",
            start=booking.start_time,
            end=booking.end_time,
            description=description,
            attendees=[booking.email],
        )
