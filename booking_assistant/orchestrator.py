"""Booking lifecycle: validate, persist, then hand off to the synchronizer.

The store write is the only thing a caller waits for.  Notification,
calendar and CRM follow asynchronously through ``BookingSynchronizer`` and
their outcomes are only visible on the booking's sync flags.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email

from booking_assistant.calendar_service import CalendarService
from booking_assistant.config import Settings
from booking_assistant.errors import AuthorizationError, NotFoundError, ValidationError
from booking_assistant.models.booking import (
    ACTIVE_STATUSES,
    Booking,
    BookingFilter,
    BookingRequest,
    BookingStatus,
    BookingUpdate,
    can_transition,
)
from booking_assistant.speech import redact_pii
from booking_assistant.store import BookingStore
from booking_assistant.sync import (
    ALL_TARGETS,
    BookingSynchronizer,
    SyncOperation,
    SyncTarget,
)

log = logging.getLogger("booking_assistant.orchestrator")

_FOLLOW_UP_TARGETS = {
    SyncTarget.NOTIFICATION: "notification_follow_up",
    SyncTarget.CALENDAR: "calendar_follow_up",
    SyncTarget.CRM: "crm_follow_up",
}


class BookingOrchestrator:
    """Owns the booking lifecycle and its synchronization policy."""

    def __init__(
        self,
        settings: Settings,
        store: BookingStore,
        calendar: CalendarService,
        synchronizer: BookingSynchronizer,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=timezone.utc),
    ) -> None:
        self._settings = settings
        self._store = store
        self._calendar = calendar
        self._sync = synchronizer
        self._clock = clock

    @property
    def calendar(self) -> CalendarService:
        return self._calendar

    @property
    def synchronizer(self) -> BookingSynchronizer:
        return self._sync

    def now(self) -> datetime:
        return self._clock()

    # ── Validation ────────────────────────────────────────────

    async def _validate_slot(
        self, start: datetime, duration: int, exclude_id: Optional[str] = None,
    ) -> None:
        if start.tzinfo is None:
            raise ValidationError("The start time needs a time zone.", field="time")
        if duration not in self._settings.allowed_durations:
            allowed = ", ".join(str(d) for d in self._settings.allowed_durations)
            raise ValidationError(
                f"Appointments can be {allowed} minutes long.", field="duration"
            )
        if start <= self.now():
            raise ValidationError("That time has already passed.", field="time")
        if not self._calendar.within_business_hours(start, duration):
            raise ValidationError("That time is outside business hours.", field="time")

        end = start + timedelta(minutes=duration)
        nearby = await self._store.find_many(
            BookingFilter(
                statuses=list(ACTIVE_STATUSES),
                start_from=start - timedelta(minutes=max(self._settings.allowed_durations)),
                start_before=end,
            ),
            limit=1000,
        )
        if any(b.id != exclude_id and b.overlaps(start, end) for b in nearby):
            raise ValidationError("That time is already taken.", field="time")

    @staticmethod
    def _validate_contact(request: BookingRequest) -> None:
        if not request.name:
            raise ValidationError("I need a name for the booking.", field="name")
        try:
            validate_email(request.email, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValidationError("That email address doesn't look right.", field="email") from exc

    # ── Lifecycle ─────────────────────────────────────────────

    async def create_booking(self, request: BookingRequest) -> Booking:
        """Validate and persist a PENDING booking, then schedule its sync."""
        self._validate_contact(request)
        await self._validate_slot(request.start_time, request.duration)

        booking = await self._store.create(request.model_dump())
        log.info(
            "Booking %s created for %s at %s (%d min)",
            booking.id, redact_pii(booking.email),
            booking.start_time.isoformat(), booking.duration,
        )
        self._sync.schedule(booking.id, SyncOperation.CREATED)
        return booking

    async def get_booking_by_id(self, booking_id: str) -> Booking:
        booking = await self._store.find_by_id(booking_id)
        if booking is None:
            raise NotFoundError(f"I couldn't find a booking with reference {booking_id}.")
        return booking

    async def update_booking(self, booking_id: str, patch: BookingUpdate) -> Booking:
        """Apply a partial update; notify when user-facing details change."""
        booking = await self.get_booking_by_id(booking_id)
        changes = patch.changes()
        if not changes:
            return booking

        if not booking.is_active:
            raise ValidationError(
                f"A {booking.status.value.lower()} booking can't be changed.", field="status"
            )

        status = changes.get("status")
        if status is not None:
            if status == BookingStatus.CANCELLED:
                raise ValidationError("Use cancellation to cancel a booking.", field="status")
            if not can_transition(booking.status, status):
                raise ValidationError(
                    f"A {booking.status.value.lower()} booking can't become "
                    f"{status.value.lower()}.",
                    field="status",
                )

        start = changes.get("start_time", booking.start_time)
        duration = changes.get("duration", booking.duration)
        rescheduled = start != booking.start_time or duration != booking.duration
        if rescheduled:
            await self._validate_slot(start, duration, exclude_id=booking.id)

        updated = await self._store.update(booking_id, changes)
        log.info("Booking %s updated: %s", booking_id, sorted(changes))

        if rescheduled:
            self._sync.schedule(booking_id, SyncOperation.UPDATED, ALL_TARGETS)
        elif updated.inquiry != booking.inquiry:
            self._sync.schedule(booking_id, SyncOperation.UPDATED, {SyncTarget.NOTIFICATION})
        return updated

    async def cancel_booking(
        self, booking_id: str, requester_email: Optional[str] = None,
    ) -> Booking:
        """Cancel a booking. Cancelling twice is a no-op."""
        booking = await self.get_booking_by_id(booking_id)

        if requester_email is not None and (
            requester_email.strip().lower() != booking.email
        ):
            log.warning(
                "Cancel of booking %s refused: requester %s is not the owner",
                booking_id, redact_pii(requester_email),
            )
            raise AuthorizationError("That booking isn't registered to your email address.")

        if booking.status == BookingStatus.CANCELLED:
            return booking
        if booking.status == BookingStatus.COMPLETED:
            raise ValidationError("That appointment has already taken place.", field="status")

        cancelled = await self._store.update(booking_id, {"status": BookingStatus.CANCELLED})
        log.info("Booking %s cancelled", booking_id)
        self._sync.schedule(booking_id, SyncOperation.CANCELLED)
        return cancelled

    # ── Queries ───────────────────────────────────────────────

    async def list_upcoming(self, email: str, limit: int = 20) -> list[Booking]:
        return await self._store.find_many(
            BookingFilter(
                email=email,
                statuses=list(ACTIVE_STATUSES),
                start_from=self.now(),
            ),
            limit=limit,
        )

    async def list_follow_ups(self) -> list[Booking]:
        return await self._store.find_many(BookingFilter(needs_follow_up=True), limit=500)

    async def resync_booking(self, booking_id: str) -> Booking:
        """Operator retry for the targets flagged for manual follow-up."""
        booking = await self.get_booking_by_id(booking_id)
        targets = {
            target for target, flag in _FOLLOW_UP_TARGETS.items() if getattr(booking, flag)
        }
        if targets:
            log.info("Re-syncing booking %s: %s", booking_id, sorted(t.value for t in targets))
            self._sync.schedule(booking_id, SyncOperation.RESYNC, targets)
        return booking
