"""Pydantic models for bookings and booking requests."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_booking_id() -> str:
    return uuid.uuid4().hex


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


# Status transitions are monotonic: nothing ever returns to PENDING and
# CANCELLED / COMPLETED are terminal.
ALLOWED_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target == current or target in ALLOWED_TRANSITIONS[current]


class BookingRequest(BaseModel):
    """Data collected from the caller to book an appointment."""

    name: str
    email: str
    start_time: datetime
    duration: int = 30
    phone: str = ""
    company: Optional[str] = None
    inquiry: str = ""

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("name", "phone", "inquiry")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class BookingUpdate(BaseModel):
    """Partial update. Only fields that are set get applied."""

    name: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    inquiry: Optional[str] = None
    start_time: Optional[datetime] = None
    duration: Optional[int] = None
    status: Optional[BookingStatus] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class Booking(BaseModel):
    """A persisted booking plus the state of its downstream synchronization."""

    id: str = Field(default_factory=new_booking_id)
    name: str
    company: Optional[str] = None
    email: str
    phone: str = ""
    inquiry: str = ""
    start_time: datetime
    duration: int
    status: BookingStatus = BookingStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    # Sync flags, written only by the synchronizer
    confirmation_sent: bool = False
    confirmation_sent_at: Optional[datetime] = None
    update_notified_at: Optional[datetime] = None
    cancellation_notified_at: Optional[datetime] = None
    calendar_synced: bool = False
    calendar_synced_at: Optional[datetime] = None
    calendar_event_id: Optional[str] = None
    crm_synced: bool = False
    crm_synced_at: Optional[datetime] = None
    crm_contact_id: Optional[str] = None

    # Manual follow-up, set when automatic sync exhausted its retries
    notification_follow_up: bool = False
    notification_error: Optional[str] = None
    calendar_follow_up: bool = False
    calendar_error: Optional[str] = None
    crm_follow_up: bool = False
    crm_error: Optional[str] = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def needs_follow_up(self) -> bool:
        return self.notification_follow_up or self.calendar_follow_up or self.crm_follow_up

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start_time < end and start < self.end_time


class BookingFilter(BaseModel):
    """Criteria for BookingStore.find_many. Unset fields match everything."""

    email: Optional[str] = None
    statuses: Optional[list[BookingStatus]] = None
    start_from: Optional[datetime] = None
    start_before: Optional[datetime] = None
    needs_follow_up: Optional[bool] = None

    def matches(self, booking: Booking) -> bool:
        if self.email is not None and booking.email != self.email.strip().lower():
            return False
        if self.statuses is not None and booking.status not in self.statuses:
            return False
        if self.start_from is not None and booking.start_time < self.start_from:
            return False
        if self.start_before is not None and booking.start_time >= self.start_before:
            return False
        if self.needs_follow_up is not None and booking.needs_follow_up != self.needs_follow_up:
            return False
        return True
