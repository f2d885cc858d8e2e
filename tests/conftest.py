"""Shared fixtures: fixed clock, test settings and in-memory gateway fakes."""

import os
import sys
from datetime import datetime, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from booking_assistant.calendar_providers.base import CalendarEvent, CalendarProvider, TimeSlot
from booking_assistant.config import Settings
from booking_assistant.container import build_services
from booking_assistant.errors import TransientGatewayError
from booking_assistant.gateways.base import (
    ContactDetails,
    CrmGateway,
    DealStage,
    NotificationGateway,
    NotificationResult,
)
from booking_assistant.store import InMemoryBookingStore

# Wednesday 09:00 in Chicago. "Tomorrow" is Thursday 2099-01-01.
NOW = datetime(2098, 12, 31, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


class FakeNotificationGateway(NotificationGateway):
    """Records sends. Fails the first ``fail_times`` sends."""

    def __init__(self, fail_times=0):
        self.fail_times = fail_times
        self.attempts = 0
        self.sent = []  # (kind, booking_id)

    async def _send(self, kind, booking):
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            return NotificationResult(success=False, error="smtp unavailable")
        self.sent.append((kind, booking.id))
        return NotificationResult(success=True, message_id=f"<{kind}-{booking.id}>")

    async def send_booking_confirmation(self, booking):
        return await self._send("confirmation", booking)

    async def send_booking_update(self, booking):
        return await self._send("update", booking)

    async def send_cancellation_notification(self, booking):
        return await self._send("cancellation", booking)

    def kinds(self, booking_id):
        return [kind for kind, bid in self.sent if bid == booking_id]


class FakeCalendarProvider(CalendarProvider):
    """Events keyed by booking id; ``busy`` windows are removed from availability."""

    def __init__(self, busy=None, error=None, can_delete=True):
        self.busy = busy or []
        self.error = error
        self.can_delete = can_delete
        self.events: dict[str, CalendarEvent] = {}
        self.calls = []

    async def get_available_slots(self, range_start, range_end, duration_minutes=30):
        free, cursor = [], range_start
        for start, end in sorted(self.busy):
            if start > cursor:
                free.append(TimeSlot(start=cursor, end=start))
            cursor = max(cursor, end)
        if cursor < range_end:
            free.append(TimeSlot(start=cursor, end=range_end))
        return free

    async def create_event(self, booking_id, event):
        self.calls.append(("create", booking_id))
        if self.error:
            raise self.error
        self.events[booking_id] = event
        return f"evt-{booking_id}"

    async def update_event(self, booking_id, event):
        self.calls.append(("update", booking_id))
        if self.error:
            raise self.error
        self.events[booking_id] = event

    async def delete_event(self, booking_id):
        self.calls.append(("delete", booking_id))
        if not self.can_delete:
            raise NotImplementedError
        return self.events.pop(booking_id, None) is not None


class FakeCrmGateway(CrmGateway):
    def __init__(self, error=None):
        self.error = error
        self.contacts: dict[str, ContactDetails] = {}
        self.stages: dict[str, DealStage] = {}
        self.deal_contacts: dict[str, str] = {}

    async def upsert_contact(self, details):
        if self.error:
            raise self.error
        self.contacts[details.email] = details
        return f"contact-{details.email}"

    async def sync_deal_stage(self, booking_id, stage, contact_id=None):
        if self.error:
            raise self.error
        self.stages[booking_id] = stage
        if contact_id:
            self.deal_contacts[booking_id] = contact_id


def make_settings(**overrides):
    values = {
        "sync_backoff_seconds": 0.0,
        "gateway_timeout_seconds": 1.0,
        "voice_api_key": "voice-key",
        "admin_api_key": "admin-key",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifications():
    return FakeNotificationGateway()


@pytest.fixture
def calendar_provider():
    return FakeCalendarProvider()


@pytest.fixture
def crm():
    return FakeCrmGateway()


@pytest.fixture
def services(settings, clock, notifications, calendar_provider, crm):
    return build_services(
        settings,
        store=InMemoryBookingStore(),
        calendar_provider=calendar_provider,
        notifications=notifications,
        crm=crm,
        clock=clock,
        from_settings=False,
    )


@pytest.fixture
def transient():
    return TransientGatewayError("503 from upstream")
