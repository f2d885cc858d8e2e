"""Tests for retry, follow-up and serialization in BookingSynchronizer."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest
from googleapiclient.errors import HttpError

from booking_assistant.calendar_providers.google import GoogleCalendarProvider
from booking_assistant.calendar_service import CalendarService
from booking_assistant.errors import GatewayError
from booking_assistant.models.booking import BookingStatus
from booking_assistant.store import InMemoryBookingStore
from booking_assistant.sync import BookingSynchronizer, SyncOperation, SyncTarget

from conftest import FakeCalendarProvider, FakeCrmGateway, FakeNotificationGateway

CHICAGO = ZoneInfo("America/Chicago")


class CountingStore(InMemoryBookingStore):
    def __init__(self):
        super().__init__()
        self.updates = []

    async def update(self, booking_id, patch):
        self.updates.append(dict(patch))
        return await super().update(booking_id, patch)


class SlowCalendarProvider(FakeCalendarProvider):
    """Tracks how many event writes are in flight at once."""

    def __init__(self, delay=0.02):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def update_event(self, booking_id, event):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1


async def seed(store, email="ada@example.com", hour=14, **extra):
    return await store.create({
        "name": "Ada Lovelace",
        "email": email,
        "start_time": datetime(2099, 1, 1, hour, tzinfo=CHICAGO),
        "duration": 30,
        **extra,
    })


def synchronizer(settings, store, provider=None, notifications=None, crm=None, **kwargs):
    options = {"max_attempts": 3, "backoff_seconds": 0.0, "timeout": 1.0}
    options.update(kwargs)
    return BookingSynchronizer(
        store,
        CalendarService(settings, store, provider),
        notifications=notifications,
        crm=crm,
        **options,
    )


class TestBackoff:
    def test_delay_grows_exponentially(self, settings):
        sync = synchronizer(
            settings, InMemoryBookingStore(), backoff_seconds=2.0, backoff_multiplier=2.0
        )
        assert [sync.backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    async def test_sleeps_between_attempts_only(self, settings, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("booking_assistant.sync.asyncio.sleep", sleep)
        store = InMemoryBookingStore()
        booking = await seed(store)
        notifications = FakeNotificationGateway(fail_times=10)
        sync = synchronizer(
            settings, store, notifications=notifications,
            backoff_seconds=2.0, backoff_multiplier=2.0,
        )

        await sync.schedule(booking.id, SyncOperation.CREATED, {SyncTarget.NOTIFICATION})

        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]
        assert notifications.attempts == 3


class TestRetryAndFollowUp:
    async def test_transient_failures_then_success(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store)
        notifications = FakeNotificationGateway(fail_times=2)
        sync = synchronizer(settings, store, notifications=notifications)

        await sync.schedule(booking.id, SyncOperation.CREATED)

        stored = await store.find_by_id(booking.id)
        assert notifications.attempts == 3
        assert stored.confirmation_sent is True
        assert stored.notification_follow_up is False

    async def test_exhausted_retries_flag_follow_up(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store)
        notifications = FakeNotificationGateway(fail_times=99)
        provider = FakeCalendarProvider()
        sync = synchronizer(settings, store, provider, notifications, FakeCrmGateway())

        await sync.schedule(booking.id, SyncOperation.CREATED)

        stored = await store.find_by_id(booking.id)
        assert stored.confirmation_sent is False
        assert stored.notification_follow_up is True
        assert stored.notification_error == "smtp unavailable"
        # The other targets are unaffected.
        assert stored.calendar_synced is True
        assert stored.crm_synced is True
        assert stored.status == BookingStatus.PENDING

    async def test_permanent_error_is_not_retried(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store)
        provider = FakeCalendarProvider(error=GatewayError("403 forbidden"))
        sync = synchronizer(settings, store, provider)

        await sync.schedule(booking.id, SyncOperation.CREATED)

        stored = await store.find_by_id(booking.id)
        assert provider.calls == [("create", booking.id)]
        assert stored.calendar_follow_up is True
        assert stored.calendar_error == "403 forbidden"

    async def test_timeout_counts_as_transient(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store, calendar_event_id="evt-1")
        provider = SlowCalendarProvider(delay=1.0)
        sync = synchronizer(settings, store, provider, max_attempts=2, timeout=0.01)

        await sync.schedule(booking.id, SyncOperation.UPDATED, {SyncTarget.CALENDAR})

        stored = await store.find_by_id(booking.id)
        assert stored.calendar_follow_up is True
        assert stored.calendar_error

    async def test_one_write_per_target(self, settings):
        store = CountingStore()
        booking = await seed(store)
        sync = synchronizer(
            settings, store, FakeCalendarProvider(),
            FakeNotificationGateway(fail_times=1), FakeCrmGateway(),
        )

        await sync.schedule(booking.id, SyncOperation.CREATED)

        assert len(store.updates) == 3

    async def test_success_clears_previous_follow_up(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store, crm_follow_up=True, crm_error="boom")
        sync = synchronizer(settings, store, crm=FakeCrmGateway())

        await sync.schedule(booking.id, SyncOperation.RESYNC, {SyncTarget.CRM})

        stored = await store.find_by_id(booking.id)
        assert stored.crm_synced is True
        assert stored.crm_follow_up is False
        assert stored.crm_error is None

    async def test_retried_calendar_insert_that_already_landed(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store)
        with patch("booking_assistant.calendar_providers.google.Credentials"), patch(
            "booking_assistant.calendar_providers.google.build"
        ) as mock_build:
            provider = GoogleCalendarProvider(service_account_path="/fake/path.json")
        events = mock_build.return_value.events.return_value
        events.insert.return_value.execute.side_effect = [
            HttpError(MagicMock(status=503, reason="Unavailable"), b""),
            HttpError(MagicMock(status=409, reason="Already exists"), b""),
        ]
        events.patch.return_value.execute.return_value = {}
        sync = synchronizer(settings, store, provider)

        await sync.schedule(booking.id, SyncOperation.CREATED, {SyncTarget.CALENDAR})

        stored = await store.find_by_id(booking.id)
        assert stored.calendar_synced is True
        assert stored.calendar_event_id == booking.id
        assert stored.calendar_follow_up is False
        assert events.insert.return_value.execute.call_count == 2

    async def test_deal_is_linked_to_contact(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store)
        crm = FakeCrmGateway()
        sync = synchronizer(settings, store, crm=crm)

        await sync.schedule(booking.id, SyncOperation.CREATED, {SyncTarget.CRM})

        stored = await store.find_by_id(booking.id)
        assert stored.crm_contact_id == "contact-ada@example.com"
        assert crm.deal_contacts[booking.id] == stored.crm_contact_id


class TestSkippedTargets:
    async def test_unconfigured_targets_are_skipped(self, settings):
        store = CountingStore()
        booking = await seed(store)
        sync = synchronizer(settings, store)

        await sync.schedule(booking.id, SyncOperation.CREATED)

        stored = await store.find_by_id(booking.id)
        assert store.updates == []
        assert stored.needs_follow_up is False

    async def test_unsupported_delete_is_skipped(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(
            store, status=BookingStatus.CANCELLED,
            calendar_synced=True, calendar_event_id="evt-1",
        )
        provider = FakeCalendarProvider(can_delete=False)
        sync = synchronizer(settings, store, provider)

        await sync.schedule(booking.id, SyncOperation.CANCELLED)

        stored = await store.find_by_id(booking.id)
        assert stored.calendar_follow_up is False
        assert stored.calendar_event_id == "evt-1"

    async def test_missing_event_counts_as_removed(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store, status=BookingStatus.CANCELLED)
        sync = synchronizer(settings, store, FakeCalendarProvider())

        await sync.schedule(booking.id, SyncOperation.CANCELLED)

        stored = await store.find_by_id(booking.id)
        assert stored.calendar_follow_up is False
        assert stored.calendar_synced is True

    async def test_created_sync_skipped_once_cancelled(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store, status=BookingStatus.CANCELLED)
        notifications = FakeNotificationGateway()
        sync = synchronizer(settings, store, notifications=notifications)

        await sync.schedule(booking.id, SyncOperation.CREATED)

        assert notifications.sent == []

    async def test_cancellation_of_never_confirmed_booking(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(
            store, status=BookingStatus.CANCELLED,
            notification_follow_up=True, notification_error="smtp unavailable",
        )
        notifications = FakeNotificationGateway()
        crm = FakeCrmGateway()
        sync = synchronizer(settings, store, notifications=notifications, crm=crm)

        await sync.schedule(booking.id, SyncOperation.CANCELLED)

        stored = await store.find_by_id(booking.id)
        assert notifications.attempts == 0
        assert crm.stages == {}
        assert stored.notification_follow_up is False
        assert stored.notification_error is None

    async def test_cancellation_after_confirmation_is_sent(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(
            store, status=BookingStatus.CANCELLED,
            confirmation_sent=True, crm_synced=True, crm_contact_id="c-1",
        )
        notifications = FakeNotificationGateway()
        crm = FakeCrmGateway()
        sync = synchronizer(settings, store, notifications=notifications, crm=crm)

        await sync.schedule(booking.id, SyncOperation.CANCELLED)

        assert notifications.kinds(booking.id) == ["cancellation"]
        assert crm.deal_contacts[booking.id] == "c-1"

    async def test_vanished_booking_is_ignored(self, settings):
        store = InMemoryBookingStore()
        notifications = FakeNotificationGateway()
        sync = synchronizer(settings, store, notifications=notifications)

        await sync.schedule("gone", SyncOperation.CREATED)

        assert notifications.attempts == 0


class TestSerialization:
    async def test_same_booking_runs_one_operation_at_a_time(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store, calendar_event_id="evt-1")
        provider = SlowCalendarProvider()
        sync = synchronizer(settings, store, provider)

        for _ in range(3):
            sync.schedule(booking.id, SyncOperation.UPDATED, {SyncTarget.CALENDAR})
        await sync.drain()

        assert provider.max_active == 1

    async def test_different_bookings_sync_in_parallel(self, settings):
        store = InMemoryBookingStore()
        first = await seed(store, calendar_event_id="evt-1")
        second = await seed(store, email="b@example.com", hour=15, calendar_event_id="evt-2")
        provider = SlowCalendarProvider()
        sync = synchronizer(settings, store, provider)

        sync.schedule(first.id, SyncOperation.UPDATED, {SyncTarget.CALENDAR})
        sync.schedule(second.id, SyncOperation.UPDATED, {SyncTarget.CALENDAR})
        await sync.drain()

        assert provider.max_active == 2

    async def test_drain_waits_for_everything(self, settings):
        store = InMemoryBookingStore()
        booking = await seed(store)
        sync = synchronizer(settings, store, notifications=FakeNotificationGateway())

        sync.schedule(booking.id, SyncOperation.CREATED)
        assert sync.pending == 1
        await sync.drain()

        assert sync.pending == 0
        assert (await store.find_by_id(booking.id)).confirmation_sent is True
