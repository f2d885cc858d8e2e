"""Tests for business-hours slot computation in CalendarService."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from booking_assistant.calendar_service import CalendarService
from booking_assistant.models.booking import BookingStatus
from booking_assistant.store import InMemoryBookingStore

from conftest import NOW, FakeCalendarProvider, make_settings

CHICAGO = ZoneInfo("America/Chicago")
THURSDAY = date(2099, 1, 1)


def local(hour, minute=0, day=THURSDAY):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=CHICAGO)


def starts(slots):
    return [s.start.strftime("%H:%M") for s in slots]


async def book(store, hour, minute=0, duration=30, status=BookingStatus.PENDING):
    return await store.create({
        "name": "Busy Person",
        "email": "busy@example.com",
        "start_time": local(hour, minute),
        "duration": duration,
        "status": status,
    })


class TestBusinessWindow:
    def test_weekday_window_in_business_timezone(self, settings):
        window = CalendarService(settings, InMemoryBookingStore()).business_window(THURSDAY)
        assert window.start == local(9)
        assert window.end == local(17)

    def test_closed_on_weekend(self, settings):
        service = CalendarService(settings, InMemoryBookingStore())
        assert service.business_window(date(2099, 1, 3)) is None

    def test_within_business_hours_accepts_other_timezones(self, settings):
        service = CalendarService(settings, InMemoryBookingStore())
        # 20:00 UTC is 14:00 in Chicago in January.
        assert service.within_business_hours(
            datetime(2099, 1, 1, 20, 0, tzinfo=timezone.utc), 30
        )
        assert not service.within_business_hours(local(16, 45), 30)


class TestAvailableSlots:
    async def test_empty_day_covers_business_hours(self, settings):
        service = CalendarService(settings, InMemoryBookingStore())
        slots = await service.available_slots(THURSDAY, 30, now=NOW)

        assert starts(slots)[0] == "09:00"
        assert starts(slots)[-1] == "16:30"
        assert len(slots) == 16
        assert all(b.start > a.start for a, b in zip(slots, slots[1:]))
        assert slots[0].start.tzinfo is not None

    async def test_hour_long_slot_must_finish_by_closing(self, settings):
        service = CalendarService(settings, InMemoryBookingStore())
        slots = await service.available_slots(THURSDAY, 60, now=NOW)
        assert starts(slots)[-1] == "16:00"

    async def test_existing_bookings_are_excluded(self, settings):
        store = InMemoryBookingStore()
        await book(store, 10)
        await book(store, 13, duration=60)
        await book(store, 15, status=BookingStatus.CANCELLED)
        service = CalendarService(settings, store)

        open_times = starts(await service.available_slots(THURSDAY, 30, now=NOW))

        assert "10:00" not in open_times
        assert "13:00" not in open_times
        assert "13:30" not in open_times
        assert "12:30" in open_times
        assert "15:00" in open_times

    async def test_provider_busy_time_is_excluded(self, settings):
        provider = FakeCalendarProvider(busy=[(local(11, 15), local(12))])
        service = CalendarService(settings, InMemoryBookingStore(), provider)

        open_times = starts(await service.available_slots(THURSDAY, 30, now=NOW))

        assert "11:00" not in open_times
        assert "11:30" not in open_times
        # Free time after a busy block restarts on the half-hour grid.
        assert "12:00" in open_times
        assert "10:30" in open_times

    async def test_past_slots_are_dropped(self, settings):
        service = CalendarService(settings, InMemoryBookingStore())
        now = local(12, 10).astimezone(timezone.utc)

        slots = await service.available_slots(THURSDAY, 30, now=now)

        assert starts(slots)[0] == "12:30"

    async def test_closed_day_and_finished_day_are_empty(self, settings):
        service = CalendarService(settings, InMemoryBookingStore())
        assert await service.available_slots(date(2099, 1, 4), 30, now=NOW) == []
        after_close = local(18).astimezone(timezone.utc)
        assert await service.available_slots(THURSDAY, 30, now=after_close) == []

    async def test_slot_increment_is_configurable(self):
        settings = make_settings(slot_increment_minutes=15)
        service = CalendarService(settings, InMemoryBookingStore())
        slots = await service.available_slots(THURSDAY, 15, now=NOW)
        assert starts(slots)[:3] == ["09:00", "09:15", "09:30"]
        assert slots[0].end - slots[0].start == timedelta(minutes=15)


class TestEventFor:
    async def test_event_mirrors_booking(self, settings):
        store = InMemoryBookingStore()
        booking = await store.create({
            "name": "Ada Lovelace",
            "company": "Analytical Engines",
            "email": "ada@example.com",
            "phone": "+1 555 0100",
            "inquiry": "Website rebuild",
            "start_time": local(14),
            "duration": 45,
        })
        event = CalendarService(settings, store).event_for(booking)

        assert event.summary == "Metalogics consultation - Ada Lovelace"
        assert event.end - event.start == timedelta(minutes=45)
        assert event.attendees == ["ada@example.com"]
        assert "Analytical Engines" in event.description
        assert "Website rebuild" in event.description
