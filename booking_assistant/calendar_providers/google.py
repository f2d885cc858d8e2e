"""Google Calendar provider implementation.

Uses a Google Cloud service account to interact with the Calendar API v3.
The key is read from a JSON file (``GOOGLE_SERVICE_ACCOUNT_JSON``) or from
an inline JSON string (``GOOGLE_SERVICE_ACCOUNT_KEY_JSON``).  Event ids are
the booking ids: uuid4 hex is valid base32hex, which Google accepts.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from booking_assistant.config import Settings
from booking_assistant.errors import (
    ConfigurationError,
    GatewayError,
    TransientGatewayError,
)

from .base import CalendarEvent, CalendarProvider, TimeSlot

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

_TRANSIENT_STATUSES = {429, 500, 502, 503, 504}
_GONE_STATUSES = {404, 410}
_CONFLICT_STATUS = 409


class GoogleCalendarProvider(CalendarProvider):
    """CalendarProvider backed by Google Calendar API v3."""

    def __init__(
        self,
        calendar_id: str = "primary",
        service_account_path: str = "",
        service_account_info: str = "",
    ) -> None:
        try:
            if service_account_info:
                self._credentials = Credentials.from_service_account_info(
                    json.loads(service_account_info), scopes=SCOPES
                )
            elif service_account_path:
                self._credentials = Credentials.from_service_account_file(
                    service_account_path, scopes=SCOPES
                )
            else:
                raise ConfigurationError(
                    "Google service account must be provided via "
                    "GOOGLE_SERVICE_ACCOUNT_JSON or GOOGLE_SERVICE_ACCOUNT_KEY_JSON."
                )
        except (ValueError, OSError) as exc:
            # json.JSONDecodeError is a ValueError; so are malformed keys.
            raise ConfigurationError(f"Google service account key unusable: {exc}") from exc
        self._calendar_id = calendar_id
        self._service = build(
            "calendar", "v3", credentials=self._credentials, cache_discovery=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GoogleCalendarProvider":
        return cls(
            calendar_id=settings.google_calendar_id,
            service_account_path=settings.google_service_account_json,
            service_account_info=settings.google_service_account_key_json,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Google API call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(func, *args, **kwargs)
        )

    async def _execute(self, request, action: str) -> Any:
        """Execute a request, mapping failures onto gateway errors."""
        try:
            return await self._run_in_executor(request.execute)
        except HttpError as exc:
            status = exc.resp.status
            if status in _TRANSIENT_STATUSES:
                raise TransientGatewayError(
                    f"Google Calendar {action} failed with {status}"
                ) from exc
            raise GatewayError(f"Google Calendar {action} failed with {status}") from exc
        except OSError as exc:
            raise TransientGatewayError(
                f"Google Calendar {action} failed: {exc}"
            ) from exc

    @staticmethod
    def _to_rfc3339(dt: datetime) -> str:
        """Convert a datetime to an RFC 3339 string with timezone."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat()

    def _event_body(self, event: CalendarEvent) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": event.summary,
            "start": {"dateTime": self._to_rfc3339(event.start)},
            "end": {"dateTime": self._to_rfc3339(event.end)},
        }
        if event.description:
            body["description"] = event.description
        if event.location:
            body["location"] = event.location
        if event.attendees:
            body["attendees"] = [
                {"email": addr} for addr in event.attendees
            ]
        return body

    # ------------------------------------------------------------------
    # CalendarProvider interface
    # ------------------------------------------------------------------

    async def get_available_slots(
        self,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int = 30,
    ) -> list[TimeSlot]:
        """Query Google freebusy API and derive available slots.

        The freebusy response returns *busy* intervals.  We invert those
        within the requested ``[range_start, range_end)`` window and keep
        only gaps that are at least ``duration_minutes`` long.
        """
        body = {
            "timeMin": self._to_rfc3339(range_start),
            "timeMax": self._to_rfc3339(range_end),
            "items": [{"id": self._calendar_id}],
        }

        response = await self._execute(
            self._service.freebusy().query(body=body), "freebusy query"
        )

        busy_intervals: list[dict] = (
            response.get("calendars", {})
            .get(self._calendar_id, {})
            .get("busy", [])
        )

        busy: list[tuple[datetime, datetime]] = []
        for interval in busy_intervals:
            b_start = datetime.fromisoformat(interval["start"].replace("Z", "+00:00"))
            b_end = datetime.fromisoformat(interval["end"].replace("Z", "+00:00"))
            busy.append((b_start, b_end))

        busy.sort(key=lambda b: b[0])

        available: list[TimeSlot] = []
        min_duration = timedelta(minutes=duration_minutes)
        cursor = range_start if range_start.tzinfo else range_start.replace(tzinfo=timezone.utc)

        for b_start, b_end in busy:
            if cursor < b_start and b_start - cursor >= min_duration:
                available.append(TimeSlot(start=cursor, end=b_start))
            cursor = max(cursor, b_end)

        # Trailing free time after last busy block
        end_tz = range_end if range_end.tzinfo else range_end.replace(tzinfo=timezone.utc)
        if cursor < end_tz and end_tz - cursor >= min_duration:
            available.append(TimeSlot(start=cursor, end=end_tz))

        return available

    async def create_event(self, booking_id: str, event: CalendarEvent) -> str:
        """Insert the booking's event, sending invitations to attendees.

        The event id is the booking id, so a retry whose earlier insert did
        land gets a 409; the existing event is patched instead.
        """
        body = self._event_body(event)
        body["id"] = booking_id

        try:
            result = await self._execute(
                self._service.events().insert(
                    calendarId=self._calendar_id,
                    body=body,
                    sendUpdates="all",
                ),
                "event insert",
            )
        except GatewayError as exc:
            cause = exc.__cause__
            if isinstance(cause, HttpError) and cause.resp.status == _CONFLICT_STATUS:
                logger.info(
                    "Event %s already exists on calendar %s, patching it",
                    booking_id, self._calendar_id,
                )
                await self.update_event(booking_id, event)
                return booking_id
            raise

        logger.info("Created event %s on calendar %s", result["id"], self._calendar_id)
        return result["id"]

    async def update_event(self, booking_id: str, event: CalendarEvent) -> None:
        await self._execute(
            self._service.events().patch(
                calendarId=self._calendar_id,
                eventId=booking_id,
                body=self._event_body(event),
                sendUpdates="all",
            ),
            "event patch",
        )
        logger.info("Updated event %s on calendar %s", booking_id, self._calendar_id)

    async def delete_event(self, booking_id: str) -> bool:
        """Delete the booking's event. A missing event counts as removed."""
        try:
            await self._execute(
                self._service.events().delete(
                    calendarId=self._calendar_id,
                    eventId=booking_id,
                    sendUpdates="all",
                ),
                "event delete",
            )
        except GatewayError as exc:
            cause = exc.__cause__
            if isinstance(cause, HttpError) and cause.resp.status in _GONE_STATUSES:
                logger.info("Event %s already gone from calendar %s", booking_id, self._calendar_id)
                return False
            raise
        logger.info("Cancelled event %s on calendar %s", booking_id, self._calendar_id)
        return True
