"""Wires settings into the full service graph.

Each integration is optional.  A gateway whose constructor raises
``ConfigurationError`` is left out with a warning; the synchronizer then
skips that target instead of flagging bookings for follow-up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from booking_assistant.calendar_providers import CalendarProvider
from booking_assistant.calendar_providers.google import GoogleCalendarProvider
from booking_assistant.calendar_service import CalendarService
from booking_assistant.config import Settings
from booking_assistant.conversation import ConversationService, SessionStore
from booking_assistant.errors import ConfigurationError
from booking_assistant.gateways import CrmGateway, NotificationGateway
from booking_assistant.gateways.email import SmtpNotificationGateway
from booking_assistant.gateways.hubspot import HubSpotCrmGateway
from booking_assistant.orchestrator import BookingOrchestrator
from booking_assistant.store import BookingStore, InMemoryBookingStore
from booking_assistant.sync import BookingSynchronizer
from booking_assistant.voice_functions import VoiceFunctionsService

log = logging.getLogger("booking_assistant.container")


@dataclass
class Services:
    settings: Settings
    store: BookingStore
    calendar: CalendarService
    synchronizer: BookingSynchronizer
    orchestrator: BookingOrchestrator
    voice_functions: VoiceFunctionsService
    conversations: ConversationService
    notifications: Optional[NotificationGateway] = None
    crm: Optional[CrmGateway] = None

    async def aclose(self) -> None:
        """Finish in-flight sync work, then release gateway clients."""
        await self.synchronizer.drain()
        if isinstance(self.crm, HubSpotCrmGateway):
            await self.crm.aclose()


def _optional(name: str, factory: Callable[[], object]) -> Optional[object]:
    try:
        return factory()
    except ConfigurationError as exc:
        log.warning("%s integration disabled: %s", name, exc)
        return None


def build_services(
    settings: Settings,
    *,
    store: Optional[BookingStore] = None,
    calendar_provider: Optional[CalendarProvider] = None,
    notifications: Optional[NotificationGateway] = None,
    crm: Optional[CrmGateway] = None,
    clock: Optional[Callable[[], datetime]] = None,
    from_settings: bool = True,
) -> Services:
    """Assemble the services.

    Explicit collaborators win.  With ``from_settings`` the remaining
    gateways are built from configuration when it is present.
    """
    clock = clock or (lambda: datetime.now(tz=timezone.utc))
    if store is None:
        store = InMemoryBookingStore()

    if from_settings:
        if calendar_provider is None and settings.calendar_configured:
            calendar_provider = _optional(
                "Calendar", lambda: GoogleCalendarProvider.from_settings(settings)
            )
        if notifications is None and settings.email_configured:
            notifications = _optional(
                "Email", lambda: SmtpNotificationGateway.from_settings(settings)
            )
        if crm is None and settings.crm_configured:
            crm = _optional("CRM", lambda: HubSpotCrmGateway.from_settings(settings))

    calendar = CalendarService(settings, store, calendar_provider)
    synchronizer = BookingSynchronizer(
        store,
        calendar,
        notifications=notifications,
        crm=crm,
        max_attempts=settings.sync_max_attempts,
        backoff_seconds=settings.sync_backoff_seconds,
        backoff_multiplier=settings.sync_backoff_multiplier,
        timeout=settings.gateway_timeout_seconds,
    )
    orchestrator = BookingOrchestrator(settings, store, calendar, synchronizer, clock=clock)
    voice_functions = VoiceFunctionsService(orchestrator, settings)
    conversations = ConversationService(
        voice_functions,
        settings,
        sessions=SessionStore(settings.session_idle_timeout_seconds),
        clock=clock,
    )

    log.info(
        "Services ready (calendar=%s, email=%s, crm=%s)",
        "on" if calendar_provider else "off",
        "on" if notifications else "off",
        "on" if crm else "off",
    )
    return Services(
        settings=settings,
        store=store,
        calendar=calendar,
        synchronizer=synchronizer,
        orchestrator=orchestrator,
        voice_functions=voice_functions,
        conversations=conversations,
        notifications=notifications,
        crm=crm,
    )
