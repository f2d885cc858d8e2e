"""Post-write synchronization of bookings with notification, calendar and CRM.

Every booking write that matters downstream is followed by one call to
``BookingSynchronizer.schedule``.  That submits a task and returns
immediately; the caller never awaits the outcome.  Inside the task:

  1. Operations for the same booking id are serialized by a per-id lock,
     so the last write to a sync flag always belongs to the most recent
     operation.  Different bookings sync in parallel.
  2. The three targets run concurrently.  Each is retried on transient
     failures with exponential backoff and a per-call timeout.
  3. Each target writes its outcome onto the booking exactly once: the
     sync flag on success, the manual follow-up flag once retries run out.

Nothing raised by a gateway escapes the task.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from booking_assistant.calendar_service import CalendarService
from booking_assistant.errors import GatewayError, NotFoundError, TransientGatewayError
from booking_assistant.gateways.base import (
    ContactDetails,
    CrmGateway,
    DealStage,
    NotificationGateway,
    NotificationResult,
)
from booking_assistant.models.booking import Booking, BookingStatus
from booking_assistant.store import BookingStore

log = logging.getLogger("booking_assistant.sync")

Action = Callable[[Booking], Awaitable[dict[str, Any]]]


class SyncOperation(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    RESYNC = "resync"


class SyncTarget(str, Enum):
    NOTIFICATION = "notification"
    CALENDAR = "calendar"
    CRM = "crm"


ALL_TARGETS = frozenset(SyncTarget)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class BookingSynchronizer:
    """Runs best-effort, retryable side effects after booking writes."""

    def __init__(
        self,
        store: BookingStore,
        calendar: CalendarService,
        notifications: Optional[NotificationGateway] = None,
        crm: Optional[CrmGateway] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        backoff_multiplier: float = 2.0,
        timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._calendar = calendar
        self._notifications = notifications
        self._crm = crm
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._backoff_multiplier = backoff_multiplier
        self._timeout = timeout

        self._tasks: set[asyncio.Task] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = defaultdict(int)

    # ── Public API ────────────────────────────────────────────

    def schedule(
        self,
        booking_id: str,
        operation: SyncOperation,
        targets: Iterable[SyncTarget] = ALL_TARGETS,
    ) -> asyncio.Task:
        """Submit synchronization for a committed booking write."""
        wanted = [t for t in SyncTarget if t in set(targets)]
        task = asyncio.create_task(
            self._run(booking_id, operation, wanted),
            name=f"sync-{operation.value}-{booking_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log.debug("Scheduled %s sync for booking %s: %s", operation.value, booking_id,
                  [t.value for t in wanted])
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight sync task, including ones they trigger."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self._backoff_seconds * self._backoff_multiplier ** (attempt - 1)

    # ── Internal: per-booking serialization ───────────────────

    async def _run(
        self, booking_id: str, operation: SyncOperation, targets: list[SyncTarget],
    ) -> None:
        lock = self._locks.setdefault(booking_id, asyncio.Lock())
        self._lock_users[booking_id] += 1
        try:
            async with lock:
                booking = await self._store.find_by_id(booking_id)
                if booking is None:
                    log.warning("Booking %s vanished before %s sync", booking_id, operation.value)
                    return
                if operation in (SyncOperation.CREATED, SyncOperation.UPDATED) and (
                    booking.status == BookingStatus.CANCELLED
                ):
                    log.info("Skipping %s sync for booking %s: already cancelled",
                             operation.value, booking_id)
                    return

                jobs = []
                for target in targets:
                    action = self._action_for(target, operation, booking)
                    if action is None:
                        log.debug("No %s integration for %s sync of booking %s",
                                  target.value, operation.value, booking_id)
                        continue
                    jobs.append(self._sync_target(booking, operation, target, action))
                await asyncio.gather(*jobs)
        finally:
            self._lock_users[booking_id] -= 1
            if self._lock_users[booking_id] == 0:
                del self._lock_users[booking_id]
                self._locks.pop(booking_id, None)

    # ── Internal: retry loop ──────────────────────────────────

    async def _sync_target(
        self,
        booking: Booking,
        operation: SyncOperation,
        target: SyncTarget,
        action: Action,
    ) -> None:
        last_error = ""
        for attempt in range(1, self._max_attempts + 1):
            try:
                patch = await asyncio.wait_for(action(booking), timeout=self._timeout)
            except NotImplementedError:
                log.info("%s does not support %s for booking %s, skipped",
                         target.value, operation.value, booking.id)
                return
            except (TransientGatewayError, asyncio.TimeoutError) as exc:
                last_error = str(exc) or "timed out"
                log.warning(
                    "%s sync (%s) for booking %s failed on attempt %d/%d: %s",
                    target.value, operation.value, booking.id,
                    attempt, self._max_attempts, last_error,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self.backoff_delay(attempt))
                continue
            except GatewayError as exc:
                last_error = str(exc)
                log.warning("%s sync (%s) for booking %s failed permanently: %s",
                            target.value, operation.value, booking.id, last_error)
                break
            except Exception as exc:
                last_error = f"{exc.__class__.__name__}: {exc}"
                log.exception("Unexpected %s sync error for booking %s", target.value, booking.id)
                break

            patch[f"{target.value}_follow_up"] = False
            patch[f"{target.value}_error"] = None
            await self._write(booking.id, patch)
            log.info("%s sync (%s) for booking %s succeeded on attempt %d",
                     target.value, operation.value, booking.id, attempt)
            return

        await self._write(booking.id, {
            f"{target.value}_follow_up": True,
            f"{target.value}_error": last_error,
        })
        log.error("%s sync (%s) for booking %s needs manual follow-up: %s",
                  target.value, operation.value, booking.id, last_error)

    async def _write(self, booking_id: str, patch: dict[str, Any]) -> None:
        try:
            await self._store.update(booking_id, patch)
        except NotFoundError:
            log.warning("Booking %s deleted before sync result could be saved", booking_id)

    # ── Internal: which call each target makes ────────────────

    def _action_for(
        self, target: SyncTarget, operation: SyncOperation, booking: Booking,
    ) -> Optional[Action]:
        cancelled = booking.status == BookingStatus.CANCELLED
        if operation == SyncOperation.RESYNC:
            operation = SyncOperation.CANCELLED if cancelled else SyncOperation.CREATED

        if target == SyncTarget.NOTIFICATION:
            if self._notifications is None:
                return None
            if operation == SyncOperation.CANCELLED:
                if not booking.confirmation_sent:
                    return self._nothing_to_undo
                return self._notify_cancellation
            if operation == SyncOperation.CREATED and not booking.confirmation_sent:
                return self._notify_confirmation
            return self._notify_update

        if target == SyncTarget.CALENDAR:
            if self._calendar.provider is None:
                return None
            if operation == SyncOperation.CANCELLED:
                return self._calendar_remove
            return self._calendar_upsert

        if self._crm is None:
            return None
        if operation == SyncOperation.CANCELLED:
            if not booking.crm_synced and not booking.crm_contact_id:
                return self._nothing_to_undo
            return self._crm_cancelled
        if operation == SyncOperation.UPDATED:
            return self._crm_rescheduled
        return self._crm_scheduled

    @staticmethod
    async def _nothing_to_undo(booking: Booking) -> dict[str, Any]:
        # Cancelled before its creation ever reached this target.
        log.info("Booking %s was never synced here, nothing to cancel", booking.id)
        return {}

    # ── Notification actions ──────────────────────────────────

    @staticmethod
    def _check(result: NotificationResult) -> None:
        if not result.success:
            raise TransientGatewayError(result.error or "notification not delivered")

    async def _notify_confirmation(self, booking: Booking) -> dict[str, Any]:
        self._check(await self._notifications.send_booking_confirmation(booking))
        return {"confirmation_sent": True, "confirmation_sent_at": _now()}

    async def _notify_update(self, booking: Booking) -> dict[str, Any]:
        self._check(await self._notifications.send_booking_update(booking))
        return {"update_notified_at": _now()}

    async def _notify_cancellation(self, booking: Booking) -> dict[str, Any]:
        self._check(await self._notifications.send_cancellation_notification(booking))
        return {"cancellation_notified_at": _now()}

    # ── Calendar actions ──────────────────────────────────────

    async def _calendar_upsert(self, booking: Booking) -> dict[str, Any]:
        provider = self._calendar.provider
        event = self._calendar.event_for(booking)
        if booking.calendar_event_id:
            await provider.update_event(booking.id, event)
            event_id = booking.calendar_event_id
        else:
            event_id = await provider.create_event(booking.id, event)
        return {"calendar_synced": True, "calendar_synced_at": _now(), "calendar_event_id": event_id}

    async def _calendar_remove(self, booking: Booking) -> dict[str, Any]:
        await self._calendar.provider.delete_event(booking.id)
        return {"calendar_synced": True, "calendar_synced_at": _now(), "calendar_event_id": None}

    # ── CRM actions ───────────────────────────────────────────

    async def _crm_upsert(self, booking: Booking, stage: DealStage) -> dict[str, Any]:
        contact_id = await self._crm.upsert_contact(ContactDetails(
            email=booking.email,
            name=booking.name,
            phone=booking.phone,
            company=booking.company,
            inquiry=booking.inquiry,
        ))
        await self._crm.sync_deal_stage(booking.id, stage, contact_id=contact_id)
        return {"crm_synced": True, "crm_synced_at": _now(), "crm_contact_id": contact_id}

    async def _crm_scheduled(self, booking: Booking) -> dict[str, Any]:
        return await self._crm_upsert(booking, DealStage.SCHEDULED)

    async def _crm_rescheduled(self, booking: Booking) -> dict[str, Any]:
        return await self._crm_upsert(booking, DealStage.RESCHEDULED)

    async def _crm_cancelled(self, booking: Booking) -> dict[str, Any]:
        await self._crm.sync_deal_stage(
            booking.id, DealStage.CANCELLED, contact_id=booking.crm_contact_id
        )
        return {"crm_synced": True, "crm_synced_at": _now()}
