"""Abstract notification and CRM gateways.

The orchestrator only knows these interfaces; each vendor gets one
implementation injected at startup.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from booking_assistant.models.booking import Booking


@dataclass
class NotificationResult:
    """Outcome of one send. Transport failures land here, never as raises."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationGateway(ABC):
    """Sends booking lifecycle messages to the requester."""

    @abstractmethod
    async def send_booking_confirmation(self, booking: Booking) -> NotificationResult:
        """Tell the requester their booking was received."""

    @abstractmethod
    async def send_booking_update(self, booking: Booking) -> NotificationResult:
        """Tell the requester their booking details changed."""

    @abstractmethod
    async def send_cancellation_notification(self, booking: Booking) -> NotificationResult:
        """Tell the requester their booking was cancelled."""

    async def verify_connection(self) -> bool:
        """Check that the transport is reachable. Optional for vendors."""
        return True


@dataclass
class ContactDetails:
    email: str
    name: str
    phone: str = ""
    company: Optional[str] = None
    inquiry: str = ""


class DealStage(str, Enum):
    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class CrmGateway(ABC):
    """Mirrors requesters and their bookings into a CRM."""

    @abstractmethod
    async def upsert_contact(self, details: ContactDetails) -> str:
        """Create or update the contact and return its CRM id."""

    @abstractmethod
    async def sync_deal_stage(
        self, booking_id: str, stage: DealStage, contact_id: Optional[str] = None,
    ) -> None:
        """Create the booking's deal if needed and move it to ``stage``.

        When ``contact_id`` is given the deal is linked to that contact.
        """

    async def ping(self) -> bool:
        """Check that the CRM accepts our credentials."""
        return True
