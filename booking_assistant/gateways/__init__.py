"""Notification and CRM gateway abstractions and implementations."""

from .base import (
    ContactDetails,
    CrmGateway,
    DealStage,
    NotificationGateway,
    NotificationResult,
)

__all__ = [
    "ContactDetails",
    "CrmGateway",
    "DealStage",
    "NotificationGateway",
    "NotificationResult",
]
