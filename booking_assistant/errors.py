"""Error taxonomy shared by the orchestrator, gateways and voice functions.

Booking errors describe a problem with the caller's request and are
reported back, never retried.  Gateway errors come from the external
integrations; only the transient kind is retried by the synchronizer.
"""

from __future__ import annotations


class BookingError(Exception):
    """Base class for errors that are reported back to the caller."""

    code = "booking_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(BookingError):
    """Malformed or out-of-policy booking request."""

    code = "validation_error"


class NotFoundError(BookingError):
    """Unknown booking id."""

    code = "not_found"


class AuthorizationError(BookingError):
    """Operation attempted on a booking owned by someone else."""

    code = "unauthorized"


class GatewayError(Exception):
    """A notification, calendar or CRM call failed permanently."""


class TransientGatewayError(GatewayError):
    """Network or provider hiccup, worth retrying with backoff."""


class ConfigurationError(Exception):
    """Required integration credentials are missing or unusable."""
