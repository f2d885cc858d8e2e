"""SMTP notification gateway.

Sends plain-text + HTML booking emails through ``smtplib``.  Port 465 uses
implicit TLS; any other port upgrades with STARTTLS when the server offers
it.  The blocking SMTP conversation runs in the default thread pool.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from functools import partial
from zoneinfo import ZoneInfo

from booking_assistant.config import Settings
from booking_assistant.errors import ConfigurationError
from booking_assistant.models.booking import Booking
from booking_assistant.speech import redact_pii, say_when

from .base import NotificationGateway, NotificationResult

log = logging.getLogger("booking_assistant.gateways.email")


class SmtpNotificationGateway(NotificationGateway):
    """NotificationGateway backed by an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int,
        from_email: str,
        user: str = "",
        password: str = "",
        admin_email: str = "",
        business_name: str = "",
        timezone: str = "UTC",
        timeout: float = 10.0,
    ) -> None:
        if not host or not from_email:
            raise ConfigurationError("SMTP_HOST and FROM_EMAIL are required for email notifications.")
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._from_email = from_email
        self._admin_email = admin_email
        self._business_name = business_name or "Our team"
        self._tz = ZoneInfo(timezone)
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpNotificationGateway":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            from_email=settings.from_email,
            user=settings.smtp_user,
            password=settings.smtp_password,
            admin_email=settings.admin_email,
            business_name=settings.business_name,
            timezone=settings.calendar_timezone,
            timeout=settings.gateway_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # SMTP plumbing
    # ------------------------------------------------------------------

    def _connect(self) -> smtplib.SMTP:
        if self._port == 465:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout)
        else:
            smtp = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
        if self._user:
            smtp.login(self._user, self._password)
        return smtp

    def _send_sync(self, to: str, subject: str, text: str, html_body: str) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self._business_name, self._from_email))
        msg["To"] = to
        message_id = make_msgid(domain=self._from_email.rsplit("@", 1)[-1])
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with self._connect() as smtp:
            smtp.send_message(msg)
        return message_id

    async def _deliver(self, to: str, subject: str, text: str) -> NotificationResult:
        html_body = "".join(
            f"<p>{html.escape(paragraph).replace(chr(10), '<br>')}</p>"
            for paragraph in text.split("\n\n")
        )
        loop = asyncio.get_running_loop()
        try:
            message_id = await loop.run_in_executor(
                None, partial(self._send_sync, to, subject, text, html_body)
            )
        except (smtplib.SMTPException, OSError) as exc:
            log.warning("Email to %s failed: %s", redact_pii(to), exc)
            return NotificationResult(success=False, error=str(exc))
        log.info("Email '%s' sent to %s (%s)", subject, redact_pii(to), message_id)
        return NotificationResult(success=True, message_id=message_id)

    async def verify_connection(self) -> bool:
        loop = asyncio.get_running_loop()

        def _noop() -> None:
            with self._connect() as smtp:
                smtp.noop()

        try:
            await loop.run_in_executor(None, _noop)
        except (smtplib.SMTPException, OSError) as exc:
            log.warning("SMTP connection check failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _details(self, booking: Booking) -> str:
        lines = [
            f"When: {say_when(booking.start_time.astimezone(self._tz))}",
            f"Duration: {booking.duration} minutes",
            f"Reference: {booking.id}",
        ]
        if booking.company:
            lines.append(f"Company: {booking.company}")
        if booking.inquiry:
            lines.append(f"Inquiry: {booking.inquiry}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # NotificationGateway interface
    # ------------------------------------------------------------------

    async def send_booking_confirmation(self, booking: Booking) -> NotificationResult:
        text = (
            f"Hi {booking.name},\n\n"
            f"Thanks for booking with {self._business_name}. Here are your details:\n\n"
            f"{self._details(booking)}\n\n"
            "Reply to this email if you need to make a change."
        )
        result = await self._deliver(
            booking.email, f"Booking confirmation - {self._business_name}", text
        )
        if result.success and self._admin_email:
            admin_text = (
                f"New booking from {booking.name} <{booking.email}>"
                + (f", phone {booking.phone}" if booking.phone else "")
                + f"\n\n{self._details(booking)}"
            )
            admin = await self._deliver(
                self._admin_email, f"New booking: {booking.name}", admin_text
            )
            if not admin.success:
                log.warning("Admin copy for booking %s not sent: %s", booking.id, admin.error)
        return result

    async def send_booking_update(self, booking: Booking) -> NotificationResult:
        text = (
            f"Hi {booking.name},\n\n"
            "Your booking has been updated. The current details are:\n\n"
            f"{self._details(booking)}"
        )
        return await self._deliver(
            booking.email, f"Booking updated - {self._business_name}", text
        )

    async def send_cancellation_notification(self, booking: Booking) -> NotificationResult:
        text = (
            f"Hi {booking.name},\n\n"
            "Your booking has been cancelled:\n\n"
            f"{self._details(booking)}\n\n"
            "We'd be glad to find you another time whenever suits you."
        )
        return await self._deliver(
            booking.email, f"Booking cancelled - {self._business_name}", text
        )
