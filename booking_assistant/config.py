"""Application configuration via environment variables."""

from __future__ import annotations

import logging
from datetime import time as dt_time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings

log = logging.getLogger("booking_assistant.config")


class Settings(BaseSettings):
    # Business
    business_name: str = "Metalogics"
    calendar_timezone: str = "America/Chicago"
    business_hours_start: str = "09:00"
    business_hours_end: str = "17:00"
    business_days: list[int] = [0, 1, 2, 3, 4]  # Monday=0
    allowed_durations: list[int] = [15, 30, 45, 60]
    default_duration_minutes: int = 30
    slot_increment_minutes: int = 30

    # Post-booking synchronization
    sync_max_attempts: int = 3
    sync_backoff_seconds: float = 2.0
    sync_backoff_multiplier: float = 2.0
    gateway_timeout_seconds: float = 10.0

    # Conversation sessions
    session_idle_timeout_seconds: float = 1800.0
    max_history_turns: int = 20

    # Google Calendar
    google_service_account_json: str = ""       # path to key file
    google_service_account_key_json: str = ""   # inline key (JSON string)
    google_calendar_id: str = "primary"

    # HubSpot
    hubspot_access_token: str = ""
    hubspot_base_url: str = "https://api.hubapi.com"

    # SMTP
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    admin_email: str = ""

    # API auth
    voice_api_key: str = ""
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Derived values ─────────────────────────────────────────

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.calendar_timezone)

    @property
    def opening_time(self) -> dt_time:
        return dt_time.fromisoformat(self.business_hours_start)

    @property
    def closing_time(self) -> dt_time:
        return dt_time.fromisoformat(self.business_hours_end)

    @property
    def calendar_configured(self) -> bool:
        return bool(self.google_service_account_json or self.google_service_account_key_json)

    @property
    def crm_configured(self) -> bool:
        return bool(self.hubspot_access_token)

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"pat-...", "path/to/service-account.json", "changeme"}

        try:
            self.tz
        except ZoneInfoNotFoundError:
            raise ValueError(
                f"CALENDAR_TIMEZONE {self.calendar_timezone!r} is not a known time zone."
            )

        if self.opening_time >= self.closing_time:
            raise ValueError(
                "BUSINESS_HOURS_START must be earlier than BUSINESS_HOURS_END."
            )

        if self.default_duration_minutes not in self.allowed_durations:
            raise ValueError(
                "DEFAULT_DURATION_MINUTES must be one of ALLOWED_DURATIONS."
            )

        if self.sync_max_attempts < 1:
            raise ValueError("SYNC_MAX_ATTEMPTS must be at least 1.")

        if not self.voice_api_key:
            warnings.append(
                "VOICE_API_KEY not set. Voice function endpoints are "
                + ("open (DEBUG=true)." if self.debug else "locked in production.")
            )

        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        if not self.email_configured:
            warnings.append("SMTP_HOST / FROM_EMAIL not set; email notifications disabled.")

        if not self.calendar_configured or self.google_service_account_json in _placeholders:
            warnings.append("Google service account not set; calendar sync disabled.")

        if not self.crm_configured or self.hubspot_access_token in _placeholders:
            warnings.append("HUBSPOT_ACCESS_TOKEN not set; CRM sync disabled.")

        return warnings


settings = Settings()
