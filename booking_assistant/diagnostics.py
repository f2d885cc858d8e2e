"""Deployment diagnostics.

Usage::

    python -m booking_assistant.diagnostics [--skip-smoke] [--email EMAIL]

Checks configuration, pings each configured integration (SMTP, HubSpot,
Google Calendar), then runs the voice functions and a short conversation
against an isolated in-memory service graph.  The smoke run never touches
the real gateways, so it creates no emails, events or CRM records.
Exits with status 1 when any check fails.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

from booking_assistant.config import Settings
from booking_assistant.container import Services, build_services

log = logging.getLogger("booking_assistant.diagnostics")

PASS, WARN, FAIL = "PASS", "WARN", "FAIL"

# How far ahead the smoke run looks for an open slot
SEARCH_DAYS = 14


@dataclass
class CheckResult:
    check: str
    status: str
    message: str


class Diagnostics:
    def __init__(self, settings: Settings, smoke_email: str = "diagnostics@example.com") -> None:
        self.settings = settings
        self.smoke_email = smoke_email
        self.results: list[CheckResult] = []

    def add(self, check: str, status: str, message: str) -> None:
        self.results.append(CheckResult(check, status, message))

    @property
    def failed(self) -> bool:
        return any(r.status == FAIL for r in self.results)

    # ── Configuration ─────────────────────────────────────────

    def check_configuration(self) -> bool:
        try:
            warnings = self.settings.validate_startup()
        except ValueError as exc:
            self.add("CONFIG", FAIL, str(exc))
            return False
        self.add("CONFIG", PASS, "Settings loaded and validated")
        for warning in warnings:
            self.add("CONFIG", WARN, warning)

        for check, configured, label in (
            ("EMAIL_CONFIG", self.settings.email_configured, "SMTP notifications"),
            ("CALENDAR_CONFIG", self.settings.calendar_configured, "Google Calendar"),
            ("CRM_CONFIG", self.settings.crm_configured, "HubSpot CRM"),
        ):
            if configured:
                self.add(check, PASS, f"{label} configured")
            else:
                self.add(check, WARN, f"{label} not configured; that sync target is skipped")
        return True

    # ── Integrations ──────────────────────────────────────────

    async def check_integrations(self, services: Services) -> None:
        if self.settings.email_configured:
            if services.notifications is None:
                self.add("EMAIL_INTEGRATION", FAIL, "SMTP gateway could not be created")
            elif await services.notifications.verify_connection():
                self.add("EMAIL_INTEGRATION", PASS, "SMTP server accepted the connection")
            else:
                self.add("EMAIL_INTEGRATION", FAIL, "SMTP connection check failed")

        if self.settings.crm_configured:
            if services.crm is None:
                self.add("CRM_INTEGRATION", FAIL, "HubSpot gateway could not be created")
            elif await services.crm.ping():
                self.add("CRM_INTEGRATION", PASS, "HubSpot CRM accessible")
            else:
                self.add("CRM_INTEGRATION", FAIL, "HubSpot CRM not reachable")

        if self.settings.calendar_configured:
            if services.calendar.provider is None:
                self.add("CALENDAR_INTEGRATION", FAIL, "Google Calendar provider could not be created")
                return
            day = services.orchestrator.now().astimezone(self.settings.tz).date()
            try:
                slots = await services.calendar.available_slots(
                    day + timedelta(days=1), self.settings.default_duration_minutes
                )
            except Exception as exc:
                self.add("CALENDAR_INTEGRATION", FAIL, f"Free/busy query failed: {exc}")
            else:
                self.add(
                    "CALENDAR_INTEGRATION", PASS,
                    f"Free/busy query returned {len(slots)} slot(s) for tomorrow",
                )

    # ── Smoke run ─────────────────────────────────────────────

    async def smoke_voice_functions(self, services: Services) -> None:
        functions = services.voice_functions
        today = services.orchestrator.now().astimezone(self.settings.tz).date()

        slot: Optional[dict] = None
        for offset in range(1, SEARCH_DAYS + 1):
            day = today + timedelta(days=offset)
            result = await functions.check_availability(date=day.isoformat())
            if not result.success:
                self.add("VOICE_AVAILABILITY", FAIL, result.message)
                return
            if result.data["available_slots"]:
                slot = {"date": day.isoformat(), "time": result.data["available_slots"][0]["time"]}
                break
        if slot is None:
            self.add("VOICE_AVAILABILITY", WARN, f"No open slots in the next {SEARCH_DAYS} days")
            return
        self.add("VOICE_AVAILABILITY", PASS, f"First open slot {slot['date']} {slot['time']}")

        booked = await functions.book_appointment(
            name="Diagnostics Check", email=self.smoke_email,
            inquiry="Voice integration diagnostics", **slot,
        )
        if not booked.success:
            self.add("VOICE_BOOKING", FAIL, booked.message)
            return
        booking_id = booked.data["booking_id"]
        self.add("VOICE_BOOKING", PASS, f"Booked {booking_id}")

        listed = await functions.get_upcoming_appointments(email=self.smoke_email)
        ids = [a["booking_id"] for a in listed.data.get("appointments", [])]
        if listed.success and booking_id in ids:
            self.add("VOICE_APPOINTMENTS", PASS, f"{len(ids)} upcoming appointment(s) listed")
        else:
            self.add("VOICE_APPOINTMENTS", FAIL, "New booking missing from upcoming appointments")

        cancelled = await functions.cancel_appointment(
            email=self.smoke_email, booking_id=booking_id
        )
        self.add(
            "VOICE_CANCELLATION",
            PASS if cancelled.success else FAIL,
            cancelled.message,
        )

    async def smoke_conversation(self, services: Services) -> None:
        conversations = services.conversations
        reply = await conversations.process_message(
            "diagnostics-booking", "I'd like to book an appointment tomorrow at 2pm"
        )
        if reply.context.state.value == "collecting_slots" and reply.context.intent.value == "book":
            self.add("CONVERSATION_BOOKING", PASS, reply.response)
        else:
            self.add("CONVERSATION_BOOKING", FAIL, f"Unexpected state {reply.context.state.value}")

        reply = await conversations.process_message(
            "diagnostics-availability", "What availability do you have tomorrow?"
        )
        if reply.context.intent.value == "check_availability":
            self.add("CONVERSATION_AVAILABILITY", PASS, reply.response)
        else:
            self.add("CONVERSATION_AVAILABILITY", FAIL, "Availability intent not recognised")

    # ── Driver ────────────────────────────────────────────────

    async def run(self, skip_smoke: bool = False) -> list[CheckResult]:
        if not self.check_configuration():
            return self.results

        live = build_services(self.settings)
        try:
            await self.check_integrations(live)
        finally:
            await live.aclose()

        if not skip_smoke:
            isolated = build_services(self.settings, from_settings=False)
            try:
                await self.smoke_voice_functions(isolated)
                await self.smoke_conversation(isolated)
            except Exception as exc:
                log.exception("Smoke run crashed")
                self.add("SMOKE", FAIL, f"Smoke run crashed: {exc}")
            finally:
                await isolated.aclose()
        return self.results


def format_report(results: list[CheckResult]) -> str:
    lines = ["Voice Booking Assistant Diagnostics", "=" * 60]
    for status in (FAIL, WARN, PASS):
        group = [r for r in results if r.status == status]
        if not group:
            continue
        lines.append(f"\n{status} ({len(group)})")
        lines.extend(f"  [{r.check}] {r.message}" for r in group)
    counts = {s: sum(1 for r in results if r.status == s) for s in (PASS, WARN, FAIL)}
    lines.append("")
    lines.append(f"{counts[PASS]} passed, {counts[WARN]} warnings, {counts[FAIL]} failed")
    return "\n".join(lines)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Check the voice booking assistant deployment.")
    parser.add_argument(
        "--skip-smoke", action="store_true",
        help="only check configuration and integrations",
    )
    parser.add_argument(
        "--email", default="diagnostics@example.com",
        help="requester email used for the smoke booking",
    )
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(level=logging.WARNING, format="%(name)s %(levelname)s %(message)s")

    diagnostics = Diagnostics(Settings(), smoke_email=args.email)
    results = asyncio.run(diagnostics.run(skip_smoke=args.skip_smoke))
    print(format_report(results))
    return 1 if diagnostics.failed else 0


if __name__ == "__main__":
    sys.exit(main())
