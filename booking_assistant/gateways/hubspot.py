"""HubSpot CRM gateway: contacts and per-booking deals over the v3/v4 REST APIs."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from booking_assistant.config import Settings
from booking_assistant.errors import (
    ConfigurationError,
    GatewayError,
    TransientGatewayError,
)
from booking_assistant.speech import redact_pii

from .base import ContactDetails, CrmGateway, DealStage

log = logging.getLogger("booking_assistant.gateways.hubspot")

# Stages of HubSpot's default sales pipeline
DEAL_STAGES: dict[DealStage, str] = {
    DealStage.SCHEDULED: "appointmentscheduled",
    DealStage.RESCHEDULED: "appointmentscheduled",
    DealStage.CANCELLED: "closedlost",
    DealStage.COMPLETED: "closedwon",
}

_TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


def deal_name(booking_id: str) -> str:
    return f"Booking {booking_id}"


class HubSpotCrmGateway(CrmGateway):
    """CrmGateway backed by HubSpot private-app access tokens."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not access_token:
            raise ConfigurationError("HUBSPOT_ACCESS_TOKEN is required for CRM sync.")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "HubSpotCrmGateway":
        return cls(
            access_token=settings.hubspot_access_token,
            base_url=settings.hubspot_base_url,
            timeout=settings.gateway_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise TransientGatewayError(f"HubSpot {method} {path} failed: {exc}") from exc

        if resp.status_code in _TRANSIENT_STATUSES:
            raise TransientGatewayError(
                f"HubSpot {method} {path} returned {resp.status_code}"
            )
        if resp.is_error:
            raise GatewayError(
                f"HubSpot {method} {path} returned {resp.status_code}: {resp.text[:200]}"
            )
        return resp.json() if resp.content else {}

    async def _search(self, object_type: str, prop: str, value: str) -> Optional[str]:
        data = await self._request(
            "POST",
            f"/crm/v3/objects/{object_type}/search",
            json={
                "filterGroups": [
                    {"filters": [{"propertyName": prop, "operator": "EQ", "value": value}]}
                ],
                "limit": 1,
            },
        )
        results = data.get("results", [])
        return results[0]["id"] if results else None

    # ------------------------------------------------------------------
    # CrmGateway interface
    # ------------------------------------------------------------------

    async def upsert_contact(self, details: ContactDetails) -> str:
        first, _, last = details.name.partition(" ")
        properties = {
            "email": details.email,
            "firstname": first,
            "lastname": last,
        }
        if details.phone:
            properties["phone"] = details.phone
        if details.company:
            properties["company"] = details.company
        if details.inquiry:
            properties["message"] = details.inquiry

        contact_id = await self._search("contacts", "email", details.email)
        if contact_id:
            await self._request(
                "PATCH", f"/crm/v3/objects/contacts/{contact_id}", json={"properties": properties}
            )
            log.info("HubSpot contact %s updated for %s", contact_id, redact_pii(details.email))
            return contact_id

        created = await self._request(
            "POST", "/crm/v3/objects/contacts", json={"properties": properties}
        )
        log.info("HubSpot contact %s created for %s", created["id"], redact_pii(details.email))
        return created["id"]

    async def sync_deal_stage(
        self, booking_id: str, stage: DealStage, contact_id: Optional[str] = None,
    ) -> None:
        name = deal_name(booking_id)
        properties = {"dealname": name, "dealstage": DEAL_STAGES[stage], "pipeline": "default"}

        deal_id = await self._search("deals", "dealname", name)
        if deal_id:
            await self._request(
                "PATCH", f"/crm/v3/objects/deals/{deal_id}", json={"properties": properties}
            )
        else:
            created = await self._request(
                "POST", "/crm/v3/objects/deals", json={"properties": properties}
            )
            deal_id = created["id"]
        log.info("HubSpot deal %s for booking %s → %s", deal_id, booking_id, stage.value)
        if contact_id:
            # Idempotent on HubSpot's side.
            await self._request(
                "PUT",
                f"/crm/v4/objects/deals/{deal_id}/associations/default/contacts/{contact_id}",
            )
            log.info("HubSpot deal %s associated with contact %s", deal_id, contact_id)

    async def ping(self) -> bool:
        try:
            await self._request("GET", "/crm/v3/objects/contacts", params={"limit": 1})
        except GatewayError as exc:
            log.warning("HubSpot ping failed: %s", exc)
            return False
        return True
