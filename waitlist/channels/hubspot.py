from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from waitlist.channels.base import CRMSync

logger = logging.getLogger(__name__)

HUBSPOT_CONTACTS_URL = "https://api.hubapi.com/crm/v3/objects/contacts"


def to_hubspot_properties(email: str, attributes: dict[str, Any]) -> dict[str, str]:
    """HubSpot wants every property as a string; timestamps go out as ISO-8601."""
    properties = {"email": email}
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, datetime):
            properties[key] = value.isoformat()
        elif isinstance(value, bool):
            properties[key] = "true" if value else "false"
        else:
            properties[key] = str(value)
    return properties


class HubSpotCRMSync(CRMSync):
    def __init__(self, *, access_token: str, http_timeout_seconds: float) -> None:
        self._access_token = access_token
        self._timeout = http_timeout_seconds

    async def upsert_contact(self, email: str, attributes: dict[str, Any]) -> bool:
        properties = to_hubspot_properties(email, attributes)
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.patch(
                    f"{HUBSPOT_CONTACTS_URL}/{quote(email)}",
                    params={"idProperty": "email"},
                    json={"properties": properties},
                    headers=headers,
                )
                if response.status_code == 404:
                    response = await client.post(
                        HUBSPOT_CONTACTS_URL,
                        json={"properties": properties},
                        headers=headers,
                    )
            if response.status_code >= 400:
                logger.error("HubSpot API error %d: %s", response.status_code, response.text)
                return False
            logger.info("HubSpot contact synced for %s", email)
            return True
        except httpx.HTTPError:
            logger.exception("Failed to sync HubSpot contact %s", email)
            return False
