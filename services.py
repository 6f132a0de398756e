import hashlib
import logging
from typing import Any, Dict, Optional

import httpx

from config import Settings

AIRTABLE_API_BASE = "https://api.airtable.com/v0"
EMAILOCTOPUS_API_BASE = "https://emailoctopus.com/api/1.6"
MAILERSEND_API_BASE = "https://api.mailersend.com/v1"

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def email_formula(email: str) -> str:
    """Airtable formula matching the Email column regardless of case and surrounding spaces."""
    escaped = normalize_email(email).replace("\\", "\\\\").replace("'", "\\'")
    return f"LOWER(TRIM({{Email}}))='{escaped}'"


class AirtableClient:
    """Subscriber records in the Airtable table."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self.client = client
        self.url = f"{AIRTABLE_API_BASE}/{settings.airtable_base_id}/{settings.airtable_table_id}"
        self.headers = {
            "Authorization": f"Bearer {settings.airtable_token}",
            "Content-Type": "application/json",
        }

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        params = {"filterByFormula": email_formula(email), "maxRecords": 1}
        response = await self.client.get(self.url, params=params, headers=self.headers)
        response.raise_for_status()
        records = response.json().get("records") or []
        return records[0] if records else None

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.post(self.url, json={"fields": fields}, headers=self.headers)
        response.raise_for_status()
        return response.json()

    async def update(self, record_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.patch(
            f"{self.url}/{record_id}", json={"fields": fields}, headers=self.headers
        )
        response.raise_for_status()
        return response.json()


class EmailOctopusClient:
    """Contacts on a single EmailOctopus list."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self.client = client
        self.url = f"{EMAILOCTOPUS_API_BASE}/lists/{settings.eo_list_id}/contacts"
        self.params = {"api_key": settings.eo_api_key}

    async def get_contact(self, email: str) -> Optional[Dict[str, Any]]:
        # contacts can be addressed by the MD5 hash of the lower-cased address
        member_id = hashlib.md5(normalize_email(email).encode("utf-8")).hexdigest()
        response = await self.client.get(f"{self.url}/{member_id}", params=self.params)
        if response.status_code == 200:
            return response.json()
        return None

    async def create_contact(self, email: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"email_address": email, "fields": fields}
        response = await self.client.post(self.url, json=payload, params=self.params)
        response.raise_for_status()
        return response.json()

    async def update_contact(self, contact_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.patch(
            f"{self.url}/{contact_id}", json={"fields": fields}, params=self.params
        )
        response.raise_for_status()
        return response.json()


class MailerSendClient:
    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self.client = client
        self.settings = settings
        self.headers = {
            "Authorization": f"Bearer {settings.mailersend_api_key}",
            "Content-Type": "application/json",
        }

    @property
    def sender(self) -> Dict[str, str]:
        return {"email": self.settings.mail_from_email, "name": self.settings.mail_from_name}

    async def _send(self, payload: Dict[str, Any]) -> httpx.Response:
        response = await self.client.post(
            f"{MAILERSEND_API_BASE}/email", json=payload, headers=self.headers
        )
        response.raise_for_status()
        return response

    async def send_template(self, to_email: str, to_name: str, template_id: str, data: Dict[str, Any]):
        payload = {
            "from": self.sender,
            "to": [{"email": to_email, "name": to_name}],
            "template_id": template_id,
            "personalization": [{"email": to_email, "data": data}],
        }
        response = await self._send(payload)
        logger.info(f"MailerSend template {template_id} to {to_email}: {response.status_code}")
        return response

    async def send_text(self, to_email: str, to_name: str, subject: str, text: str):
        payload = {
            "from": self.sender,
            "to": [{"email": to_email, "name": to_name}],
            "subject": subject,
            "text": text,
        }
        response = await self._send(payload)
        logger.info(f"MailerSend alert to {to_email}: {response.status_code}")
        return response
