import hashlib
import json
from typing import Any, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings
from signup import create_app


def _unquote_formula(formula: str) -> str:
    value = formula.split("='", 1)[1][:-1]
    return value.replace("\\'", "'").replace("\\\\", "\\")


class FakeUpstream:
    """In-memory Airtable, EmailOctopus and MailerSend."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.emails: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.failing = set()

    def add_record(self, **fields) -> Dict[str, Any]:
        record = {"id": f"rec{len(self.records) + 1}", "fields": dict(fields)}
        self.records.append(record)
        return record

    def add_contact(self, email: str, **fields) -> Dict[str, Any]:
        key = hashlib.md5(email.strip().lower().encode()).hexdigest()
        contact = {"id": f"contact-{len(self.contacts) + 1}", "email_address": email, "fields": dict(fields)}
        self.contacts[key] = contact
        return contact

    def calls(self, method: str, host: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.host == host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host in self.failing:
            return httpx.Response(500, json={"error": "upstream down"})
        if host == "api.airtable.com":
            return self._airtable(request)
        if host == "emailoctopus.com":
            return self._octopus(request)
        if host == "api.mailersend.com":
            self.emails.append(json.loads(request.content))
            return httpx.Response(202)
        return httpx.Response(404)

    def _airtable(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            wanted = _unquote_formula(request.url.params["filterByFormula"])
            matches = [r for r in self.records
                       if r["fields"].get("Email", "").strip().lower() == wanted]
            return httpx.Response(200, json={"records": matches[:1]})
        fields = json.loads(request.content)["fields"]
        if request.method == "POST":
            return httpx.Response(200, json=self.add_record(**fields))
        record_id = request.url.path.rsplit("/", 1)[-1]
        record = next(r for r in self.records if r["id"] == record_id)
        record["fields"].update(fields)
        return httpx.Response(200, json=record)

    def _octopus(self, request: httpx.Request) -> httpx.Response:
        last = request.url.path.rsplit("/", 1)[-1]
        if request.method == "GET":
            if last in self.contacts:
                return httpx.Response(200, json=self.contacts[last])
            return httpx.Response(404, json={"error": {"code": "MEMBER_NOT_FOUND"}})
        body = json.loads(request.content)
        if request.method == "POST":
            return httpx.Response(200, json=self.add_contact(body["email_address"], **body["fields"]))
        contact = next(c for c in self.contacts.values() if c["id"] == last)
        contact["fields"].update(body["fields"])
        return httpx.Response(200, json=contact)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return Settings(
        airtable_token="pat-test",
        airtable_base_id="appBase",
        airtable_table_id="tblSubscribers",
        eo_api_key="eo-key",
        eo_list_id="list-1",
        mailersend_api_key="ms-key",
        mailersend_template_id="tmpl-optin",
    )


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def client(settings, upstream):
    app = create_app(settings, transport=httpx.MockTransport(upstream.handler))
    with TestClient(app) as test_client:
        yield test_client
