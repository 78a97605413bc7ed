"""Tests for lead publishing."""

import json
from uuid import uuid4

import httpx
import pytest
from calltrack.leads import LEAD_SOURCE, LeadConfig, LeadPublisher, build_lead_payload
from calltrack.schemas import LeadRecord

from factories import T0, at, make_call, make_click

LEAD_URL = "https://leads.example.com/v1/leads"


def make_publisher(handler, api_key: str = "ld-key") -> LeadPublisher:
    """Create a publisher wired to an httpx MockTransport."""
    config = LeadConfig(api_key=api_key, api_url=LEAD_URL)
    return LeadPublisher(config=config, transport=httpx.MockTransport(handler))


def make_lead(**overrides) -> LeadRecord:
    fields = {
        "phone_number": "5559998888",
        "click_id": uuid4(),
        "affiliate_id": "aff-7",
        "clicked_at": T0,
        "call_started_at": at(5),
        "call_duration": 42,
        "destination_number": "5551234567",
        "page_url": "https://example.com/quote",
    }
    fields.update(overrides)
    return LeadRecord(**fields)


class TestBuildLeadPayload:
    """Tests for the LeadDyno request body."""

    def test_full_payload(self):
        lead = make_lead()
        payload = build_lead_payload(lead, LeadConfig(api_key="ld-key"))

        assert payload["key"] == "ld-key"
        assert payload["email"] == "5559998888@caller.com"
        assert payload["first_name"] == "Phone Lead"
        assert payload["last_name"] == str(lead.click_id)
        assert payload["phone"] == "5559998888"
        assert payload["affiliate_id"] == "aff-7"
        assert payload["source"] == LEAD_SOURCE
        assert payload["custom"] == {
            "phoneNumber": "5559998888",
            "clickId": str(lead.click_id),
            "destinationNumber": "5551234567",
            "pageUrl": "https://example.com/quote",
            "clickTimestamp": "2025-06-02T15:00:00+00:00",
            "callTimestamp": "2025-06-02T15:00:05+00:00",
            "callDuration": 42,
        }

    def test_missing_optional_fields(self):
        lead = make_lead(
            affiliate_id=None,
            page_url=None,
            call_started_at=None,
            call_duration=None,
        )
        payload = build_lead_payload(lead, LeadConfig(api_key="k"))

        assert payload["affiliate_id"] == ""
        assert "pageUrl" not in payload["custom"]
        assert "callTimestamp" not in payload["custom"]
        assert "callDuration" not in payload["custom"]

    def test_email_domain(self):
        config = LeadConfig(api_key="k", email_domain="calls.example.com")
        payload = build_lead_payload(make_lead(), config)
        assert payload["email"] == "5559998888@calls.example.com"


class TestLeadConfig:
    """Tests for LeadConfig."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LEADDYNO_API_KEY", "ld-key")
        monkeypatch.setenv("LEAD_TIMEOUT_SECONDS", "2.5")
        monkeypatch.delenv("LEADDYNO_API_URL", raising=False)

        config = LeadConfig.from_env()

        assert config.api_key == "ld-key"
        assert config.api_url == "https://api.leaddyno.com/v1/leads"
        assert config.timeout_seconds == 2.5
        assert config.is_configured()

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("LEADDYNO_API_KEY", raising=False)
        assert not LeadConfig.from_env().is_configured()


class TestLeadPublisher:
    """Tests for LeadPublisher against a mock transport."""

    @pytest.mark.asyncio
    async def test_publish_match(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 99})

        publisher = make_publisher(handler)
        click = make_click(affiliate_id="aff-7")
        call = make_call(caller="(555) 999-8888", start=at(5))

        result = await publisher.publish(click, call)

        assert result.success is True
        assert result.status_code == 201
        assert result.error is None
        assert bodies[0]["phone"] == "5559998888"
        assert bodies[0]["affiliate_id"] == "aff-7"
        assert bodies[0]["custom"]["clickId"] == str(click.id)

    @pytest.mark.asyncio
    async def test_not_configured(self):
        def handler(request):
            raise AssertionError("no request expected")

        result = await make_publisher(handler, api_key="").send(make_lead())
        assert result.success is False
        assert result.error == "lead_service_not_configured"

    @pytest.mark.asyncio
    async def test_rejected(self):
        publisher = make_publisher(lambda request: httpx.Response(422, text="bad email"))
        result = await publisher.send(make_lead())
        assert result.success is False
        assert result.error == "lead_service_rejected"

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("no route to host", request=request)

        result = await make_publisher(handler).send(make_lead())
        assert result.error == "lead_service_unreachable"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        result = await make_publisher(handler).send(make_lead())
        assert result.error == "lead_service_timeout"

    @pytest.mark.asyncio
    async def test_malformed_url(self):
        config = LeadConfig(api_key="ld-key", api_url="http://[::1/leads")
        publisher = LeadPublisher(
            config=config,
            transport=httpx.MockTransport(lambda request: httpx.Response(201)),
        )

        result = await publisher.send(make_lead())

        assert result.success is False
        assert result.error == "lead_service_unreachable"
