"""Lead publishing to LeadDyno.

Forwards a reconciled (click, call) pair to the affiliate-tracking service.
Delivery failures never propagate: they are logged and reported as a
PublishResult with an error code, and the click stays matched.
"""

import logging
import os
from dataclasses import dataclass

import httpx

from calltrack.config import env_float
from calltrack.errors import PublishError
from calltrack.schemas import CallRecord, ClickEvent, LeadRecord

logger = logging.getLogger("call-tracking-leads")

DEFAULT_LEAD_API_URL = "https://api.leaddyno.com/v1/leads"
LEAD_SOURCE = "Website Call Button"


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class LeadConfig:
    """Affiliate-tracking service configuration."""

    api_key: str
    api_url: str = DEFAULT_LEAD_API_URL
    email_domain: str = "caller.com"
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "LeadConfig":
        """Load lead service config from environment variables."""
        api_key = os.getenv("LEADDYNO_API_KEY", "")
        if not api_key:
            logger.warning("LEADDYNO_API_KEY not set - leads will not be sent")

        return cls(
            api_key=api_key,
            api_url=os.getenv("LEADDYNO_API_URL", DEFAULT_LEAD_API_URL),
            email_domain=os.getenv("LEAD_EMAIL_DOMAIN", "caller.com"),
            timeout_seconds=env_float("LEAD_TIMEOUT_SECONDS", 10.0),
        )

    def is_configured(self) -> bool:
        """Check if the lead service is configured."""
        return bool(self.api_key and self.api_url)


@dataclass
class PublishResult:
    """Result of a lead delivery attempt."""

    success: bool
    status_code: int | None = None
    error: str | None = None


# =============================================================================
# Payload
# =============================================================================


def build_lead_payload(lead: LeadRecord, config: LeadConfig) -> dict:
    """Build the LeadDyno request body for a lead.

    LeadDyno keys leads by email, so callers get a synthetic address built
    from their number.
    """
    metadata = {
        "phoneNumber": lead.phone_number,
        "clickId": str(lead.click_id),
        "destinationNumber": lead.destination_number,
        "pageUrl": lead.page_url,
        "clickTimestamp": lead.clicked_at.isoformat() if lead.clicked_at else None,
        "callTimestamp": (
            lead.call_started_at.isoformat() if lead.call_started_at else None
        ),
        "callDuration": lead.call_duration,
    }

    return {
        "key": config.api_key,
        "email": f"{lead.phone_number or lead.click_id}@{config.email_domain}",
        "first_name": "Phone Lead",
        "last_name": str(lead.click_id),
        "phone": lead.phone_number,
        "affiliate_id": lead.affiliate_id or "",
        "source": LEAD_SOURCE,
        "custom": {k: v for k, v in metadata.items() if v is not None},
    }


# =============================================================================
# Publisher
# =============================================================================


class LeadPublisher:
    """Sends leads to the affiliate-tracking API."""

    def __init__(
        self,
        config: LeadConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the publisher.

        Args:
            config: Lead service configuration. Loads from env if not provided.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config or LeadConfig.from_env()
        self._transport = transport

    async def publish(self, click: ClickEvent, call: CallRecord) -> PublishResult:
        """Publish the lead for a click that was just matched to a call."""
        return await self.send(LeadRecord.from_match(click, call))

    async def send(self, lead: LeadRecord) -> PublishResult:
        """Send a lead. Never raises.

        Returns:
            PublishResult with success flag, HTTP status and error code.
        """
        try:
            status_code = await self._post(lead)
        except PublishError as e:
            logger.error(f"Lead for click {lead.click_id} not sent ({e.code}): {e}")
            return PublishResult(success=False, error=e.code)

        logger.info(f"Lead sent for click {lead.click_id} (caller {lead.phone_number})")
        return PublishResult(success=True, status_code=status_code)

    async def _post(self, lead: LeadRecord) -> int:
        if not self.config.is_configured():
            raise PublishError(
                "lead_service_not_configured",
                "LeadDyno not configured. Check LEADDYNO_API_KEY",
            )

        payload = build_lead_payload(lead, self.config)

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(self.config.api_url, json=payload)
        except httpx.TimeoutException as e:
            raise PublishError("lead_service_timeout", f"Timed out: {e!s}") from e
        except httpx.InvalidURL as e:
            raise PublishError(
                "lead_service_unreachable", f"Invalid LEADDYNO_API_URL: {e!s}"
            ) from e
        except httpx.HTTPError as e:
            raise PublishError("lead_service_unreachable", f"{e!s}") from e

        if response.status_code >= 400:
            raise PublishError(
                "lead_service_rejected",
                f"HTTP {response.status_code}: {response.text[:200]}",
            )
        return response.status_code

