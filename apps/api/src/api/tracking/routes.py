"""Call tracking API routes.

Provides click ingestion, the manual reconciliation trigger and the lead
delivery endpoint (also the manual retry path for failed leads).
"""

import logging
from datetime import datetime
from uuid import UUID

from calltrack.errors import NotFoundError, ValidationError
from calltrack.leads import LeadPublisher
from calltrack.scheduler import ReconciliationScheduler
from calltrack.schemas import ClickEvent, LeadRecord, normalize_phone
from calltrack.store import ClickStore
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import get_click_store, get_lead_publisher, get_scheduler

logger = logging.getLogger("call-tracking-api")

router = APIRouter(prefix="/api", tags=["Call Tracking"])


# =============================================================================
# Request/Response Models
# =============================================================================


class CallClickRequest(BaseModel):
    """Click on a website call button."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    affiliate_id: str | None = Field(default=None, alias="affiliateId")
    destination_number: str | None = Field(default=None, alias="destinationNumber")
    phone_number: str | None = Field(default=None, alias="phoneNumber")
    page_url: str | None = Field(default=None, alias="pageUrl")

    @property
    def number(self) -> str | None:
        """The tracked number that was clicked (destination wins)."""
        return self.destination_number or self.phone_number


class CallClickResponse(BaseModel):
    """Recorded click."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    click_id: UUID = Field(alias="clickId")


class CheckCallsResponse(BaseModel):
    """Outcome of a manual reconciliation run."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    skipped: bool = False
    matched: int = 0
    leads_sent: int = Field(default=0, alias="leadsSent")
    lead_failures: int = Field(default=0, alias="leadFailures")


class SendLeadRequest(BaseModel):
    """Lead to forward to the affiliate service."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    phone_number: str = Field(alias="phoneNumber")
    click_id: UUID = Field(alias="clickId")
    affiliate_id: str | None = Field(default=None, alias="affiliateId")
    timestamp: datetime | None = None  # Click time
    call_start: datetime | None = Field(default=None, alias="callStart")
    duration: int | None = None


class SendLeadResponse(BaseModel):
    """Lead delivered."""

    success: bool
    sent: bool


# =============================================================================
# Routes
# =============================================================================


@router.post("/call-click", response_model=CallClickResponse)
async def record_call_click(
    request: CallClickRequest,
    store: ClickStore = Depends(get_click_store),
):
    """Record a click on a call button.

    The click starts unmatched; the reconciliation engine attaches the call
    later. Returns 400 if no usable phone number was sent.
    """
    if not request.number or not request.number.strip():
        raise HTTPException(
            status_code=400,
            detail="destinationNumber or phoneNumber is required",
        )

    click = ClickEvent(
        affiliate_id=request.affiliate_id or None,
        clicked_number=request.number,
        page_url=request.page_url,
    )

    try:
        click_id = await store.record(click)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(
        f"Saved call click {click_id} for {normalize_phone(request.number)}"
        + (f" (affiliate {request.affiliate_id})" if request.affiliate_id else "")
    )
    return CallClickResponse(success=True, click_id=click_id)


@router.api_route(
    "/check-calls", methods=["GET", "POST"], response_model=CheckCallsResponse
)
async def check_calls(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    """Run a reconciliation pass now.

    Skipped (not queued) if a pass is already in progress.
    """
    try:
        result = await scheduler.trigger()
    except Exception as e:
        logger.exception(f"Manual reconciliation failed: {e}")
        raise HTTPException(status_code=500, detail="Reconciliation failed") from e

    if result is None:
        return CheckCallsResponse(
            success=True,
            skipped=True,
            message="Reconciliation already in progress",
        )

    return CheckCallsResponse(
        success=not result.degraded,
        message=f"PBX logs checked: {result.summary()}",
        matched=result.matched,
        leads_sent=result.leads_sent,
        lead_failures=result.lead_failures,
    )


@router.post("/send-lead", response_model=SendLeadResponse)
async def send_lead(
    request: SendLeadRequest,
    store: ClickStore = Depends(get_click_store),
    publisher: LeadPublisher = Depends(get_lead_publisher),
):
    """Forward a lead to the affiliate service.

    When the click id is known, missing details are filled from the stored
    click and the delivery outcome is written back to it.
    """
    phone = normalize_phone(request.phone_number)
    if not phone:
        raise HTTPException(status_code=400, detail="phoneNumber is required")

    click = await store.get(request.click_id)

    lead = LeadRecord(
        phone_number=phone,
        click_id=request.click_id,
        affiliate_id=request.affiliate_id or (click.affiliate_id if click else None),
        clicked_at=request.timestamp or (click.created_at if click else None),
        call_started_at=request.call_start or (click.call_start if click else None),
        call_duration=(
            request.duration
            if request.duration is not None
            else (click.call_duration if click else None)
        ),
        destination_number=click.clicked_number if click else None,
        page_url=click.page_url if click else None,
    )

    result = await publisher.send(lead)

    if click is not None:
        try:
            await store.record_lead_delivery(click.id, result.error)
        except NotFoundError:
            logger.warning(f"Click {click.id} vanished before lead delivery was saved")

    if not result.success:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": result.error},
        )

    return SendLeadResponse(success=True, sent=True)
