"""Pydantic schemas for call click tracking.

ClickEvent is what the web page records, CallRecord is the read-only view
of a PBX call-detail record, LeadRecord is what gets forwarded to the
affiliate-tracking service once a click and a call are reconciled.
"""

import re
from datetime import datetime, timezone
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Helpers
# =============================================================================

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str:
    """Strip everything but digits: "(555) 123-4567" -> "5551234567"."""
    if not raw:
        return ""
    return _NON_DIGITS.sub("", raw)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Click Event
# =============================================================================


class ClickEvent(BaseModel):
    """A click on a "call" button.

    Created unmatched. The reconciliation engine sets matched=True and the
    call fields exactly once; nothing ever sets matched back to False.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="createdAt",
    )

    affiliate_id: str | None = Field(default=None, alias="affiliateId")
    clicked_number: str = Field(alias="clickedNumber")  # Digits only once stored
    page_url: str | None = Field(default=None, alias="pageUrl")

    # Populated on match
    matched: bool = False
    caller_number: str | None = Field(default=None, alias="callerNumber")
    call_start: datetime | None = Field(default=None, alias="callStart")
    call_duration: int | None = Field(default=None, alias="callDuration")

    # Lead delivery bookkeeping (never affects matching)
    lead_sent: bool = Field(default=False, alias="leadSent")
    lead_error: str | None = Field(default=None, alias="leadError")

    @field_validator("created_at", "call_start")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @property
    def claimed_call(self) -> tuple[str, datetime] | None:
        """Claim key of the call this click was matched to, if any."""
        if not self.matched or self.call_start is None:
            return None
        return normalize_phone(self.caller_number), self.call_start


# =============================================================================
# Call Record (PBX CDR view)
# =============================================================================


class CallRecord(BaseModel):
    """One call-detail record as returned by the PBX.

    Accepts both the CDR column names (src, dst, start, uniqueid) and the
    camelCase names used by the call-logs API. The called number is kept
    raw; normalization happens at match time.
    """

    model_config = ConfigDict(populate_by_name=True)

    caller_number: str = Field(
        default="",
        validation_alias=AliasChoices("callerNumber", "caller_number", "src"),
    )
    called_number: str = Field(
        validation_alias=AliasChoices("calledNumber", "called_number", "dst"),
    )
    start: datetime = Field(
        validation_alias=AliasChoices("start", "timestamp", "calldate", "callStart"),
    )
    duration: int = Field(
        default=0,
        validation_alias=AliasChoices("duration", "billsec"),
    )
    call_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("callId", "call_id", "uniqueid"),
    )

    @field_validator("caller_number", "called_number", mode="before")
    @classmethod
    def _number_to_str(cls, value):
        if value is None:
            return ""
        return str(value)

    @field_validator("call_id", mode="before")
    @classmethod
    def _call_id_to_str(cls, value):
        if value is None:
            return None
        return str(value)

    @field_validator("start")
    @classmethod
    def _start_to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def claim_key(self) -> tuple[str, datetime]:
        """Identity used to attribute a call to at most one click."""
        return normalize_phone(self.caller_number), self.start


# =============================================================================
# Lead Record (outbound)
# =============================================================================


class LeadRecord(BaseModel):
    """A reconciled (click, call) pair ready for the affiliate service."""

    phone_number: str  # The caller, which is what the lead is about
    click_id: UUID
    affiliate_id: str | None = None
    clicked_at: datetime | None = None
    call_started_at: datetime | None = None
    call_duration: int | None = None
    destination_number: str | None = None
    page_url: str | None = None

    @classmethod
    def from_match(cls, click: ClickEvent, call: CallRecord) -> "LeadRecord":
        """Build the lead for a click that was just matched to a call."""
        return cls(
            phone_number=normalize_phone(call.caller_number),
            click_id=click.id,
            affiliate_id=click.affiliate_id,
            clicked_at=click.created_at,
            call_started_at=call.start,
            call_duration=call.duration,
            destination_number=click.clicked_number,
            page_url=click.page_url,
        )
