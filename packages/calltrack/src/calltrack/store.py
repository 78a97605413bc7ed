"""Click Store contract and the in-memory implementation.

The store is the only shared mutable state in the service. Every match goes
through mark_matched, which must be a conditional update: it only applies
while the click is still unmatched.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from calltrack.errors import ConflictError, NotFoundError, ValidationError
from calltrack.schemas import ClickEvent, normalize_phone

# Longest digit string accepted as a destination (E.164 max is 15)
MAX_NUMBER_DIGITS: int = 20


def prepare_click(click: ClickEvent) -> ClickEvent:
    """Normalize a new click before it is persisted.

    Raises:
        ValidationError: If the destination has no digits or is too long.
    """
    digits = normalize_phone(click.clicked_number)
    if not digits:
        raise ValidationError(
            f"Destination number is empty or has no digits: {click.clicked_number!r}"
        )
    if len(digits) > MAX_NUMBER_DIGITS:
        raise ValidationError(
            f"Destination number is too long ({len(digits)} digits): {click.clicked_number!r}"
        )
    return click.model_copy(
        update={
            "clicked_number": digits,
            "matched": False,
            "caller_number": None,
            "call_start": None,
            "call_duration": None,
            "lead_sent": False,
            "lead_error": None,
        }
    )


class ClickStore(ABC):
    """Repository for click events."""

    @abstractmethod
    async def record(self, click: ClickEvent) -> UUID:
        """Persist a new unmatched click and return its id."""

    @abstractmethod
    async def get(self, click_id: UUID) -> ClickEvent | None:
        """Get a click by id, or None."""

    @abstractmethod
    async def list_unmatched(self) -> list[ClickEvent]:
        """All unmatched clicks, most recent first."""

    @abstractmethod
    async def mark_matched(
        self,
        click_id: UUID,
        caller_number: str,
        call_start: datetime,
        call_duration: int,
    ) -> ClickEvent:
        """Attach a call to a click if, and only if, it is still unmatched.

        Raises:
            NotFoundError: No click with this id.
            ConflictError: The click was already matched.
        """

    @abstractmethod
    async def list_matched_between(
        self, start: datetime, end: datetime
    ) -> list[ClickEvent]:
        """Matched clicks whose call started inside [start, end]."""

    @abstractmethod
    async def record_lead_delivery(
        self, click_id: UUID, error: str | None = None
    ) -> None:
        """Store the outcome of forwarding a click's lead."""


# =============================================================================
# In-Memory Store
# =============================================================================


class InMemoryClickStore(ClickStore):
    """Click store kept in process memory.

    All operations are protected by asyncio.Lock so the check-and-set in
    mark_matched cannot interleave with another pass. State is lost on
    restart; use the SQL store in production.
    """

    def __init__(self):
        self._clicks: dict[UUID, ClickEvent] = {}
        self._lock = asyncio.Lock()

    async def record(self, click: ClickEvent) -> UUID:
        prepared = prepare_click(click)
        async with self._lock:
            self._clicks[prepared.id] = prepared
        return prepared.id

    async def get(self, click_id: UUID) -> ClickEvent | None:
        async with self._lock:
            return self._clicks.get(click_id)

    async def list_unmatched(self) -> list[ClickEvent]:
        async with self._lock:
            unmatched = [c for c in self._clicks.values() if not c.matched]
        return sorted(unmatched, key=lambda c: c.created_at, reverse=True)

    async def mark_matched(
        self,
        click_id: UUID,
        caller_number: str,
        call_start: datetime,
        call_duration: int,
    ) -> ClickEvent:
        async with self._lock:
            click = self._clicks.get(click_id)
            if click is None:
                raise NotFoundError(f"Click not found: {click_id}")
            if click.matched:
                raise ConflictError(f"Click already matched: {click_id}")

            updated = click.model_copy(
                update={
                    "matched": True,
                    "caller_number": caller_number,
                    "call_start": call_start,
                    "call_duration": call_duration,
                }
            )
            self._clicks[click_id] = updated
            return updated

    async def list_matched_between(
        self, start: datetime, end: datetime
    ) -> list[ClickEvent]:
        async with self._lock:
            return [
                c
                for c in self._clicks.values()
                if c.matched and c.call_start is not None and start <= c.call_start <= end
            ]

    async def record_lead_delivery(
        self, click_id: UUID, error: str | None = None
    ) -> None:
        async with self._lock:
            click = self._clicks.get(click_id)
            if click is None:
                raise NotFoundError(f"Click not found: {click_id}")
            self._clicks[click_id] = click.model_copy(
                update={"lead_sent": error is None, "lead_error": error}
            )

    async def count(self) -> int:
        """Count stored clicks."""
        async with self._lock:
            return len(self._clicks)
