"""Durable click store on async SQLAlchemy.

mark_matched is a single-row conditional UPDATE (WHERE matched = false), so
at most one caller can match a click even across processes.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from calltrack.errors import ConflictError, NotFoundError
from calltrack.schemas import ClickEvent
from calltrack.store import ClickStore, prepare_click

from api.db.models import CallClick


def _to_event(row: CallClick) -> ClickEvent:
    """Convert a database row to a ClickEvent."""
    return ClickEvent(
        id=row.id,
        created_at=row.created_at,
        affiliate_id=row.affiliate_id,
        clicked_number=row.destination_number,
        page_url=row.page_url,
        matched=row.matched,
        caller_number=row.caller_number,
        call_start=row.call_start,
        call_duration=row.call_duration,
        lead_sent=row.lead_sent,
        lead_error=row.lead_error,
    )


class SQLClickStore(ClickStore):
    """Click store backed by the call_clicks table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the store.

        Args:
            session_factory: Async session factory; each operation uses its
                own session and transaction.
        """
        self._session_factory = session_factory

    async def record(self, click: ClickEvent) -> UUID:
        prepared = prepare_click(click)
        async with self._session_factory() as session, session.begin():
            session.add(
                CallClick(
                    id=prepared.id,
                    created_at=prepared.created_at,
                    affiliate_id=prepared.affiliate_id,
                    destination_number=prepared.clicked_number,
                    page_url=prepared.page_url,
                    matched=False,
                )
            )
        return prepared.id

    async def get(self, click_id: UUID) -> ClickEvent | None:
        async with self._session_factory() as session:
            row = await session.get(CallClick, click_id)
            return _to_event(row) if row else None

    async def list_unmatched(self) -> list[ClickEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CallClick)
                .where(CallClick.matched.is_(False))
                .order_by(CallClick.created_at.desc())
            )
            return [_to_event(row) for row in result.scalars()]

    async def mark_matched(
        self,
        click_id: UUID,
        caller_number: str,
        call_start: datetime,
        call_duration: int,
    ) -> ClickEvent:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(CallClick)
                .where(CallClick.id == click_id)
                .where(CallClick.matched.is_(False))
                .values(
                    matched=True,
                    caller_number=caller_number,
                    call_start=call_start,
                    call_duration=call_duration,
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                exists = await session.scalar(
                    select(CallClick.id).where(CallClick.id == click_id)
                )
                if exists is None:
                    raise NotFoundError(f"Click not found: {click_id}")
                raise ConflictError(f"Click already matched: {click_id}")

            row = await session.get(CallClick, click_id)
            return _to_event(row)

    async def list_matched_between(
        self, start: datetime, end: datetime
    ) -> list[ClickEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CallClick)
                .where(CallClick.matched.is_(True))
                .where(CallClick.call_start >= start)
                .where(CallClick.call_start <= end)
            )
            return [_to_event(row) for row in result.scalars()]

    async def record_lead_delivery(
        self, click_id: UUID, error: str | None = None
    ) -> None:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(CallClick)
                .where(CallClick.id == click_id)
                .values(lead_sent=error is None, lead_error=error)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Click not found: {click_id}")

    async def count(self) -> int:
        """Count stored clicks."""
        async with self._session_factory() as session:
            result = await session.execute(select(CallClick.id))
            return len(result.all())
