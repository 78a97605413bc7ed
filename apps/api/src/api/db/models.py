"""SQLAlchemy models for call click tracking."""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from api.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallClick(Base):
    """A click on a website "call" button and, once reconciled, its call."""

    __tablename__ = "call_clicks"

    # Uuid (not the Postgres-only UUID) so the table also works on SQLite
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    # Click details
    affiliate_id: Mapped[str | None] = mapped_column(String(255))
    destination_number: Mapped[str] = mapped_column(String(20), nullable=False)
    page_url: Mapped[str | None] = mapped_column(Text)

    # Match (written once by the reconciliation engine)
    matched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    caller_number: Mapped[str | None] = mapped_column(String(32))
    call_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    call_duration: Mapped[int | None] = mapped_column(Integer)

    # Lead delivery
    lead_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    lead_error: Mapped[str | None] = mapped_column(String(64))

    __table_args__ = (
        Index("ix_call_clicks_matched_created_at", "matched", "created_at"),
        Index("ix_call_clicks_call_start", "call_start"),
    )

    def __repr__(self) -> str:
        return (
            f"<CallClick(id={self.id}, destination={self.destination_number}, "
            f"matched={self.matched})>"
        )
