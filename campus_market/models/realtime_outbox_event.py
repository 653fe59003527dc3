from __future__ import annotations

from datetime import UTC, datetime
import json
import uuid

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from campus_market.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RealtimeOutboxEvent(Base):
    """A row change staged in the writer's transaction and published once committed."""

    __tablename__ = "realtime_outbox_events"
    __table_args__ = (Index("ix_realtime_outbox_pending", "published_at", "next_attempt_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(36), unique=True, default=lambda: str(uuid.uuid4()))
    table_name: Mapped[str] = mapped_column(String(64), index=True)
    op: Mapped[str] = mapped_column(String(8))
    # Comma-separated profile ids allowed to see the row; empty means every subscriber.
    audience: Mapped[str] = mapped_column(Text, default="")
    payload_json: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_error: Mapped[str | None] = mapped_column(Text)

    def change(self) -> tuple[str, dict[str, object]]:
        """``(occurred_at, row)`` from the stored payload; raises ValueError when it is malformed."""
        payload = json.loads(self.payload_json)
        occurred_at = payload.get("occurred_at") if isinstance(payload, dict) else None
        row = payload.get("row") if isinstance(payload, dict) else None
        if not isinstance(occurred_at, str) or not isinstance(row, dict):
            raise ValueError(f"Malformed outbox payload event_id={self.event_id}")
        return occurred_at, row
