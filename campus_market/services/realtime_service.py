from __future__ import annotations

from datetime import UTC, datetime
import json
from typing import Iterable

from sqlalchemy.orm import Session

from campus_market.models import RealtimeOutboxEvent

CHANGE_OPS = ("INSERT", "UPDATE", "DELETE")


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC).isoformat()
    return value.isoformat()


def encode_audience(profile_ids: Iterable[str]) -> str:
    return ",".join(sorted({profile_id for profile_id in profile_ids if profile_id}))


def decode_audience(raw: str) -> set[str]:
    return {item for item in raw.split(",") if item}


def enqueue_change(
    db: Session,
    *,
    table: str,
    op: str,
    row: dict[str, object],
    audience: Iterable[str] = (),
    occurred_at: datetime | None = None,
) -> None:
    """Stage a change event in the caller's transaction; it is published after commit."""
    if op not in CHANGE_OPS:
        raise ValueError(f"Unsupported change op: {op}")
    event_payload = {
        "occurred_at": serialize_datetime(occurred_at or datetime.now(UTC)),
        "row": row,
    }
    db.add(
        RealtimeOutboxEvent(
            table_name=table,
            op=op,
            audience=encode_audience(audience),
            payload_json=json.dumps(event_payload, separators=(",", ":"), sort_keys=True, default=str),
            next_attempt_at=datetime.now(UTC),
        )
    )
