from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

PROTOCOL_VERSION = 1

TableName = Literal["messages", "notifications", "listings", "lost_found", "posts"]
SUBSCRIBABLE_TABLES: tuple[str, ...] = get_args(TableName)


class ProtocolError(Exception):
    def __init__(self, message: str, *, code: str = "INVALID_COMMAND") -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SubscribeCommand(_Command):
    op: Literal["subscribe"]
    tables: list[TableName] = Field(min_length=1)


class UnsubscribeCommand(_Command):
    op: Literal["unsubscribe"]
    tables: list[TableName] = Field(min_length=1)


class PingCommand(_Command):
    op: Literal["ping"]
    ts: int | None = None


Command = Annotated[SubscribeCommand | UnsubscribeCommand | PingCommand, Field(discriminator="op")]
_commands = TypeAdapter(Command)


def parse_command(raw_text: str, *, max_bytes: int) -> SubscribeCommand | UnsubscribeCommand | PingCommand:
    if len(raw_text.encode("utf-8")) > max_bytes:
        raise ProtocolError("Frame is too large")
    try:
        return _commands.validate_json(raw_text)
    except ValidationError as exc:
        first = exc.errors()[0]
        if first["type"] == "json_invalid":
            raise ProtocolError("Invalid JSON payload") from exc
        if first["type"] in ("union_tag_invalid", "union_tag_not_found", "model_attributes_type"):
            raise ProtocolError("Unsupported command") from exc
        raise ProtocolError(str(first["msg"])) from exc


def _frame(kind: str, **fields: object) -> dict[str, object]:
    frame: dict[str, object] = {"type": kind}
    frame.update((key, value) for key, value in fields.items() if value is not None)
    return frame


def welcome_frame(*, connection_id: str, user_id: str, heartbeat_sec: int) -> dict[str, object]:
    return _frame(
        "connection.welcome",
        connection_id=connection_id,
        user_id=user_id,
        server_time=datetime.now(UTC).isoformat(),
        heartbeat_sec=heartbeat_sec,
        tables=list(SUBSCRIBABLE_TABLES),
        protocol_version=PROTOCOL_VERSION,
    )


def ack_frame(*, op: str, details: dict[str, object] | None = None) -> dict[str, object]:
    return _frame("ack", op=op, ok=True, details=details or None)


def error_frame(*, code: str, message: str, details: dict[str, object] | None = None) -> dict[str, object]:
    error: dict[str, object] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return _frame("error", error=error)


def pong_frame(*, ts: int | None = None) -> dict[str, object]:
    return _frame("pong", ts=ts)


def change_frame(*, event_id: str, table: str, op: str, occurred_at: str, row: dict[str, object]) -> dict[str, object]:
    return _frame("change", event_id=event_id, table=table, op=op, occurred_at=occurred_at, row=row)
