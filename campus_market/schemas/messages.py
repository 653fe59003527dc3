from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SendMessageRequest(BaseModel):
    receiver_id: str = Field(min_length=1, max_length=64)
    content: str = Field(min_length=1, max_length=2000)
    listing_id: str | None = Field(default=None, max_length=64)
    lost_found_id: str | None = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def single_context(self) -> "SendMessageRequest":
        if self.listing_id and self.lost_found_id:
            raise ValueError("A message may reference a listing or a lost-and-found item, not both")
        return self


class MarkConversationReadRequest(BaseModel):
    partner_id: str = Field(min_length=1, max_length=64)


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str
    receiver_id: str
    content: str
    listing_id: str | None
    lost_found_id: str | None
    read: bool
    created_at: datetime
