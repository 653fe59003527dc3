from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from campus_market.schemas.profiles import ProfilePublic


class FriendRequestCreate(BaseModel):
    receiver_id: str = Field(min_length=1, max_length=64)


class FriendRequestResponse(BaseModel):
    accept: bool


class FriendRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str
    receiver_id: str
    status: str
    created_at: datetime
    profile: ProfilePublic | None = None


class FriendsOverview(BaseModel):
    friends: list[FriendRead]
    pending_requests: list[FriendRead]
