from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from campus_market.schemas.profiles import ProfilePublic


class LostFoundCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=5000)
    location: str | None = Field(default=None, max_length=255)
    found_date: date
    image_url: str | None = Field(default=None, max_length=1024)
    status: Literal["found", "lost"] = "found"


class LostFoundRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    description: str | None
    location: str | None
    found_date: date
    image_url: str | None
    status: str
    claimed_by: str | None
    created_at: datetime


class LostFoundDetail(BaseModel):
    item: LostFoundRead
    owner: ProfilePublic | None
