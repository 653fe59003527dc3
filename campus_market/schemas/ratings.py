from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RatingCreateRequest(BaseModel):
    to_user_id: str = Field(min_length=1, max_length=64)
    item_id: str | None = Field(default=None, max_length=64)
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


class RatingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    from_user_id: str
    to_user_id: str
    item_id: str | None
    rating: int
    comment: str | None
    created_at: datetime
    from_user_name: str | None = None


class RatingSummary(BaseModel):
    average: float
    count: int
