from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from campus_market.schemas.profiles import ProfilePublic


class PostCreateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    image_url: str | None = Field(default=None, max_length=1024)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Post content cannot be blank")
        return value


class PostRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    content: str
    image_url: str | None
    created_at: datetime
    updated_at: datetime


class PostWithAuthor(BaseModel):
    post: PostRead
    author: ProfilePublic | None
