from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_BATCH_PROFILE_IDS = 100
ProfileId = Annotated[str, Field(min_length=1, max_length=64)]


class ProfilePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str | None
    student_id: str | None
    bio: str | None = None
    is_blocked: bool = False
    created_at: datetime
    last_seen_at: datetime | None = None


class ProfilePrivate(ProfilePublic):
    email: str
    is_admin: bool = False


class ProfileUpdateRequest(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=120)
    student_id: str | None = Field(default=None, max_length=32)
    bio: str | None = Field(default=None, max_length=2000)


class ProfileBatchLookupRequest(BaseModel):
    ids: list[ProfileId] = Field(min_length=1, max_length=MAX_BATCH_PROFILE_IDS)

    @field_validator("ids", mode="before")
    @classmethod
    def normalize_ids(cls, value: object) -> object:
        if not isinstance(value, list):
            return value

        normalized: list[object] = []
        seen: set[str] = set()
        for item in value:
            if not isinstance(item, str):
                normalized.append(item)
                continue
            trimmed = item.strip()
            if not trimmed or trimmed in seen:
                continue
            seen.add(trimmed)
            normalized.append(trimmed)
        return normalized


class EmailLookupRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
