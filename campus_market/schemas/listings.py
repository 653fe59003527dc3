from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from campus_market.models.listing import CATEGORIES, CONDITIONS
from campus_market.schemas.profiles import ProfilePublic

ListingStatus = Literal["active", "reserved", "sold", "inactive"]


def _check_choice(value: str, choices: tuple[str, ...], label: str) -> str:
    if value not in choices:
        raise ValueError(f"{label} must be one of: {', '.join(choices)}")
    return value


class ListingCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=5000)
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    category: str
    condition: str

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: str) -> str:
        return _check_choice(value, CATEGORIES, "category")

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, value: str) -> str:
        return _check_choice(value, CONDITIONS, "condition")


class ListingUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=5000)
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    category: str | None = None
    condition: str | None = None
    status: ListingStatus | None = None

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: str | None) -> str | None:
        return None if value is None else _check_choice(value, CATEGORIES, "category")

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, value: str | None) -> str | None:
        return None if value is None else _check_choice(value, CONDITIONS, "condition")


class ListingImageCreateRequest(BaseModel):
    url: str = Field(min_length=1, max_length=1024)


class ListingImageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    listing_id: str
    url: str
    created_at: datetime


class ListingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    description: str | None
    price: float | None
    category: str
    condition: str
    status: str
    created_at: datetime
    updated_at: datetime


class ListingDetail(BaseModel):
    listing: ListingRead
    images: list[ListingImageRead]
    seller: ProfilePublic | None


class CompleteTransactionRequest(BaseModel):
    buyer_id: str = Field(min_length=1, max_length=64)


class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    status: str
    completed_at: datetime | None
