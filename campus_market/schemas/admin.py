from __future__ import annotations

from pydantic import BaseModel


class AdminStats(BaseModel):
    profiles: int
    listings: int
    active_listings: int
    sold_listings: int
    transactions: int
    ratings: int
    active_listings_by_category: dict[str, int]
