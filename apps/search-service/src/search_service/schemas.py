"""Response models for the search API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SearchItemDto(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    seller: str | None
    winner: str | None
    make: str | None
    model: str | None
    year: int | None
    color: str | None
    mileage: int | None
    image_url: str | None
    reserve_price: int | None
    status: str
    current_high_bid: int | None
    sold_amount: int | None
    auction_end: datetime | None
    created_at: datetime | None
    updated_at: datetime | None


class SearchResultsDto(BaseModel):
    results: list[SearchItemDto]
    pageCount: int
    totalCount: int
