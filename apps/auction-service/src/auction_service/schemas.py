"""Request and response models for the auctions API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from auction_contracts.types import AuctionStatus


class CreateAuctionDto(BaseModel):
    make: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    year: int = Field(..., ge=1886, le=2100)
    color: str = Field(..., min_length=1, max_length=50)
    mileage: int = Field(..., ge=0)
    image_url: str | None = Field(None, max_length=500)
    reserve_price: int = Field(0, ge=0)
    auction_end: datetime


class UpdateAuctionDto(BaseModel):
    """
    Partial update.

    None leaves a field unchanged; for year and mileage 0 also means unset.
    """

    make: str | None = Field(None, min_length=1, max_length=100)
    model: str | None = Field(None, min_length=1, max_length=100)
    year: int | None = Field(None, ge=0, le=2100)
    color: str | None = Field(None, min_length=1, max_length=50)
    mileage: int | None = Field(None, ge=0)

    def changes(self) -> dict[str, str | int]:
        """Fields that carry a value."""
        values = self.model_dump()
        changed = {}
        for name, value in values.items():
            if value is None:
                continue
            if name in ("year", "mileage") and value == 0:
                continue
            changed[name] = value
        return changed


class AuctionDto(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    updated_at: datetime
    auction_end: datetime | None
    seller: str
    winner: str | None
    make: str
    model: str
    year: int
    color: str
    mileage: int
    image_url: str | None
    status: AuctionStatus
    reserve_price: int
    sold_amount: int | None
    current_high_bid: int | None
