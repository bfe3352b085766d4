"""
Auction Event Payloads

Pydantic models for every domain event payload.
Producers dump them with ``model_dump(mode="json")``; consumers validate
incoming payloads with ``model_validate`` so a malformed event fails loudly
instead of half-applying.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from auction_contracts.types import AuctionStatus, BidStatus


class AuctionCreated(BaseModel):
    """Payload for AUCTION_CREATED. Full snapshot of the new auction."""

    id: UUID
    seller: str
    make: str
    model: str
    year: int
    color: str
    mileage: int
    image_url: str | None = None
    reserve_price: int = 0
    auction_end: datetime | None = None
    status: AuctionStatus = AuctionStatus.LIVE
    created_at: datetime
    updated_at: datetime


class AuctionUpdated(BaseModel):
    """
    Payload for AUCTION_UPDATED.

    Only the fields the seller changed are set; None means "unchanged".
    """

    id: UUID
    make: str | None = None
    model: str | None = None
    year: int | None = None
    color: str | None = None
    mileage: int | None = None


class AuctionDeleted(BaseModel):
    """Payload for AUCTION_DELETED."""

    id: UUID


class BidPlaced(BaseModel):
    """Payload for BID_PLACED."""

    id: str = Field(..., description="Bid identifier")
    auction_id: UUID
    bidder: str
    bid_time: datetime
    amount: int = Field(..., ge=0)
    bid_status: BidStatus


class AuctionFinished(BaseModel):
    """Payload for AUCTION_FINISHED."""

    auction_id: UUID
    item_sold: bool
    winner: str | None = None
    seller: str | None = None
    amount: int | None = Field(None, ge=0)
