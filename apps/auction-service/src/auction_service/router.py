"""Auctions HTTP API."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from auction_service.deps import get_auction_service, require_identity
from auction_service.schemas import AuctionDto, CreateAuctionDto, UpdateAuctionDto
from auction_service.service import AuctionService

auctions_router = APIRouter(prefix="/auctions", tags=["auctions"])


@auctions_router.get("", response_model=list[AuctionDto])
def get_all_auctions(
    date: datetime | None = Query(None, description="Only auctions updated after this instant"),
    since: datetime | None = Query(None, description="Alias of date"),
    service: AuctionService = Depends(get_auction_service),
):
    return service.list_auctions(since=since or date)


@auctions_router.get("/{auction_id}", response_model=AuctionDto)
def get_auction_by_id(
    auction_id: UUID,
    service: AuctionService = Depends(get_auction_service),
):
    return service.get_auction(auction_id)


@auctions_router.post("", response_model=AuctionDto, status_code=status.HTTP_201_CREATED)
def create_auction(
    body: CreateAuctionDto,
    identity: str = Depends(require_identity),
    service: AuctionService = Depends(get_auction_service),
):
    return service.create_auction(body, actor=identity)


@auctions_router.put("/{auction_id}", response_model=AuctionDto)
def update_auction(
    auction_id: UUID,
    body: UpdateAuctionDto,
    identity: str = Depends(require_identity),
    service: AuctionService = Depends(get_auction_service),
):
    return service.update_auction(auction_id, body, actor=identity)


@auctions_router.delete("/{auction_id}")
def delete_auction(
    auction_id: UUID,
    identity: str = Depends(require_identity),
    service: AuctionService = Depends(get_auction_service),
):
    service.delete_auction(auction_id, actor=identity)
    return {"status": "deleted", "id": str(auction_id)}
