"""
Auction Contracts - events shared by the auction and search services.

Services communicate ONLY via:
- DB outbox on the auction side (transactional event publishing)
- Redis Streams event bus (via relay), partitioned by auction id
"""

from auction_contracts.envelope import EventEnvelope
from auction_contracts.payloads import (
    AuctionCreated,
    AuctionDeleted,
    AuctionFinished,
    AuctionUpdated,
    BidPlaced,
)
from auction_contracts.types import AuctionStatus, BidStatus, EventType

__all__ = [
    "EventEnvelope",
    "EventType",
    "AuctionStatus",
    "BidStatus",
    "AuctionCreated",
    "AuctionUpdated",
    "AuctionDeleted",
    "BidPlaced",
    "AuctionFinished",
]
