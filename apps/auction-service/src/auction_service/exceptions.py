"""Write-side errors surfaced to callers."""

from uuid import UUID


class AuctionError(Exception):
    """Base class for auction service errors."""


class AuctionNotFoundError(AuctionError):
    def __init__(self, auction_id: UUID):
        self.auction_id = auction_id
        super().__init__(f"Auction {auction_id} not found")


class ForbiddenError(AuctionError):
    """Raised when someone other than the seller tries to change an auction."""

    def __init__(self, auction_id: UUID, actor: str):
        self.auction_id = auction_id
        self.actor = actor
        super().__init__(f"{actor} is not the seller of auction {auction_id}")


class PersistenceError(AuctionError):
    """The store was unavailable or rejected the operation; nothing was applied and no event was queued."""

    def __init__(self, message: str = "Could not save changes to the DB"):
        super().__init__(message)
