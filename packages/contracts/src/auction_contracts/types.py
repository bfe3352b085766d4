"""
Event Types - Known domain events exchanged between auction services.

The auction service publishes the auction lifecycle events through its
outbox. Bid and finish events come from the bidding/auction-end producers.
"""

from enum import Enum


class EventType(str, Enum):
    """
    Known event types.

    Format: subject_action (e.g., auction_created, bid_placed)
    """

    # Published by the auction service (via outbox)
    AUCTION_CREATED = "auction_created"
    AUCTION_UPDATED = "auction_updated"
    AUCTION_DELETED = "auction_deleted"

    # Published by the bidding side
    BID_PLACED = "bid_placed"
    AUCTION_FINISHED = "auction_finished"

    def __str__(self) -> str:
        return self.value


class AuctionStatus(str, Enum):
    """Lifecycle status of an auction on the write side."""

    LIVE = "Live"
    FINISHED = "Finished"
    RESERVE_NOT_MET = "ReserveNotMet"

    def __str__(self) -> str:
        return self.value


class BidStatus(str, Enum):
    """Outcome of a bid as reported by the bidding side."""

    ACCEPTED = "Accepted"
    ACCEPTED_BELOW_RESERVE = "AcceptedBelowReserve"
    TOO_LOW = "TooLow"
    FINISHED = "Finished"

    @property
    def is_accepted(self) -> bool:
        return self in (BidStatus.ACCEPTED, BidStatus.ACCEPTED_BELOW_RESERVE)

    def __str__(self) -> str:
        return self.value
