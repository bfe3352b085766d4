"""
Search Projector

Applies auction domain events to the search read model.

Delivery is at-least-once and unordered across producers, so every apply
method is idempotent and tolerant of reordering for its auction:

- bid_placed only ever raises current_high_bid (monotonic max over
  accepted bids), and is ignored once the auction is finished
- auction_finished is terminal: the first one wins, repeats are no-ops
- auction_created fills attributes without touching bid/finish state
- attribute fields are last-writer-wins by event time, so a late
  auction_created or a stale auction_updated never overwrites newer values
- auction_deleted leaves a tombstone that swallows later events
- an event for an unknown auction creates a placeholder flagged for backfill
"""

import logging
from typing import Any

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from auction_contracts.envelope import EventEnvelope
from auction_contracts.payloads import (
    AuctionCreated,
    AuctionDeleted,
    AuctionFinished,
    AuctionUpdated,
    BidPlaced,
)
from search_core.exceptions import ProjectionError
from search_core.persistence.models import SearchItem, SearchStatus
from search_core.persistence.repo import SearchRepository

logger = logging.getLogger(__name__)


def _applied(**extra: Any) -> dict[str, Any]:
    return {"status": "applied", **extra}


def _ignored(reason: str, **extra: Any) -> dict[str, Any]:
    return {"status": "ignored", "reason": reason, **extra}


class SearchProjector:
    """Projects auction events onto ``search_items``."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SearchRepository(db)

    # --- Helpers ---

    def _parse(self, envelope: EventEnvelope, model: type[BaseModel]) -> Any:
        try:
            return model.model_validate(envelope.payload)
        except ValidationError as e:
            raise ProjectionError(
                f"Invalid {envelope.event_type} payload: {e.errors(include_url=False)}",
                event_id=str(envelope.event_id),
                event_type=envelope.event_type,
            ) from e

    def _check_aggregate(self, envelope: EventEnvelope, auction_id) -> None:
        if auction_id != envelope.aggregate_id:
            raise ProjectionError(
                f"Payload auction {auction_id} does not match envelope aggregate {envelope.aggregate_id}",
                event_id=str(envelope.event_id),
                event_type=envelope.event_type,
            )

    def _load_or_placeholder(self, envelope: EventEnvelope) -> tuple[SearchItem, bool]:
        """
        Load the target item, creating a backfill placeholder if it was never seen.

        Returns (item, created_placeholder).
        """
        item = self.repo.get_item_for_update(envelope.aggregate_id)
        if item is not None:
            return item, False

        item = self.repo.create_placeholder(envelope.aggregate_id)
        logger.warning(
            f"Event for unknown auction {envelope.aggregate_id}, created placeholder",
            extra={
                "event_id": str(envelope.event_id),
                "event_type": envelope.event_type,
                "auction_id": str(envelope.aggregate_id),
            },
        )
        return item, True

    # --- Event handlers ---

    def process_auction_created(self, envelope: EventEnvelope) -> dict[str, Any]:
        data: AuctionCreated = self._parse(envelope, AuctionCreated)
        self._check_aggregate(envelope, data.id)

        item = self.repo.get_item_for_update(data.id)
        if item is not None and item.is_deleted:
            return _ignored("deleted")

        if item is None:
            item = SearchItem(id=data.id, status=SearchStatus.ACTIVE.value)
            self.db.add(item)

        self.repo.apply_attributes(item, data.model_dump(), as_of=data.updated_at)
        if item.created_at is None:
            item.created_at = data.created_at
        if not item.is_finished:
            item.auction_end = data.auction_end
        item.needs_backfill = False
        self.db.flush()

        return _applied(auction_id=str(data.id))

    def process_auction_updated(self, envelope: EventEnvelope) -> dict[str, Any]:
        data: AuctionUpdated = self._parse(envelope, AuctionUpdated)
        self._check_aggregate(envelope, data.id)

        item, placeholder = self._load_or_placeholder(envelope)
        if item.is_deleted:
            return _ignored("deleted")

        changed = self.repo.apply_attributes(item, data.model_dump(), as_of=envelope.occurred_at)
        self.db.flush()

        return _applied(changed=changed, placeholder=placeholder)

    def process_auction_deleted(self, envelope: EventEnvelope) -> dict[str, Any]:
        data: AuctionDeleted = self._parse(envelope, AuctionDeleted)
        self._check_aggregate(envelope, data.id)

        item, placeholder = self._load_or_placeholder(envelope)
        if item.is_deleted:
            return _ignored("already_deleted")

        self.repo.tombstone(item, envelope.occurred_at)
        return _applied(placeholder=placeholder)

    def process_bid_placed(self, envelope: EventEnvelope) -> dict[str, Any]:
        """
        Raise current_high_bid for an accepted, strictly higher bid.

        Ignored once the auction is finished: the final result dominates
        any bid that arrives late.
        """
        data: BidPlaced = self._parse(envelope, BidPlaced)
        self._check_aggregate(envelope, data.auction_id)

        item, placeholder = self._load_or_placeholder(envelope)
        if item.is_deleted:
            return _ignored("deleted")

        if item.is_finished:
            return _ignored("auction_finished", placeholder=placeholder)

        if not data.bid_status.is_accepted:
            return _ignored("bid_not_accepted", placeholder=placeholder)

        if item.current_high_bid is not None and data.amount <= item.current_high_bid:
            return _ignored("not_higher", placeholder=placeholder)

        item.current_high_bid = data.amount
        self.db.flush()

        return _applied(current_high_bid=data.amount, placeholder=placeholder)

    def process_auction_finished(self, envelope: EventEnvelope) -> dict[str, Any]:
        """
        Move the auction to its terminal state.

        The completion time is the event's occurred_at, so re-applying the
        same event writes the same values.
        """
        data: AuctionFinished = self._parse(envelope, AuctionFinished)
        self._check_aggregate(envelope, data.auction_id)

        if data.item_sold and (data.winner is None or data.amount is None):
            raise ProjectionError(
                "Sold auction_finished event without winner or amount",
                event_id=str(envelope.event_id),
                event_type=envelope.event_type,
            )

        item, placeholder = self._load_or_placeholder(envelope)
        if item.is_deleted:
            return _ignored("deleted")

        if item.is_finished:
            if data.item_sold and (item.winner != data.winner or item.sold_amount != data.amount):
                logger.warning(
                    f"Conflicting finish for auction {item.id} ignored",
                    extra={
                        "auction_id": str(item.id),
                        "event_id": str(envelope.event_id),
                    },
                )
            return _ignored("already_finished", placeholder=placeholder)

        item.status = SearchStatus.FINISHED.value
        if data.item_sold:
            item.winner = data.winner
            item.sold_amount = data.amount
            item.auction_end = envelope.occurred_at
            if item.current_high_bid is None or item.current_high_bid < data.amount:
                item.current_high_bid = data.amount
        if data.seller and item.seller is None:
            item.seller = data.seller
        self.db.flush()

        return _applied(item_sold=data.item_sold, placeholder=placeholder)
