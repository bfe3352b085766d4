"""
Auction Service - authoritative write side.

Every mutation commits the auction change and its outbox row in one
transaction. The caller's identity is passed explicitly to each mutating
call; only the seller may update or delete an auction.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auction_contracts.payloads import AuctionCreated, AuctionDeleted, AuctionUpdated
from auction_contracts.types import AuctionStatus, EventType
from auction_service.exceptions import AuctionNotFoundError, ForbiddenError, PersistenceError
from auction_service.models import Auction, utcnow
from auction_service.outbox import enqueue_event
from auction_service.schemas import CreateAuctionDto, UpdateAuctionDto

logger = logging.getLogger(__name__)


class AuctionService:
    """CRUD over auctions with transactional event publishing."""

    def __init__(self, db: Session):
        self.db = db

    # --- Queries ---

    def list_auctions(self, since: datetime | None = None) -> list[Auction]:
        """List auctions ordered by make, optionally only those updated after ``since``."""
        with self._store_errors("list"):
            query = self.db.query(Auction)

            if since is not None:
                query = query.filter(Auction.updated_at > since)

            return query.order_by(Auction.make, Auction.model).all()

    def get_auction(self, auction_id: UUID) -> Auction:
        with self._store_errors("get", auction_id):
            auction = self.db.get(Auction, auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        return auction

    # --- Commands ---

    def create_auction(self, data: CreateAuctionDto, actor: str) -> Auction:
        """
        Create an auction owned by ``actor`` and queue AUCTION_CREATED.

        Raises:
            PersistenceError: the store rejected the write (nothing queued)
        """
        now = utcnow()
        auction = Auction(
            id=uuid4(),
            seller=actor,
            status=AuctionStatus.LIVE.value,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        self.db.add(auction)

        enqueue_event(
            self.db,
            EventType.AUCTION_CREATED,
            auction.id,
            AuctionCreated(
                id=auction.id,
                seller=actor,
                make=data.make,
                model=data.model,
                year=data.year,
                color=data.color,
                mileage=data.mileage,
                image_url=data.image_url,
                reserve_price=data.reserve_price,
                auction_end=data.auction_end,
                status=AuctionStatus.LIVE,
                created_at=now,
                updated_at=now,
            ),
            occurred_at=now,
        )

        self._commit("create", auction.id, actor)
        return auction

    def update_auction(self, auction_id: UUID, patch: UpdateAuctionDto, actor: str) -> Auction:
        """
        Apply a partial update and queue AUCTION_UPDATED.

        The row is locked for the rest of the transaction so concurrent
        patches to the same auction serialize instead of overwriting each
        other.

        Raises:
            AuctionNotFoundError: unknown id
            ForbiddenError: ``actor`` is not the seller
            PersistenceError: the store rejected the write
        """
        auction = self._load_for_update("update", auction_id, actor)

        if auction is None:
            self.db.rollback()
            raise AuctionNotFoundError(auction_id)

        if auction.seller != actor:
            self.db.rollback()
            raise ForbiddenError(auction_id, actor)

        changes = patch.changes()
        for name, value in changes.items():
            setattr(auction, name, value)
        now = utcnow()
        auction.updated_at = now

        enqueue_event(
            self.db,
            EventType.AUCTION_UPDATED,
            auction.id,
            AuctionUpdated(id=auction.id, **changes),
            occurred_at=now,
        )

        self._commit("update", auction.id, actor)
        return auction

    def delete_auction(self, auction_id: UUID, actor: str) -> None:
        """
        Delete an auction and queue AUCTION_DELETED.

        Raises:
            AuctionNotFoundError: unknown id
            ForbiddenError: ``actor`` is not the seller
            PersistenceError: the store rejected the write
        """
        auction = self._load_for_update("delete", auction_id, actor)

        if auction is None:
            self.db.rollback()
            raise AuctionNotFoundError(auction_id)

        if auction.seller != actor:
            self.db.rollback()
            raise ForbiddenError(auction_id, actor)

        self.db.delete(auction)
        enqueue_event(
            self.db,
            EventType.AUCTION_DELETED,
            auction_id,
            AuctionDeleted(id=auction_id),
        )

        self._commit("delete", auction_id, actor)

    @contextmanager
    def _store_errors(self, operation: str, auction_id: UUID | None = None, actor: str | None = None):
        """Roll back and raise PersistenceError for any store failure inside the block."""
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            target = f"auction {auction_id}" if auction_id else "auctions"
            logger.error(
                f"Failed to {operation} {target}: {e}",
                extra={"auction_id": str(auction_id) if auction_id else None, "actor": actor},
                exc_info=True,
            )
            raise PersistenceError() from e

    def _load_for_update(self, operation: str, auction_id: UUID, actor: str) -> Auction | None:
        with self._store_errors(operation, auction_id, actor):
            return (
                self.db.query(Auction)
                .filter(Auction.id == auction_id)
                .with_for_update()
                .populate_existing()
                .first()
            )

    def _commit(self, operation: str, auction_id: UUID, actor: str) -> None:
        with self._store_errors(operation, auction_id, actor):
            self.db.commit()

        logger.info(
            f"Auction {operation} committed",
            extra={"auction_id": str(auction_id), "actor": actor},
        )
