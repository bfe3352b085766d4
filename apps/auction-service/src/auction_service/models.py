"""
Auction Service Database Models

Tables owned by the auction service:
- auctions: authoritative auction records
- event_outbox: events waiting to be relayed to Redis Streams

An outbox row is always written in the same transaction as the auction
change it describes.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from auction_contracts.types import AuctionStatus

AuctionBase = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboxStatus(str, Enum):
    """Status of outbox events."""

    PENDING = "pending"
    PUBLISHED = "published"


class TimestampMixin:
    """Common timestamp fields."""

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Auction(AuctionBase, TimestampMixin):
    """
    An auctioned car.

    Only ``seller`` may update or delete the record.
    """

    __tablename__ = "auctions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    seller = Column(String(255), nullable=False, index=True)
    winner = Column(String(255), nullable=True)
    reserve_price = Column(Integer, nullable=False, default=0)
    sold_amount = Column(Integer, nullable=True)
    current_high_bid = Column(Integer, nullable=True)
    auction_end = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=AuctionStatus.LIVE.value)

    # Item attributes
    make = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False)
    color = Column(String(50), nullable=False)
    mileage = Column(Integer, nullable=False)
    image_url = Column(String(500), nullable=True)

    __table_args__ = (
        Index("idx_auctions_updated_at", "updated_at"),
        Index("idx_auctions_make", "make"),
    )


class EventOutbox(AuctionBase):
    """
    Pending domain events.

    Drained by the outbox relay. A row stays PENDING until Redis accepted
    it; failed attempts push ``next_attempt_at`` out with backoff.
    """

    __tablename__ = "event_outbox"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    event_id = Column(Uuid(as_uuid=True), nullable=False, unique=True, default=uuid4)
    aggregate_id = Column(Uuid(as_uuid=True), nullable=False)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    correlation_id = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=OutboxStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    published_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_event_outbox_status_created", "status", "created_at"),
        Index("idx_event_outbox_aggregate", "aggregate_id"),
    )
