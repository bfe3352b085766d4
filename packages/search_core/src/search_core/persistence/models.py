"""
Search read-model tables.

These tables are OWNED by the search side and written only by the
projector. The auction service never reads or writes them.

Tables:
- search_items: denormalized auction projection keyed by auction id
- search_processed_events: event ids already applied (duplicate suppression)
- search_parked_events: events that could not be projected, kept for replay
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

SearchBase = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as some drivers return them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SearchStatus(str, Enum):
    """Read-model auction status. FINISHED is terminal."""

    ACTIVE = "active"
    FINISHED = "finished"

    def __str__(self) -> str:
        return self.value


class SearchItem(SearchBase):
    """
    Denormalized auction projection.

    A row created from a partial event (the auction_created event was not
    seen yet) is a placeholder: item attributes are NULL and
    ``needs_backfill`` is set until the attributes arrive.

    Attribute writes are last-writer-wins per field, ordered by the time of
    the event or snapshot carrying the value (``attribute_versions``).
    """

    __tablename__ = "search_items"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    seller = Column(String(255), nullable=True, index=True)

    # Item attributes (NULL on placeholders)
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    color = Column(String(50), nullable=True)
    mileage = Column(Integer, nullable=True)
    image_url = Column(String(500), nullable=True)
    reserve_price = Column(Integer, nullable=True)

    # Auction state
    status = Column(String(20), nullable=False, default=SearchStatus.ACTIVE.value)
    current_high_bid = Column(Integer, nullable=True)
    winner = Column(String(255), nullable=True, index=True)
    sold_amount = Column(Integer, nullable=True)
    auction_end = Column(DateTime(timezone=True), nullable=True)

    # Projection bookkeeping
    # attribute name -> ISO time of the event or snapshot that last wrote it
    attribute_versions = Column(JSONType, nullable=True)
    needs_backfill = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    projected_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_search_items_status_end", "status", "auction_end"),
        Index("idx_search_items_backfill", "needs_backfill"),
    )

    @property
    def is_finished(self) -> bool:
        return self.status == SearchStatus.FINISHED.value

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class ProcessedEvent(SearchBase):
    """One row per applied event id. The primary key rejects a concurrent duplicate."""

    __tablename__ = "search_processed_events"

    event_id = Column(Uuid(as_uuid=True), primary_key=True)
    event_type = Column(String(100), nullable=False)
    aggregate_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    result = Column(JSONType, nullable=True)


class ParkedEvent(SearchBase):
    """
    A stream message the projector could not apply.

    The raw stream entry is kept verbatim so it can be replayed after a fix.
    """

    __tablename__ = "search_parked_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    event_id = Column(String(64), nullable=True, index=True)
    event_type = Column(String(100), nullable=True)
    stream = Column(String(255), nullable=False)
    stream_msg_id = Column(String(64), nullable=False)
    raw = Column(JSONType, nullable=False, default=dict)
    error = Column(Text, nullable=False)
    attempts = Column(Integer, nullable=False, default=1)
    parked_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    replayed_at = Column(DateTime(timezone=True), nullable=True)
