"""
Repository helpers for search-owned tables.

Simple CRUD operations; callers own the transaction (flush only).
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from search_core.persistence.models import (
    ParkedEvent,
    ProcessedEvent,
    SearchItem,
    SearchStatus,
    as_utc,
    utcnow,
)

ITEM_ATTRIBUTES = ("seller", "make", "model", "year", "color", "mileage", "image_url", "reserve_price")


class SearchRepository:
    """Repository for the search read model."""

    def __init__(self, db: Session):
        self.db = db

    # --- Items ---

    def get_item(self, item_id: UUID, include_deleted: bool = False) -> SearchItem | None:
        item = self.db.get(SearchItem, item_id)
        if item is not None and item.is_deleted and not include_deleted:
            return None
        return item

    def get_item_for_update(self, item_id: UUID) -> SearchItem | None:
        """Load an item (tombstones included) with a row lock for the projector."""
        return (
            self.db.query(SearchItem)
            .filter(SearchItem.id == item_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def create_placeholder(self, item_id: UUID) -> SearchItem:
        """Create a record known only by id, flagged for backfill."""
        item = SearchItem(
            id=item_id,
            status=SearchStatus.ACTIVE.value,
            needs_backfill=True,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def apply_attributes(self, item: SearchItem, attributes: dict[str, Any], as_of: datetime) -> bool:
        """
        Copy non-None item attributes onto ``item`` as of time ``as_of``.

        A field already written by a newer event or snapshot keeps its value,
        so applying the same writes in any order gives the same record.
        Returns True if any value changed.
        """
        as_of = as_utc(as_of)
        versions = dict(item.attribute_versions or {})
        changed = False
        for name in ITEM_ATTRIBUTES:
            value = attributes.get(name)
            if value is None:
                continue
            seen = versions.get(name)
            if seen is not None and as_utc(datetime.fromisoformat(seen)) > as_of:
                continue
            versions[name] = as_of.isoformat()
            if getattr(item, name) != value:
                setattr(item, name, value)
                changed = True

        item.attribute_versions = versions
        if item.updated_at is None or as_utc(item.updated_at) < as_of:
            item.updated_at = as_of
        return changed

    def tombstone(self, item: SearchItem, when: datetime | None = None) -> None:
        item.deleted_at = when or utcnow()
        item.needs_backfill = False
        self.db.flush()

    def get_backfill_candidates(self, limit: int = 100) -> list[SearchItem]:
        return (
            self.db.query(SearchItem)
            .filter(
                SearchItem.needs_backfill == True,  # noqa: E712
                SearchItem.deleted_at.is_(None),
            )
            .order_by(SearchItem.projected_at.asc())
            .limit(limit)
            .all()
        )

    def latest_update(self) -> datetime | None:
        """Most recent auction ``updated_at`` seen, for incremental sync."""
        return self.db.query(func.max(SearchItem.updated_at)).scalar()

    def search(
        self,
        search_term: str | None = None,
        seller: str | None = None,
        winner: str | None = None,
        filter_by: str | None = None,
        order_by: str | None = None,
        page_number: int = 1,
        page_size: int = 4,
    ) -> tuple[list[SearchItem], int]:
        """
        Search visible items (not deleted, attributes known).

        filter_by: "finished", "endingSoon" (ends within 6 hours) or "live"
        order_by: "make", "new" (newest first) or default ending soonest
        """
        query = self.db.query(SearchItem).filter(
            SearchItem.deleted_at.is_(None),
            SearchItem.make.isnot(None),
        )

        if search_term:
            pattern = f"%{search_term.strip()}%"
            query = query.filter(
                or_(
                    SearchItem.make.ilike(pattern),
                    SearchItem.model.ilike(pattern),
                    SearchItem.color.ilike(pattern),
                )
            )

        if seller:
            query = query.filter(SearchItem.seller == seller)

        if winner:
            query = query.filter(SearchItem.winner == winner)

        now = utcnow()
        if filter_by == "finished":
            query = query.filter(SearchItem.status == SearchStatus.FINISHED.value)
        elif filter_by == "endingSoon":
            query = query.filter(
                SearchItem.status == SearchStatus.ACTIVE.value,
                SearchItem.auction_end > now,
                SearchItem.auction_end < now + timedelta(hours=6),
            )
        elif filter_by == "live":
            query = query.filter(SearchItem.status == SearchStatus.ACTIVE.value)

        if order_by == "make":
            query = query.order_by(SearchItem.make.asc(), SearchItem.model.asc())
        elif order_by == "new":
            query = query.order_by(SearchItem.created_at.desc())
        else:
            query = query.order_by(SearchItem.auction_end.asc())

        total = query.count()
        page_number = max(page_number, 1)
        items = query.offset((page_number - 1) * page_size).limit(page_size).all()
        return items, total

    # --- Processed events ---

    def is_event_processed(self, event_id: UUID) -> bool:
        return self.db.get(ProcessedEvent, event_id) is not None

    def mark_event_processed(
        self,
        event_id: UUID,
        event_type: str,
        aggregate_id: UUID,
        result: dict | None = None,
    ) -> ProcessedEvent:
        """Record an applied event. A concurrent duplicate fails at flush/commit."""
        row = ProcessedEvent(
            event_id=event_id,
            event_type=event_type,
            aggregate_id=aggregate_id,
            processed_at=utcnow(),
            result=result,
        )
        self.db.add(row)
        self.db.flush()
        return row

    # --- Parked events ---

    def park(
        self,
        stream: str,
        stream_msg_id: str,
        raw: dict[str, str],
        error: str,
    ) -> ParkedEvent:
        """Park a message, or bump the attempt count if it is already parked."""
        existing = (
            self.db.query(ParkedEvent)
            .filter(
                ParkedEvent.stream == stream,
                ParkedEvent.stream_msg_id == stream_msg_id,
            )
            .first()
        )
        if existing:
            existing.attempts += 1
            existing.error = error
            existing.replayed_at = None
            self.db.flush()
            return existing

        parked = ParkedEvent(
            event_id=raw.get("event_id"),
            event_type=raw.get("event_type"),
            stream=stream,
            stream_msg_id=stream_msg_id,
            raw=dict(raw),
            error=error,
        )
        self.db.add(parked)
        self.db.flush()
        return parked

    def get_parked(self, include_replayed: bool = False, limit: int = 100) -> list[ParkedEvent]:
        query = self.db.query(ParkedEvent)
        if not include_replayed:
            query = query.filter(ParkedEvent.replayed_at.is_(None))
        return query.order_by(ParkedEvent.parked_at.asc()).limit(limit).all()
