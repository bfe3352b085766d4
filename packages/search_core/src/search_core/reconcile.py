"""
Reconciliation with the auction service.

The read model can miss an auction_created event (worker deployed late,
stream trimmed). Placeholders created for unknown auctions are backfilled
here from the auction service's HTTP API, and ``sync_since`` pulls every
auction updated after a timestamp for an initial or catch-up load.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from search_core.persistence.models import SearchItem, SearchStatus, utcnow
from search_core.persistence.repo import SearchRepository

logger = logging.getLogger(__name__)


class AuctionServiceClient:
    """Minimal client for the auction service read endpoints."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: httpx.BaseTransport | None = None):
        self.client = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    def get_auction(self, auction_id: UUID) -> dict[str, Any] | None:
        """Fetch one auction. Returns None on 404; raises httpx.HTTPError otherwise."""
        response = self.client.get(f"/api/auctions/{auction_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def list_auctions(self, since: datetime | None = None) -> list[dict[str, Any]]:
        params = {"date": since.isoformat()} if since else None
        response = self.client.get("/api/auctions", params=params)
        response.raise_for_status()
        return response.json()

    def close(self) -> None:
        self.client.close()


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class Reconciler:
    """Backfills placeholders and syncs attributes from the auction service."""

    def __init__(self, db: Session, client: AuctionServiceClient):
        self.db = db
        self.client = client
        self.repo = SearchRepository(db)

    def _apply_snapshot(self, item: SearchItem, auction: dict[str, Any]) -> None:
        """
        Copy auction attributes onto the item.

        Fields written by events newer than the snapshot keep their values.
        Bid and finish state only ever move forward here, same as the projector.
        """
        created_at = _parse_datetime(auction.get("created_at"))
        as_of = _parse_datetime(auction.get("updated_at")) or created_at or utcnow()
        self.repo.apply_attributes(item, auction, as_of=as_of)
        if item.created_at is None:
            item.created_at = created_at

        if not item.is_finished:
            item.auction_end = _parse_datetime(auction.get("auction_end")) or item.auction_end

        high_bid = auction.get("current_high_bid")
        if high_bid is not None and not item.is_finished:
            if item.current_high_bid is None or high_bid > item.current_high_bid:
                item.current_high_bid = high_bid

        if auction.get("status") in ("Finished", "ReserveNotMet") and not item.is_finished:
            item.status = SearchStatus.FINISHED.value
            if auction.get("winner") and auction.get("sold_amount") is not None:
                item.winner = auction["winner"]
                item.sold_amount = auction["sold_amount"]

        item.needs_backfill = False

    def backfill(self, limit: int = 100) -> dict[str, int]:
        """
        Fill placeholders flagged ``needs_backfill``.

        Found → attributes copied and flag cleared; 404 → tombstoned;
        transport errors leave the flag set for the next round.
        """
        stats = {"filled": 0, "deleted": 0, "failed": 0}

        for item in self.repo.get_backfill_candidates(limit=limit):
            item_id = item.id
            try:
                auction = self.client.get_auction(item_id)
            except httpx.HTTPError as e:
                stats["failed"] += 1
                logger.warning(
                    f"Backfill of auction {item_id} failed: {e}",
                    extra={"auction_id": str(item_id)},
                )
                continue

            locked = self.repo.get_item_for_update(item_id)
            if locked is None or not locked.needs_backfill:
                self.db.rollback()
                continue

            if auction is None:
                self.repo.tombstone(locked)
                stats["deleted"] += 1
            else:
                self._apply_snapshot(locked, auction)
                stats["filled"] += 1

            self.db.commit()

        if any(stats.values()):
            logger.info("Backfill round finished", extra=stats)

        return stats

    def sync_since(self, since: datetime | None = None) -> int:
        """
        Upsert every auction updated after ``since`` (all when None).

        Defaults to the newest ``updated_at`` already projected.
        Returns the number of auctions written.
        """
        if since is None:
            since = self.repo.latest_update()

        auctions = self.client.list_auctions(since)
        written = 0

        for auction in auctions:
            auction_id = UUID(str(auction["id"]))
            item = self.repo.get_item_for_update(auction_id)

            if item is not None and item.is_deleted:
                continue

            if item is None:
                item = SearchItem(id=auction_id, status=SearchStatus.ACTIVE.value)
                self.db.add(item)

            self._apply_snapshot(item, auction)
            written += 1

        self.db.commit()
        logger.info(f"Synced {written} auctions from the auction service", extra={"since": str(since)})
        return written
