"""
Tests for backfilling and syncing the read model from the auction service.
"""

from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest

from search_core.handlers.router import handle_event
from search_core.persistence.models import SearchItem, as_utc
from search_core.persistence.repo import SearchRepository
from search_core.reconcile import AuctionServiceClient, Reconciler


def snapshot(auction_id, make="Ford", **overrides):
    data = {
        "id": str(auction_id),
        "seller": "alice",
        "winner": None,
        "make": make,
        "model": "GT",
        "year": 2020,
        "color": "White",
        "mileage": 50000,
        "image_url": None,
        "reserve_price": 20000,
        "status": "Live",
        "sold_amount": None,
        "current_high_bid": None,
        "auction_end": "2030-01-01T00:00:00Z",
        "created_at": "2026-01-01T10:00:00+00:00",
        "updated_at": "2026-01-02T10:00:00+00:00",
    }
    data.update(overrides)
    return data


class FakeAuctionService:
    """Serves auction snapshots through httpx.MockTransport."""

    def __init__(self):
        self.auctions: dict[str, dict] = {}
        self.broken: set[str] = set()
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/auctions":
            return httpx.Response(200, json=list(self.auctions.values()))

        auction_id = path.rsplit("/", 1)[-1]
        if auction_id in self.broken:
            return httpx.Response(503, json={"detail": "unavailable"})
        if auction_id not in self.auctions:
            return httpx.Response(404, json={"detail": "not found"})
        return httpx.Response(200, json=self.auctions[auction_id])

    def client(self) -> AuctionServiceClient:
        return AuctionServiceClient("http://auction-service", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def auction_service():
    return FakeAuctionService()


class TestBackfill:
    """Tests for filling placeholders."""

    def test_backfill_fills_tombstones_and_retries(self, search_db, auction_service):
        repo = SearchRepository(search_db)
        found, gone, unreachable = uuid4(), uuid4(), uuid4()
        for auction_id in (found, gone, unreachable):
            repo.create_placeholder(auction_id)
        search_db.commit()

        auction_service.auctions[str(found)] = snapshot(found, make="Audi")
        auction_service.broken.add(str(unreachable))

        stats = Reconciler(search_db, auction_service.client()).backfill()

        assert stats == {"filled": 1, "deleted": 1, "failed": 1}

        search_db.expire_all()
        filled = search_db.get(SearchItem, found)
        assert filled.make == "Audi"
        assert filled.seller == "alice"
        assert filled.needs_backfill is False

        assert search_db.get(SearchItem, gone).is_deleted
        assert search_db.get(SearchItem, unreachable).needs_backfill is True

    def test_backfill_keeps_projected_bid(self, search_db, auction_service):
        repo = SearchRepository(search_db)
        auction_id = uuid4()
        placeholder = repo.create_placeholder(auction_id)
        placeholder.current_high_bid = 900
        search_db.commit()

        auction_service.auctions[str(auction_id)] = snapshot(auction_id, current_high_bid=400)
        Reconciler(search_db, auction_service.client()).backfill()

        search_db.expire_all()
        assert search_db.get(SearchItem, auction_id).current_high_bid == 900

    def test_nothing_to_backfill(self, search_db, auction_service):
        stats = Reconciler(search_db, auction_service.client()).backfill()

        assert stats == {"filled": 0, "deleted": 0, "failed": 0}
        assert auction_service.requests == []


class TestSyncSince:
    """Tests for bulk sync from the auction list endpoint."""

    def test_sync_creates_records(self, search_db, auction_service):
        first, second = uuid4(), uuid4()
        auction_service.auctions[str(first)] = snapshot(first, make="Audi")
        auction_service.auctions[str(second)] = snapshot(second, make="Mercedes")

        written = Reconciler(search_db, auction_service.client()).sync_since()

        assert written == 2
        results, total = SearchRepository(search_db).search(order_by="make")
        assert total == 2
        assert [r.make for r in results] == ["Audi", "Mercedes"]

    def test_sync_resumes_from_latest_projected_update(self, search_db, auction_service):
        auction_id = uuid4()
        auction_service.auctions[str(auction_id)] = snapshot(auction_id)
        reconciler = Reconciler(search_db, auction_service.client())

        reconciler.sync_since()
        reconciler.sync_since()

        first, second = auction_service.requests
        assert "date" not in first.url.params
        assert second.url.params["date"].startswith("2026-01-02T10:00:00")

    def test_sync_skips_tombstoned(self, search_db, auction_service):
        repo = SearchRepository(search_db)
        auction_id = uuid4()
        repo.tombstone(repo.create_placeholder(auction_id))
        search_db.commit()
        auction_service.auctions[str(auction_id)] = snapshot(auction_id)

        written = Reconciler(search_db, auction_service.client()).sync_since()

        assert written == 0
        assert repo.get_item(auction_id) is None

    def test_sync_projects_finished_auction(self, search_db, auction_service):
        auction_id = uuid4()
        auction_service.auctions[str(auction_id)] = snapshot(
            auction_id, status="Finished", winner="bob", sold_amount=500, current_high_bid=500
        )

        Reconciler(search_db, auction_service.client()).sync_since()

        record = search_db.get(SearchItem, auction_id)
        assert record.status == "finished"
        assert record.winner == "bob"
        assert record.sold_amount == 500

    def test_older_snapshot_keeps_newer_projected_fields(self, search_db, auction_service, events):
        auction_id = uuid4()
        handle_event(search_db, events.created(auction_id, make="Ford", at=datetime(2026, 1, 1, 10, tzinfo=timezone.utc)))
        handle_event(search_db, events.updated(auction_id, color="Red", at=datetime(2026, 1, 3, 10, tzinfo=timezone.utc)))
        search_db.commit()
        # Snapshot taken on Jan 2, before the color change
        auction_service.auctions[str(auction_id)] = snapshot(auction_id, make="Audi", color="White")

        Reconciler(search_db, auction_service.client()).sync_since(datetime(2026, 1, 1, tzinfo=timezone.utc))

        search_db.expire_all()
        record = search_db.get(SearchItem, auction_id)
        assert record.make == "Audi"
        assert record.color == "Red"
        assert as_utc(record.updated_at) == datetime(2026, 1, 3, 10, tzinfo=timezone.utc)
