"""
Pytest configuration.

Unit and flow tests run against in-memory SQLite (one database per store)
and an in-process stand-in for the Redis Streams commands the services use.
"""

import os
import sys
import time
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
import redis
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project paths to sys.path for imports
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
for src in (
    "packages/basecore/src",
    "packages/contracts/src",
    "packages/search_core/src",
    "packages/auctionctl/src",
    "apps/auction-service/src",
    "apps/outbox-relay/src",
    "apps/search-worker/src",
    "apps/search-service/src",
):
    sys.path.insert(0, os.path.join(project_root, src))

# Set environment variables for tests
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEARCH_DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("AUCTION_SERVICE_URL", "http://auction-service")

from auction_contracts import (  # noqa: E402
    AuctionCreated,
    AuctionDeleted,
    AuctionFinished,
    AuctionUpdated,
    BidPlaced,
    BidStatus,
    EventEnvelope,
    EventType,
)
from auction_service.models import AuctionBase  # noqa: E402
from search_core.persistence.models import SearchBase  # noqa: E402


def _memory_engine(metadata):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def auction_db():
    """Session on a fresh auction (write side) database."""
    engine = _memory_engine(AuctionBase.metadata)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def search_db():
    """Session on a fresh search (read side) database."""
    engine = _memory_engine(SearchBase.metadata)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()
    engine.dispose()


class FakeStreamClient:
    """
    In-memory subset of the redis-py Streams API.

    Supports consumer groups, the pending entries list and XCLAIM. Set
    ``fail`` to make XADD raise a connection error (broker outage).
    """

    def __init__(self):
        self.streams: dict[str, list[tuple[str, dict[str, str]]]] = {}
        self.groups: dict[tuple[str, str], dict] = {}
        self.fail = False
        self._seq = 0

    def xadd(self, name, fields, maxlen=None, approximate=True):
        if self.fail:
            raise redis.ConnectionError("broker unavailable")
        self._seq += 1
        msg_id = f"{int(time.time() * 1000)}-{self._seq}"
        self.streams.setdefault(name, []).append((msg_id, dict(fields)))
        return msg_id

    def xgroup_create(self, name, groupname, id="$", mkstream=False):
        if (name, groupname) in self.groups:
            raise redis.ResponseError("BUSYGROUP Consumer Group name already exists")
        if name not in self.streams:
            if not mkstream:
                raise redis.ResponseError("ERR The XGROUP subcommand requires the key to exist")
            self.streams[name] = []
        start = 0 if id == "0" else len(self.streams[name])
        self.groups[(name, groupname)] = {"next": start, "pending": {}}
        return True

    def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        result = []
        for name in streams:
            group = self.groups[(name, groupname)]
            entries = self.streams[name][group["next"]:]
            if count:
                entries = entries[:count]
            if not entries:
                continue
            group["next"] += len(entries)
            for msg_id, _ in entries:
                group["pending"][msg_id] = {
                    "consumer": consumername,
                    "delivered_at": time.monotonic(),
                    "times_delivered": 1,
                }
            result.append([name, list(entries)])
        return result

    def xack(self, name, groupname, *ids):
        pending = self.groups[(name, groupname)]["pending"]
        acked = 0
        for msg_id in ids:
            if pending.pop(msg_id, None) is not None:
                acked += 1
        return acked

    def xpending(self, name, groupname):
        return {"pending": len(self.groups[(name, groupname)]["pending"])}

    def xpending_range(self, name, groupname, min, max, count, consumername=None, idle=None):
        now = time.monotonic()
        rows = []
        for msg_id, info in list(self.groups[(name, groupname)]["pending"].items())[:count]:
            rows.append({
                "message_id": msg_id,
                "consumer": info["consumer"],
                "time_since_delivered": int((now - info["delivered_at"]) * 1000),
                "times_delivered": info["times_delivered"],
            })
        return rows

    def xclaim(self, name, groupname, consumername, min_idle_time, message_ids):
        pending = self.groups[(name, groupname)]["pending"]
        entries = dict(self.streams.get(name, []))
        claimed = []
        for msg_id in message_ids:
            info = pending.get(msg_id)
            if info is None:
                continue
            info["consumer"] = consumername
            info["delivered_at"] = time.monotonic()
            info["times_delivered"] += 1
            claimed.append((msg_id, entries.get(msg_id)))
        return claimed

    def pending_count(self, name, groupname="search") -> int:
        return len(self.groups[(name, groupname)]["pending"])


@pytest.fixture
def stream_client():
    """Fake Redis Streams client."""
    return FakeStreamClient()


# --- Event builders ---


def created_event(
    auction_id: UUID | None = None,
    seller: str = "alice",
    make: str = "Ford",
    model: str = "GT",
    year: int = 2020,
    color: str = "White",
    mileage: int = 50000,
    auction_end: datetime | None = None,
    at: datetime | None = None,
) -> EventEnvelope:
    auction_id = auction_id or uuid4()
    now = at or datetime.now(timezone.utc)
    payload = AuctionCreated(
        id=auction_id,
        seller=seller,
        make=make,
        model=model,
        year=year,
        color=color,
        mileage=mileage,
        reserve_price=20000,
        auction_end=auction_end or now + timedelta(days=10),
        created_at=now,
        updated_at=now,
    )
    envelope = EventEnvelope.create(EventType.AUCTION_CREATED, auction_id, payload.model_dump(mode="json"))
    envelope.occurred_at = now
    return envelope


def updated_event(auction_id: UUID, at: datetime | None = None, **changes) -> EventEnvelope:
    payload = AuctionUpdated(id=auction_id, **changes)
    envelope = EventEnvelope.create(EventType.AUCTION_UPDATED, auction_id, payload.model_dump(mode="json"))
    if at is not None:
        envelope.occurred_at = at
    return envelope


def deleted_event(auction_id: UUID) -> EventEnvelope:
    payload = AuctionDeleted(id=auction_id)
    return EventEnvelope.create(EventType.AUCTION_DELETED, auction_id, payload.model_dump(mode="json"))


def bid_event(
    auction_id: UUID,
    amount: int,
    bid_status: BidStatus = BidStatus.ACCEPTED,
    bidder: str = "bob",
) -> EventEnvelope:
    payload = BidPlaced(
        id=str(uuid4()),
        auction_id=auction_id,
        bidder=bidder,
        bid_time=datetime.now(timezone.utc),
        amount=amount,
        bid_status=bid_status,
    )
    return EventEnvelope.create(EventType.BID_PLACED, auction_id, payload.model_dump(mode="json"))


def finished_event(
    auction_id: UUID,
    winner: str | None = "bob",
    amount: int | None = 500,
    item_sold: bool = True,
    seller: str | None = "alice",
) -> EventEnvelope:
    payload = AuctionFinished(
        auction_id=auction_id,
        item_sold=item_sold,
        winner=winner,
        seller=seller,
        amount=amount,
    )
    return EventEnvelope.create(EventType.AUCTION_FINISHED, auction_id, payload.model_dump(mode="json"))


@pytest.fixture
def events():
    """Builders for auction event envelopes."""

    class Events:
        created = staticmethod(created_event)
        updated = staticmethod(updated_event)
        deleted = staticmethod(deleted_event)
        bid = staticmethod(bid_event)
        finished = staticmethod(finished_event)

    return Events
