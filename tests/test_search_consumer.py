"""
Tests for the search stream consumer: idempotency, parking, reclaim, replay.
"""

import pytest

from auction_contracts.partitioning import stream_for
from basecore.redis import ensure_stream_group, publish_to_stream
from search_core import consumer as consumer_module
from search_core.consumer import (
    consume_from_streams,
    process_stream_message,
    reclaim_pending_messages,
    replay_parked,
)
from search_core.persistence.models import ParkedEvent, ProcessedEvent, SearchItem
from search_core.persistence.repo import SearchRepository

GROUP = "search"


@pytest.fixture
def stream(stream_client):
    name = "events:auctions:0"
    ensure_stream_group(name, GROUP, start_id="0", client=stream_client)
    return name


def publish(stream_client, stream, envelope) -> str:
    return publish_to_stream(stream, envelope.to_stream_data(), client=stream_client)


def consume(db, stream_client, stream) -> int:
    return consume_from_streams(db, [stream], group_name=GROUP, consumer_name="test", block_ms=0, client=stream_client)


class TestProcessStreamMessage:
    """Tests for idempotent message processing."""

    def test_duplicate_delivery_applied_once(self, search_db, events):
        created = events.created()
        process_stream_message(search_db, "1-0", created.to_stream_data())
        bid = events.bid(created.aggregate_id, 50).to_stream_data()

        first = process_stream_message(search_db, "2-0", bid)
        second = process_stream_message(search_db, "3-0", bid)

        assert first["status"] == "processed"
        assert second["status"] == "skipped"
        assert second["reason"] == "already_processed"
        assert search_db.query(ProcessedEvent).count() == 2
        assert search_db.get(SearchItem, created.aggregate_id).current_high_bid == 50

    def test_processed_event_records_outcome(self, search_db, events):
        created = events.created()
        process_stream_message(search_db, "1-0", created.to_stream_data())

        row = search_db.get(ProcessedEvent, created.event_id)
        assert row.event_type == "auction_created"
        assert row.aggregate_id == created.aggregate_id
        assert row.result["status"] == "applied"


class TestConsumeFromStreams:
    """Tests for XREADGROUP consumption and ACK semantics."""

    def test_consumes_and_acks(self, search_db, stream_client, stream, events):
        created = events.created()
        publish(stream_client, stream, created)
        publish(stream_client, stream, events.bid(created.aggregate_id, 10))

        assert consume(search_db, stream_client, stream) == 2

        assert stream_client.pending_count(stream) == 0
        assert search_db.get(SearchItem, created.aggregate_id).current_high_bid == 10

    def test_empty_stream(self, search_db, stream_client, stream):
        assert consume(search_db, stream_client, stream) == 0

    def test_unparseable_message_parked_and_acked(self, search_db, stream_client, stream):
        publish_to_stream(stream, {"event_id": "not-a-uuid", "event_type": "bid_placed"}, client=stream_client)

        assert consume(search_db, stream_client, stream) == 1

        assert stream_client.pending_count(stream) == 0
        parked = search_db.query(ParkedEvent).one()
        assert parked.stream == stream
        assert parked.event_id == "not-a-uuid"
        assert parked.raw["event_type"] == "bid_placed"

    def test_invalid_payload_parked_and_worker_continues(self, search_db, stream_client, stream, events):
        created = events.created()
        bad = events.bid(created.aggregate_id, 10)
        bad.payload = {"auction_id": str(created.aggregate_id)}

        publish(stream_client, stream, bad)
        publish(stream_client, stream, created)

        assert consume(search_db, stream_client, stream) == 2
        assert search_db.query(ParkedEvent).count() == 1
        assert search_db.get(SearchItem, created.aggregate_id).make == "Ford"

    def test_transient_failure_left_pending_then_reclaimed(self, search_db, stream_client, stream, events, monkeypatch):
        created = events.created()
        publish(stream_client, stream, created)

        def database_down(db, envelope):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(consumer_module, "handle_event", database_down)
        assert consume(search_db, stream_client, stream) == 0
        assert stream_client.pending_count(stream) == 1
        assert search_db.get(SearchItem, created.aggregate_id) is None

        monkeypatch.undo()
        reclaimed = reclaim_pending_messages(
            search_db,
            [stream],
            group_name=GROUP,
            consumer_name="rescuer",
            min_idle_ms=0,
            client=stream_client,
        )

        assert reclaimed == 1
        assert stream_client.pending_count(stream) == 0
        assert search_db.get(SearchItem, created.aggregate_id) is not None

    def test_partition_routing_keeps_auction_on_one_stream(self, search_db, stream_client, events):
        created = events.created()
        name = stream_for(created.aggregate_id, "events:auctions", 4)
        ensure_stream_group(name, GROUP, client=stream_client)

        publish(stream_client, name, created)
        for amount in (10, 25, 15):
            publish(stream_client, name, events.bid(created.aggregate_id, amount))

        assert consume(search_db, stream_client, name) == 4
        assert search_db.get(SearchItem, created.aggregate_id).current_high_bid == 25


class TestReplayParked:
    """Tests for re-running parked events."""

    def test_replay_applies_and_marks_replayed(self, search_db, events):
        created = events.created()
        repo = SearchRepository(search_db)
        repo.park("events:auctions:0", "5-0", created.to_stream_data(), "projector bug")
        search_db.commit()

        stats = replay_parked(search_db)

        assert stats == {"replayed": 1, "still_parked": 0}
        assert search_db.query(ParkedEvent).one().replayed_at is not None
        assert search_db.get(SearchItem, created.aggregate_id).make == "Ford"
        assert repo.get_parked() == []

    def test_still_failing_entry_stays_parked(self, search_db, stream_client, stream):
        publish_to_stream(stream, {"event_id": "garbage"}, client=stream_client)
        consume(search_db, stream_client, stream)

        stats = replay_parked(search_db)

        assert stats == {"replayed": 0, "still_parked": 1}
        parked = search_db.query(ParkedEvent).one()
        assert parked.attempts == 2
        assert parked.replayed_at is None
