"""
Redis Streams Consumer for the search read model

This consumer reads the partition streams using XREADGROUP and applies
events through the search_core handlers. It is completely independent from
the auction service code.

Features:
- Consumer group support for horizontal scaling (one worker per partition set)
- Strong idempotency via search_processed_events table
- XACK only after successful DB commit
- Malformed events are parked in search_parked_events, then ACKed
"""

import json
import logging
from typing import Any

import redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auction_contracts.envelope import EventEnvelope
from basecore.redis import (
    ack_message,
    claim_messages,
    get_pending_messages,
    read_from_streams,
)
from search_core.exceptions import ProjectionError
from search_core.handlers.router import handle_event
from search_core.persistence.models import ParkedEvent, utcnow
from search_core.persistence.repo import SearchRepository

logger = logging.getLogger(__name__)


DEFAULT_GROUP_NAME = "search"


def parse_stream_message(msg_id: str, data: dict[str, str]) -> EventEnvelope:
    """Parse a Redis Stream message into an EventEnvelope."""
    try:
        return EventEnvelope.from_stream_message(msg_id, data)
    except (KeyError, ValueError, TypeError) as e:
        raise ProjectionError(
            f"Malformed stream message {msg_id}: {e!r}",
            event_id=data.get("event_id"),
            event_type=data.get("event_type"),
        ) from e


def process_stream_message(
    db: Session,
    msg_id: str,
    data: dict[str, str],
) -> dict[str, Any]:
    """
    Process a single stream message.

    Implements idempotency:
    1. Parse envelope
    2. Check if already processed
    3. If not: project and mark as processed
    4. Commit transaction

    Raises:
        ProjectionError: the message can never be applied as delivered
        Exception: transient failure, transaction rolled back

    Returns:
        Processing result dict
    """
    envelope = parse_stream_message(msg_id, data)
    repo = SearchRepository(db)

    # Check idempotency
    if repo.is_event_processed(envelope.event_id):
        logger.debug(f"Event {envelope.event_id} already processed, skipping")
        return {
            "event_id": str(envelope.event_id),
            "status": "skipped",
            "reason": "already_processed",
        }

    try:
        result = handle_event(db, envelope)

        # Mark as processed (within same transaction)
        repo.mark_event_processed(
            envelope.event_id,
            envelope.event_type,
            envelope.aggregate_id,
            result,
        )

        # Commit all writes together
        db.commit()

    except IntegrityError:
        db.rollback()
        if repo.is_event_processed(envelope.event_id):
            # Race condition - another worker processed it
            logger.debug(f"Event {envelope.event_id} was processed by another worker")
            return {
                "event_id": str(envelope.event_id),
                "status": "skipped",
                "reason": "concurrent_processing",
            }
        raise

    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Processed event {envelope.event_id}",
        extra={
            "event_id": str(envelope.event_id),
            "event_type": envelope.event_type,
            "auction_id": str(envelope.aggregate_id),
            "outcome": result.get("status"),
        },
    )

    return {
        "event_id": str(envelope.event_id),
        "status": "processed",
        "result": result,
    }


def park_message(
    db: Session,
    stream_name: str,
    msg_id: str,
    data: dict[str, str],
    error: str,
) -> None:
    """Park a message that cannot be projected and commit."""
    repo = SearchRepository(db)
    repo.park(stream_name, msg_id, data, error)
    db.commit()

    logger.warning(
        f"Parked message {msg_id}: {error}",
        extra={
            "stream": stream_name,
            "msg_id": msg_id,
            "event_id": data.get("event_id"),
        },
    )


def handle_stream_message(
    db: Session,
    stream_name: str,
    group_name: str,
    msg_id: str,
    data: dict[str, str],
    client: redis.Redis | None = None,
) -> bool:
    """
    Process one delivered message and ACK it when it is safely handled.

    Returns True if the message was ACKed (processed, skipped or parked).
    A transient failure leaves the message pending for redelivery/reclaim.
    """
    try:
        result = process_stream_message(db, msg_id, data)

    except ProjectionError as e:
        try:
            park_message(db, stream_name, msg_id, data, str(e))
        except Exception as park_error:
            db.rollback()
            logger.error(
                f"Failed to park message {msg_id}: {park_error}",
                extra={"msg_id": msg_id},
                exc_info=True,
            )
            return False
        ack_message(stream_name, group_name, msg_id, client=client)
        return True

    except Exception as e:
        # Don't ACK - message will be redelivered or reclaimed
        logger.error(
            f"Failed to process message {msg_id}: {e}",
            extra={"msg_id": msg_id, "stream": stream_name},
            exc_info=True,
        )
        return False

    # ACK the message after successful processing
    ack_message(stream_name, group_name, msg_id, client=client)

    logger.debug(
        f"ACKed message {msg_id}",
        extra={"msg_id": msg_id, "outcome": result.get("status")},
    )
    return True


def consume_from_streams(
    db: Session,
    stream_names: list[str],
    group_name: str = DEFAULT_GROUP_NAME,
    consumer_name: str = "search-worker",
    count: int = 10,
    block_ms: int = 5000,
    client: redis.Redis | None = None,
) -> int:
    """
    Consume and process messages from the given partition streams.

    Messages are handled one at a time, in stream order per partition.

    Returns:
        Number of messages ACKed
    """
    messages = read_from_streams(
        stream_names,
        group_name,
        consumer_name,
        count=count,
        block_ms=block_ms,
        client=client,
    )

    if not messages:
        return 0

    handled_count = 0

    for stream_name, msg_id, data in messages:
        if handle_stream_message(db, stream_name, group_name, msg_id, data, client=client):
            handled_count += 1

    return handled_count


def reclaim_pending_messages(
    db: Session,
    stream_names: list[str],
    group_name: str = DEFAULT_GROUP_NAME,
    consumer_name: str = "search-worker",
    min_idle_ms: int = 60000,
    count: int = 100,
    client: redis.Redis | None = None,
) -> int:
    """
    Reclaim and process pending messages that have been idle too long.

    This handles:
    - Messages from crashed consumers
    - Messages whose processing failed transiently

    Idempotency protects against duplicate processing.

    Returns:
        Number of messages reclaimed and ACKed
    """
    handled_count = 0

    for stream_name in stream_names:
        pending = get_pending_messages(stream_name, group_name, min_idle_ms, count, client=client)
        if not pending:
            continue

        message_ids = [p["message_id"] for p in pending]
        claimed = claim_messages(
            stream_name, group_name, consumer_name, message_ids, min_idle_ms, client=client
        )

        if not claimed:
            continue

        logger.info(f"Reclaimed {len(claimed)} pending messages from {stream_name}")

        for msg_id, data in claimed:
            if handle_stream_message(db, stream_name, group_name, msg_id, data, client=client):
                handled_count += 1

    return handled_count


def replay_parked(db: Session, limit: int = 100) -> dict[str, int]:
    """
    Re-run parked events through the projector.

    Events that now apply (or turn out to be duplicates) are marked
    replayed; the rest stay parked with the new error.
    """
    repo = SearchRepository(db)
    parked = repo.get_parked(limit=limit)
    stats = {"replayed": 0, "still_parked": 0}

    for entry in parked:
        entry_id = entry.id
        stream_name = entry.stream
        msg_id = entry.stream_msg_id
        raw = dict(entry.raw or {})

        try:
            process_stream_message(db, msg_id, raw)
        except ProjectionError as e:
            park_message(db, stream_name, msg_id, raw, str(e))
            stats["still_parked"] += 1
            continue

        replayed = db.get(ParkedEvent, entry_id)
        replayed.replayed_at = utcnow()
        db.commit()
        stats["replayed"] += 1

        logger.info(
            f"Replayed parked message {msg_id}",
            extra={"stream": stream_name, "event_id": raw.get("event_id")},
        )

    return stats


def dump_raw(data: dict[str, str]) -> str:
    """Render a raw stream entry for logs and the CLI."""
    return json.dumps(data, sort_keys=True, default=str)
