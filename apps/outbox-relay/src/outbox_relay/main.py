"""
Outbox Relay - DB to Redis Streams

This service:
1. Polls the auction DB outbox for due, unpublished events
2. Publishes each event to its partition stream (by auction id)
3. Marks events as published, or schedules a retry with backoff

An event is never dropped: a failed publish stays pending and is retried
until Redis accepts it. Uses FOR UPDATE SKIP LOCKED for safe multi-replica
operation.
"""

import logging
import os
import signal
import time
from datetime import timedelta
from typing import Callable

import redis
from sqlalchemy import and_, exists, or_
from sqlalchemy.orm import Session, aliased

from auction_contracts.envelope import EventEnvelope
from auction_contracts.partitioning import all_streams, stream_for
from auction_service.models import EventOutbox, OutboxStatus, utcnow
from basecore.db import get_db
from basecore.logging import setup_logging
from basecore.redis import ensure_stream_group, publish_to_stream
from basecore.settings import get_settings

logger = logging.getLogger(__name__)

# Configuration
BATCH_SIZE = int(os.getenv("RELAY_BATCH_SIZE", "100"))
POLL_INTERVAL_EMPTY = float(os.getenv("RELAY_POLL_INTERVAL_EMPTY", "1.0"))
POLL_INTERVAL_BUSY = float(os.getenv("RELAY_POLL_INTERVAL_BUSY", "0.1"))
POLL_INTERVAL_MAX = float(os.getenv("RELAY_POLL_INTERVAL_MAX", "30"))
RETRY_BASE_SECONDS = float(os.getenv("RELAY_RETRY_BASE_SECONDS", "1.0"))
RETRY_MAX_SECONDS = float(os.getenv("RELAY_RETRY_MAX_SECONDS", "300"))
CONSUMER_GROUPS = [g.strip() for g in os.getenv("RELAY_CONSUMER_GROUPS", "search").split(",") if g.strip()]

# Graceful shutdown
shutdown_requested = False


class DeliveryError(Exception):
    """The channel did not accept an event. Retried by the relay, never surfaced to API callers."""


def signal_handler(signum, frame):
    global shutdown_requested
    logger.info(f"Received signal {signum}, requesting shutdown...")
    shutdown_requested = True


def retry_delay(retry_count: int) -> float:
    """Exponential backoff for the n-th failed attempt, capped at RETRY_MAX_SECONDS."""
    exponent = max(retry_count - 1, 0)
    return min(RETRY_BASE_SECONDS * (2 ** min(exponent, 30)), RETRY_MAX_SECONDS)


def get_due_events(db: Session, limit: int = 100) -> list[EventOutbox]:
    """
    Get pending events whose next attempt is due, oldest first.

    Only the oldest pending event of each auction is eligible: while it waits
    for a retry (or is locked by another relay) the auction's later events
    stay in the outbox, so per-auction publish order holds across batches.

    Rows are locked with SKIP LOCKED so parallel relays split the work.
    """
    earlier = aliased(EventOutbox)
    has_earlier_pending = (
        exists()
        .where(
            earlier.aggregate_id == EventOutbox.aggregate_id,
            earlier.status == OutboxStatus.PENDING.value,
            or_(
                earlier.created_at < EventOutbox.created_at,
                and_(earlier.created_at == EventOutbox.created_at, earlier.id < EventOutbox.id),
            ),
        )
    )

    return (
        db.query(EventOutbox)
        .filter(
            EventOutbox.status == OutboxStatus.PENDING.value,
            EventOutbox.next_attempt_at <= utcnow(),
            ~has_earlier_pending,
        )
        .order_by(EventOutbox.created_at.asc(), EventOutbox.id.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )


def to_envelope(event: EventOutbox) -> EventEnvelope:
    return EventEnvelope(
        event_id=event.event_id,
        event_type=event.event_type,
        aggregate_id=event.aggregate_id,
        occurred_at=event.created_at,
        version=event.version,
        payload=event.payload or {},
        correlation_id=event.correlation_id,
    )


def publish_event_to_stream(event: EventOutbox, client: redis.Redis | None = None) -> str:
    """
    Publish a single outbox event to its partition stream.

    Returns the stream message ID.

    Raises:
        DeliveryError: Redis refused or could not be reached
    """
    settings = get_settings()
    stream_name = stream_for(event.aggregate_id, settings.STREAM_PREFIX, settings.STREAM_PARTITIONS)
    data = to_envelope(event).to_stream_data()

    try:
        return publish_to_stream(stream_name, data, max_len=settings.STREAM_MAX_LEN, client=client)
    except redis.RedisError as e:
        raise DeliveryError(f"Could not publish to {stream_name}: {e}") from e


def mark_published(event: EventOutbox) -> None:
    event.status = OutboxStatus.PUBLISHED.value
    event.published_at = utcnow()
    event.last_error = None


def schedule_retry(event: EventOutbox, error: str) -> float:
    """Keep the event pending and push its next attempt out. Returns the delay."""
    event.retry_count = (event.retry_count or 0) + 1
    event.last_error = error[:2000]
    delay = retry_delay(event.retry_count)
    event.next_attempt_at = utcnow() + timedelta(seconds=delay)
    return delay


def relay_batch(
    db: Session,
    publish: Callable[[EventOutbox], str] = publish_event_to_stream,
) -> int:
    """
    Relay a batch of events from DB to Redis Streams.

    A batch holds at most one event per auction (see get_due_events), so a
    failed publish keeps that auction's later events back until it succeeds.

    Returns number of events published.
    """
    events = get_due_events(db, limit=BATCH_SIZE)

    if not events:
        db.commit()
        return 0

    published_count = 0

    for event in events:
        try:
            stream_msg_id = publish(event)
        except DeliveryError as e:
            delay = schedule_retry(event, str(e))
            logger.warning(
                f"Failed to publish event {event.event_id}, retrying in {delay:.1f}s",
                extra={
                    "event_id": str(event.event_id),
                    "retry_count": event.retry_count,
                },
            )
            continue

        mark_published(event)
        published_count += 1

        logger.debug(
            f"Published event {event.event_id} to stream",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.event_type,
                "stream_msg_id": stream_msg_id,
            },
        )

    db.commit()
    return published_count


def ensure_stream_groups(client: redis.Redis | None = None) -> None:
    """Ensure every consumer group exists on every partition stream."""
    settings = get_settings()

    for stream_name in all_streams(settings.STREAM_PREFIX, settings.STREAM_PARTITIONS):
        for group_name in CONSUMER_GROUPS:
            created = ensure_stream_group(stream_name, group_name, start_id="0", client=client)
            if created:
                logger.info(f"Created consumer group '{group_name}' for stream '{stream_name}'")
            else:
                logger.debug(f"Consumer group '{group_name}' already exists for stream '{stream_name}'")


def main():
    """Main relay loop."""
    setup_logging()
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info(
        f"Starting outbox relay (batch_size={BATCH_SIZE}, "
        f"poll_empty={POLL_INTERVAL_EMPTY}s, poll_busy={POLL_INTERVAL_BUSY}s)"
    )

    # Groups must exist before the first publish so no consumer misses events
    while not shutdown_requested:
        try:
            ensure_stream_groups()
            break
        except redis.RedisError as e:
            logger.error(f"Redis unavailable while creating consumer groups: {e}")
            time.sleep(POLL_INTERVAL_EMPTY)

    consecutive_empty = 0

    while not shutdown_requested:
        db = next(get_db())
        try:
            count = relay_batch(db)

            if count > 0:
                logger.info(f"Relayed {count} events to Redis Streams")
                consecutive_empty = 0
                time.sleep(POLL_INTERVAL_BUSY)
            else:
                consecutive_empty += 1
                # Exponential backoff with max
                sleep_time = min(POLL_INTERVAL_EMPTY * (1.5 ** min(consecutive_empty, 5)), POLL_INTERVAL_MAX)
                time.sleep(sleep_time)

        except Exception as e:
            logger.error(f"Error in relay loop: {e}", exc_info=True)
            db.rollback()
            time.sleep(POLL_INTERVAL_EMPTY)
        finally:
            db.close()

    logger.info("Outbox relay shutting down gracefully")


if __name__ == "__main__":
    main()
