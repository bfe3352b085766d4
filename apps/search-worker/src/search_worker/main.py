"""
Search Worker - Redis Streams Consumer

This worker uses ONLY:
- basecore (DB, settings, logging, redis)
- search_core (projector, consumer, reconciler)

NO imports from auction_service are allowed.

Features:
- XREADGROUP consumer over the partitions assigned to this worker
- PEL reclaim for stuck messages, run from the consume loop on a timer so
  events are applied one at a time
- Strong idempotency via search_processed_events table
- Periodic backfill of placeholder records from the auction service
- Graceful shutdown
"""

import logging
import os
import signal
import socket
import sys
import threading
import time

import redis
from sqlalchemy.orm import Session

from auction_contracts.partitioning import parse_partition_list, stream_name
from basecore.db import get_engine, get_search_db
from basecore.logging import setup_logging
from basecore.redis import ensure_stream_group
from basecore.settings import get_settings
from search_core.consumer import (
    DEFAULT_GROUP_NAME,
    consume_from_streams,
    reclaim_pending_messages,
)
from search_core.persistence.models import SearchBase
from search_core.reconcile import AuctionServiceClient, Reconciler

logger = logging.getLogger(__name__)

# Configuration
GROUP_NAME = os.getenv("SEARCH_GROUP_NAME", DEFAULT_GROUP_NAME)
CONSUMER_NAME = os.getenv("SEARCH_CONSUMER_NAME", f"search-{socket.gethostname()}-{os.getpid()}")
PARTITIONS = os.getenv("SEARCH_PARTITIONS", "all")
BATCH_SIZE = int(os.getenv("SEARCH_BATCH_SIZE", "10"))
BLOCK_MS = int(os.getenv("SEARCH_BLOCK_MS", "5000"))
RECLAIM_INTERVAL_SEC = int(os.getenv("SEARCH_RECLAIM_INTERVAL", "60"))
RECLAIM_IDLE_MS = int(os.getenv("SEARCH_RECLAIM_IDLE_MS", "60000"))
BACKFILL_INTERVAL_SEC = int(os.getenv("SEARCH_BACKFILL_INTERVAL", "30"))
SYNC_ON_START = os.getenv("SEARCH_SYNC_ON_START", "true").lower() in ("1", "true", "yes")

# Graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    global shutdown_requested
    logger.info(f"Received signal {signum}, requesting shutdown...")
    shutdown_requested = True


def assigned_streams() -> list[str]:
    """Streams this worker owns, from SEARCH_PARTITIONS ("all", "0,2", "1-3")."""
    settings = get_settings()
    partitions = parse_partition_list(PARTITIONS, settings.STREAM_PARTITIONS)
    return [stream_name(settings.STREAM_PREFIX, p) for p in partitions]


def ensure_consumer_groups(streams: list[str]) -> bool:
    """Ensure the consumer group exists for every assigned stream."""
    try:
        for stream in streams:
            created = ensure_stream_group(stream, GROUP_NAME, start_id="0")
            if created:
                logger.info(f"Created consumer group '{GROUP_NAME}' for stream '{stream}'")
            else:
                logger.debug(f"Consumer group '{GROUP_NAME}' already exists for stream '{stream}'")
        return True
    except Exception as e:
        logger.error(f"Failed to ensure consumer groups: {e}", exc_info=True)
        return False


def _sleep_interruptible(seconds: int) -> bool:
    """Sleep in 1s steps. Returns False if shutdown was requested meanwhile."""
    for _ in range(seconds):
        if shutdown_requested:
            return False
        time.sleep(1)
    return not shutdown_requested


def consume_once(
    db: Session,
    streams: list[str],
    last_reclaim: float,
    client: redis.Redis | None = None,
) -> tuple[int, float]:
    """
    One pass of the worker loop.

    Reclaims idle pending messages when RECLAIM_INTERVAL_SEC has passed since
    ``last_reclaim`` (a ``time.monotonic()`` value), then reads one batch.

    Returns (events handled, time of the latest reclaim).
    """
    handled = 0
    now = time.monotonic()

    if now - last_reclaim >= RECLAIM_INTERVAL_SEC:
        reclaimed = reclaim_pending_messages(
            db,
            streams,
            group_name=GROUP_NAME,
            consumer_name=CONSUMER_NAME,
            min_idle_ms=RECLAIM_IDLE_MS,
            count=100,
            client=client,
        )
        if reclaimed > 0:
            logger.info(f"Reclaimed and processed {reclaimed} pending messages")
        handled += reclaimed
        last_reclaim = now

    handled += consume_from_streams(
        db,
        streams,
        group_name=GROUP_NAME,
        consumer_name=CONSUMER_NAME,
        count=BATCH_SIZE,
        block_ms=BLOCK_MS,
        client=client,
    )
    return handled, last_reclaim


def run_backfill_loop():
    """Background thread filling placeholder records from the auction service."""
    settings = get_settings()
    client = AuctionServiceClient(settings.AUCTION_SERVICE_URL, timeout=settings.HTTP_TIMEOUT)
    logger.info(f"Starting backfill loop (interval={BACKFILL_INTERVAL_SEC}s)")

    try:
        while _sleep_interruptible(BACKFILL_INTERVAL_SEC):
            db = next(get_search_db())
            try:
                Reconciler(db, client).backfill()
            except Exception as e:
                db.rollback()
                logger.error(f"Error in backfill loop: {e}", exc_info=True)
            finally:
                db.close()
    finally:
        client.close()


def initial_sync():
    """Catch up from the auction service before consuming (best effort)."""
    settings = get_settings()
    client = AuctionServiceClient(settings.AUCTION_SERVICE_URL, timeout=settings.HTTP_TIMEOUT)
    db = next(get_search_db())
    try:
        Reconciler(db, client).sync_since()
    except Exception as e:
        db.rollback()
        logger.warning(f"Initial sync from auction service failed: {e}")
    finally:
        db.close()
        client.close()


def main():
    """Main worker loop."""
    setup_logging()
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    settings = get_settings()
    streams = assigned_streams()

    logger.info(
        f"Starting search worker (streams={streams}, group={GROUP_NAME}, "
        f"consumer={CONSUMER_NAME}, batch={BATCH_SIZE})"
    )

    SearchBase.metadata.create_all(bind=get_engine(settings.SEARCH_DATABASE_URL))

    # Ensure consumer groups exist
    if not ensure_consumer_groups(streams):
        logger.error("Failed to initialize consumer groups, exiting")
        sys.exit(1)

    if SYNC_ON_START:
        initial_sync()

    threading.Thread(target=run_backfill_loop, daemon=True).start()

    logger.info(f"PEL reclaim every {RECLAIM_INTERVAL_SEC}s (idle_threshold={RECLAIM_IDLE_MS}ms)")
    # -inf: reclaim orphaned messages on the first pass
    last_reclaim = float("-inf")

    while not shutdown_requested:
        db = next(get_search_db())
        try:
            count, last_reclaim = consume_once(db, streams, last_reclaim)

            if count > 0:
                logger.info(f"Processed {count} events from streams")

        except KeyboardInterrupt:
            break
        except redis.RedisError as e:
            logger.error(f"Redis error in consume loop: {e}")
            time.sleep(1)
        except Exception as e:
            logger.error(f"Error in consume loop: {e}", exc_info=True)
            time.sleep(1)  # Brief pause on error
        finally:
            db.close()

    logger.info("Search worker shutting down gracefully")


if __name__ == "__main__":
    main()
