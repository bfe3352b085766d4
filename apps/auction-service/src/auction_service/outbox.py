"""
Transactional outbox.

``enqueue_event`` only adds a row to the caller's session. The row becomes
visible together with the auction change when the caller commits, and is
discarded with it on rollback, so an event can never escape for a write that
did not happen.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from auction_contracts.types import EventType
from auction_service.models import EventOutbox, OutboxStatus, utcnow

logger = logging.getLogger(__name__)


def enqueue_event(
    db: Session,
    event_type: EventType,
    aggregate_id: UUID,
    payload: BaseModel | dict[str, Any],
    correlation_id: str | None = None,
    occurred_at: datetime | None = None,
) -> EventOutbox:
    """
    Stage an outbox row in the current transaction (no commit).

    ``occurred_at`` should be the auction's new ``updated_at`` so the event
    and the record it describes carry the same time.
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")

    now = occurred_at or utcnow()
    row = EventOutbox(
        id=uuid4(),
        event_id=uuid4(),
        aggregate_id=aggregate_id,
        event_type=str(event_type),
        payload=payload,
        correlation_id=correlation_id,
        status=OutboxStatus.PENDING.value,
        retry_count=0,
        next_attempt_at=now,
        created_at=now,
    )
    db.add(row)

    logger.debug(
        f"Staged {event_type} for auction {aggregate_id}",
        extra={"event_id": str(row.event_id), "event_type": str(event_type)},
    )
    return row


def outbox_stats(db: Session) -> dict[str, Any]:
    """Counts for monitoring: pending, published, retrying and oldest pending age."""
    pending = (
        db.query(func.count(EventOutbox.id))
        .filter(EventOutbox.status == OutboxStatus.PENDING.value)
        .scalar()
    ) or 0
    published = (
        db.query(func.count(EventOutbox.id))
        .filter(EventOutbox.status == OutboxStatus.PUBLISHED.value)
        .scalar()
    ) or 0
    retrying = (
        db.query(func.count(EventOutbox.id))
        .filter(
            EventOutbox.status == OutboxStatus.PENDING.value,
            EventOutbox.retry_count > 0,
        )
        .scalar()
    ) or 0
    oldest_pending = (
        db.query(func.min(EventOutbox.created_at))
        .filter(EventOutbox.status == OutboxStatus.PENDING.value)
        .scalar()
    )

    return {
        "pending": pending,
        "published": published,
        "retrying": retrying,
        "oldest_pending_at": oldest_pending,
    }
