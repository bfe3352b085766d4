"""
Event Router - Routes events to the search projector.

This is the main entry point for event processing.
Maps event_type to projector methods.
"""

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from auction_contracts.envelope import EventEnvelope
from auction_contracts.types import EventType
from search_core.projection.search_projector import SearchProjector

logger = logging.getLogger(__name__)


class EventRouter:
    """
    Routes events to the projector method for their type.

    All writes happen in the caller's transaction; the router never commits.
    """

    def __init__(self, db: Session):
        self.db = db
        self.projector = SearchProjector(db)
        self._handlers: dict[str, Callable[[EventEnvelope], dict[str, Any]]] = {
            EventType.AUCTION_CREATED.value: self.projector.process_auction_created,
            EventType.AUCTION_UPDATED.value: self.projector.process_auction_updated,
            EventType.AUCTION_DELETED.value: self.projector.process_auction_deleted,
            EventType.BID_PLACED.value: self.projector.process_bid_placed,
            EventType.AUCTION_FINISHED.value: self.projector.process_auction_finished,
        }

    def handle(self, envelope: EventEnvelope) -> dict[str, Any]:
        """
        Handle an event by routing it to the projector.

        Args:
            envelope: Event envelope with payload

        Returns:
            Projection result (status "applied" or "ignored")
        """
        event_type = envelope.event_type
        results: dict[str, Any] = {"event_id": str(envelope.event_id), "event_type": event_type}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.warning(f"Unknown event type: {event_type}")
            results["status"] = "ignored"
            results["reason"] = f"No handler for event type: {event_type}"
            return results

        try:
            results.update(handler(envelope))
        except Exception as e:
            logger.error(
                f"Error projecting event {envelope.event_id}",
                extra={
                    "event_id": str(envelope.event_id),
                    "event_type": event_type,
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        return results


def handle_event(db: Session, envelope: EventEnvelope) -> dict[str, Any]:
    """
    Convenience function to handle an event.

    Args:
        db: Database session
        envelope: Event envelope

    Returns:
        Projection result
    """
    router = EventRouter(db)
    return router.handle(envelope)
