"""
Search Core - read-model runtime

This package is completely independent from the auction service code.
It provides:
- Search-owned persistence models
- The projector applying auction events
- Event handler routing
- The Redis Streams consumer (idempotent, parks bad events)
- Reconciliation against the auction service (backfill)

The search side learns about auctions ONLY via:
- Redis Streams event bus (fed by the auction outbox relay)
- The auction service HTTP API (for backfilling placeholders)

NO imports from auction_service are allowed.
"""
