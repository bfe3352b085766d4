"""
Auction Service - authoritative auction records.

Owns the ``auctions`` and ``event_outbox`` tables. Every change is
published to other services ONLY through the outbox, drained by the
outbox relay.
"""
