"""
Auction platform CLI

Operator commands for the event pipeline.

Commands:
- outbox-status: Outbox counts and oldest pending event
- relay-once: Relay one batch of due outbox events
- stream-info: Length and consumer groups of every partition stream
- parked: List parked (unprojectable) events
- replay-parked: Re-run parked events through the projector
- backfill: Fill placeholder records from the auction service
- sync: Pull auctions updated since a timestamp into the read model
- publish-bid: Publish a bid_placed event (bidding service stand-in)
- publish-finished: Publish an auction_finished event
- issue-token: Issue a development JWT
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="auctionctl",
    help="Auction platform operator CLI",
)

console = Console()


def get_db():
    """Get auction database session."""
    from basecore.db import get_db as _get_db
    return next(_get_db())


def get_search_db():
    """Get search database session."""
    from basecore.db import get_search_db as _get_search_db
    return next(_get_search_db())


def get_redis():
    """Get Redis client."""
    from basecore.redis import get_redis_client
    return get_redis_client()


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        rprint(f"[red]Invalid {label}: {value}[/red]")
        raise typer.Exit(1)


def publish_envelope(envelope) -> str:
    """Publish an envelope straight to its partition stream."""
    from auction_contracts.partitioning import stream_for
    from basecore.redis import publish_to_stream
    from basecore.settings import get_settings

    settings = get_settings()
    stream = stream_for(envelope.aggregate_id, settings.STREAM_PREFIX, settings.STREAM_PARTITIONS)
    msg_id = publish_to_stream(stream, envelope.to_stream_data(), max_len=settings.STREAM_MAX_LEN, client=get_redis())
    rprint(f"[green]Published {envelope.event_type} {envelope.event_id} to {stream} ({msg_id})[/green]")
    return msg_id


@app.command()
def outbox_status():
    """
    Show outbox counts.
    """
    from auction_service.outbox import outbox_stats

    db = get_db()

    try:
        stats = outbox_stats(db)
    finally:
        db.close()

    table = Table(title="Event outbox")
    table.add_column("Pending")
    table.add_column("Retrying")
    table.add_column("Published")
    table.add_column("Oldest pending")
    table.add_row(
        str(stats["pending"]),
        str(stats["retrying"]),
        str(stats["published"]),
        stats["oldest_pending_at"].strftime("%Y-%m-%d %H:%M:%S") if stats["oldest_pending_at"] else "-",
    )
    console.print(table)


@app.command()
def relay_once():
    """
    Relay one batch of due outbox events to Redis Streams.
    """
    from outbox_relay.main import relay_batch

    db = get_db()

    try:
        count = relay_batch(db)
    except Exception as e:
        db.rollback()
        rprint(f"[red]Relay failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    rprint(f"[green]Relayed {count} events[/green]")


@app.command()
def stream_info():
    """
    Show length and consumer groups of every partition stream.
    """
    from auction_contracts.partitioning import all_streams
    from basecore.settings import get_settings

    settings = get_settings()
    redis_client = get_redis()

    table = Table(title="Partition streams")
    table.add_column("Stream")
    table.add_column("Length")
    table.add_column("Groups")

    for stream in all_streams(settings.STREAM_PREFIX, settings.STREAM_PARTITIONS):
        length = redis_client.xlen(stream)
        groups = redis_client.xinfo_groups(stream) if length else []
        table.add_row(
            stream,
            str(length),
            ", ".join(f"{g['name']} ({g['pending']} pending)" for g in groups) or "-",
        )

    console.print(table)


@app.command()
def parked(
    all_: bool = typer.Option(False, "--all", "-a", help="Show replayed entries too"),
    limit: int = typer.Option(20, help="Maximum number of entries to show"),
    raw: bool = typer.Option(False, help="Print the raw stream entries"),
):
    """
    List events parked by the search worker.
    """
    from search_core.consumer import dump_raw
    from search_core.persistence.repo import SearchRepository

    db = get_search_db()

    try:
        entries = SearchRepository(db).get_parked(include_replayed=all_, limit=limit)

        if not entries:
            rprint("[yellow]No parked events[/yellow]")
            return

        table = Table(title="Parked events")
        table.add_column("Stream", style="dim")
        table.add_column("Message")
        table.add_column("Event type")
        table.add_column("Attempts")
        table.add_column("Parked at")
        table.add_column("Error")

        for entry in entries:
            table.add_row(
                entry.stream,
                entry.stream_msg_id,
                entry.event_type or "-",
                str(entry.attempts),
                entry.parked_at.strftime("%Y-%m-%d %H:%M"),
                entry.error[:80],
            )

        console.print(table)

        if raw:
            for entry in entries:
                rprint(f"{entry.stream_msg_id}: {dump_raw(entry.raw)}")

    finally:
        db.close()


@app.command()
def replay_parked(
    limit: int = typer.Option(100, help="Maximum entries to replay"),
):
    """
    Re-run parked events through the projector.

    Entries that still fail stay parked with the new error.
    """
    from search_core.consumer import replay_parked as _replay_parked

    db = get_search_db()

    try:
        stats = _replay_parked(db, limit=limit)
    finally:
        db.close()

    rprint(f"[green]Replayed {stats['replayed']}[/green], [yellow]still parked {stats['still_parked']}[/yellow]")


@app.command()
def backfill(
    limit: int = typer.Option(100, help="Maximum placeholders to fill"),
):
    """
    Fill placeholder search records from the auction service.
    """
    from basecore.settings import get_settings
    from search_core.reconcile import AuctionServiceClient, Reconciler

    settings = get_settings()
    client = AuctionServiceClient(settings.AUCTION_SERVICE_URL, timeout=settings.HTTP_TIMEOUT)
    db = get_search_db()

    try:
        stats = Reconciler(db, client).backfill(limit=limit)
    finally:
        db.close()
        client.close()

    rprint(f"Filled {stats['filled']}, tombstoned {stats['deleted']}, failed {stats['failed']}")


@app.command()
def sync(
    since: Optional[datetime] = typer.Option(None, help="Only auctions updated after this instant"),
):
    """
    Pull auctions from the auction service into the read model.

    Without --since, resumes from the newest update already projected.
    """
    from basecore.settings import get_settings
    from search_core.reconcile import AuctionServiceClient, Reconciler

    settings = get_settings()
    client = AuctionServiceClient(settings.AUCTION_SERVICE_URL, timeout=settings.HTTP_TIMEOUT)
    db = get_search_db()

    try:
        written = Reconciler(db, client).sync_since(since)
    finally:
        db.close()
        client.close()

    rprint(f"[green]Synced {written} auctions[/green]")


@app.command()
def publish_bid(
    auction_id: str = typer.Argument(..., help="Auction UUID"),
    bidder: str = typer.Argument(..., help="Bidder username"),
    amount: int = typer.Argument(..., help="Bid amount"),
    bid_status: str = typer.Option("Accepted", help="Accepted, AcceptedBelowReserve, TooLow or Finished"),
):
    """
    Publish a bid_placed event for an auction.
    """
    from auction_contracts import BidPlaced, BidStatus, EventEnvelope, EventType

    auction_uuid = parse_uuid(auction_id, "auction ID")

    try:
        status = BidStatus(bid_status)
    except ValueError:
        rprint(f"[red]Unknown bid status: {bid_status}[/red]")
        raise typer.Exit(1)

    payload = BidPlaced(
        id=str(uuid4()),
        auction_id=auction_uuid,
        bidder=bidder,
        bid_time=datetime.now(timezone.utc),
        amount=amount,
        bid_status=status,
    )
    publish_envelope(
        EventEnvelope.create(EventType.BID_PLACED, auction_uuid, payload.model_dump(mode="json"))
    )


@app.command()
def publish_finished(
    auction_id: str = typer.Argument(..., help="Auction UUID"),
    winner: Optional[str] = typer.Option(None, help="Winning bidder (omit when unsold)"),
    amount: Optional[int] = typer.Option(None, help="Winning amount"),
    seller: Optional[str] = typer.Option(None, help="Seller username"),
):
    """
    Publish an auction_finished event. Sold when --winner and --amount are given.
    """
    from auction_contracts import AuctionFinished, EventEnvelope, EventType

    auction_uuid = parse_uuid(auction_id, "auction ID")

    if (winner is None) != (amount is None):
        rprint("[red]--winner and --amount must be given together[/red]")
        raise typer.Exit(1)

    payload = AuctionFinished(
        auction_id=auction_uuid,
        item_sold=winner is not None,
        winner=winner,
        seller=seller,
        amount=amount,
    )
    publish_envelope(
        EventEnvelope.create(EventType.AUCTION_FINISHED, auction_uuid, payload.model_dump(mode="json"))
    )


@app.command()
def issue_token(
    username: str = typer.Argument(..., help="Identity to embed in the token"),
    minutes: Optional[int] = typer.Option(None, help="Lifetime in minutes"),
):
    """
    Issue a development bearer token for the auction API.
    """
    from datetime import timedelta

    from auction_service.security import create_access_token

    expires = timedelta(minutes=minutes) if minutes else None
    print(create_access_token(username, expires_delta=expires))


if __name__ == "__main__":
    app()
