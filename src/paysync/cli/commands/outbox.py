"""Outbox commands for PaySync CLI."""

import logging
from datetime import timedelta

import typer

from paysync.config import get_settings
from paysync.engine import OutboxPublisher, build_publisher
from paysync.errors import PaySyncError
from paysync.storage import open_storage

from ._common import describe_failure, echo_table

app = typer.Typer(help="Deliver and inspect outbox events")
logger = logging.getLogger(__name__)


@app.command("publish")
def publish(
    limit: int | None = typer.Option(
        None, "--limit", "-l", help="Maximum events per poll (default: outbox.poll_limit)"
    ),
    drain: bool = typer.Option(
        False, "--drain", help="Keep polling until no pending event is delivered"
    ),
) -> None:
    """Deliver pending outbox events to the message bus."""
    settings = get_settings()
    poll_limit = limit or settings.outbox.poll_limit

    published = failed = 0
    try:
        with open_storage(settings) as storage:
            publisher = OutboxPublisher(
                storage, build_publisher(settings.events), max_retries=settings.outbox.max_retries
            )
            while True:
                result = publisher.publish_pending(poll_limit)
                published += result.published
                failed += result.failed
                if not drain or result.published == 0:
                    break
    except PaySyncError as e:
        logger.error(f"❌ Outbox publish failed: {describe_failure(e)}")
        raise typer.Exit(1) from e

    typer.echo(f"published={published} failed={failed}")


@app.command("cleanup")
def cleanup(
    days: int | None = typer.Option(
        None, "--days", "-d", help="Retention in days (default: outbox.retention_days)"
    ),
) -> None:
    """Delete processed outbox events older than the retention window."""
    settings = get_settings()
    retention = timedelta(days=days or settings.outbox.retention_days)
    try:
        with open_storage(settings) as storage:
            deleted = OutboxPublisher(storage, build_publisher(settings.events)).cleanup(retention)
    except PaySyncError as e:
        logger.error(f"❌ Outbox cleanup failed: {describe_failure(e)}")
        raise typer.Exit(1) from e

    typer.echo(f"deleted={deleted}")


@app.command("dead-letters")
def dead_letters(
    limit: int | None = typer.Option(None, "--limit", "-l", help="Maximum rows to show"),
) -> None:
    """List events that exhausted their retry budget."""
    settings = get_settings()
    try:
        with open_storage(settings) as storage:
            events = OutboxPublisher(storage, build_publisher(settings.events)).dead_letters(limit)
    except PaySyncError as e:
        logger.error(f"❌ Failed to list dead letters: {describe_failure(e)}")
        raise typer.Exit(1) from e

    echo_table(
        [
            {
                "id": event.id.key,
                "type": event.event_type,
                "entity_id": event.entity_id,
                "retry_count": event.retry_count,
                "error": event.error or "",
                "created_at": event.created_at.isoformat(timespec="seconds"),
            }
            for event in events
        ]
    )
