"""Synchronization commands for PaySync CLI."""

import logging

import typer

from paysync.config import get_settings
from paysync.engine import ConnectorManager
from paysync.errors import PaySyncError
from paysync.storage import open_storage

from ._common import describe_failure, echo_table, parse_connector_id

app = typer.Typer(help="Run connector sync cycles")
logger = logging.getLogger(__name__)


@app.command("run")
def run_sync(
    connector: str | None = typer.Argument(None, help="Connector id (provider:uuid)"),
    all_connectors: bool = typer.Option(
        False, "--all", "-a", help="Run a cycle for every installed connector"
    ),
) -> None:
    """Run one sync cycle.

    A cycle walks the connector's task tree, fetching every page and
    persisting items and checkpoints. A failing connector aborts its own
    cycle only; progress already checkpointed is kept and resumed next time.

    Examples:
        paysync sync run dummypay:0b5d...
        paysync sync run --all
    """
    if connector is None and not all_connectors:
        raise typer.BadParameter("Pass a connector id or --all")
    if connector is not None and all_connectors:
        raise typer.BadParameter("Pass either a connector id or --all, not both")

    settings = get_settings()
    rows: list[dict[str, object]] = []
    failures = 0

    try:
        with open_storage(settings) as storage:
            manager = ConnectorManager(storage, settings)
            if all_connectors:
                connector_ids = [
                    c.id for c in manager.list_connectors() if not c.scheduled_for_deletion
                ]
            else:
                connector_ids = [parse_connector_id(connector or "")]

            for connector_id in connector_ids:
                try:
                    stats = manager.run_cycle(connector_id)
                except PaySyncError as e:
                    failures += 1
                    logger.error(f"❌ Sync failed for {connector_id}: {describe_failure(e)}")
                    continue
                rows.append(
                    {
                        "connector": str(connector_id),
                        "tasks": stats.tasks,
                        "pages": stats.pages,
                        "items": sum(stats.items.values()),
                        "webhooks": stats.webhooks,
                    }
                )
    except PaySyncError as e:
        logger.error(f"❌ Sync failed: {describe_failure(e)}")
        raise typer.Exit(1) from e

    echo_table(rows)
    if failures:
        raise typer.Exit(1)
    logger.info("✅ Sync completed successfully")
