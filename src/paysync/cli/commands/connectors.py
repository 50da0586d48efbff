"""Connector management commands for PaySync CLI."""

import json
import logging
from pathlib import Path

import typer

from paysync.config import get_settings
from paysync.engine import ConnectorManager
from paysync.errors import PaySyncError
from paysync.plugins import list_providers
from paysync.storage import open_storage

from ._common import describe_failure, echo_table, parse_connector_id

app = typer.Typer(help="Install, list, reset and uninstall connectors")
logger = logging.getLogger(__name__)


def _load_config(config: str | None, config_file: Path | None) -> dict[str, object]:
    if config and config_file:
        raise typer.BadParameter("Use either --config or --config-file, not both")
    raw = config_file.read_text(encoding="utf-8") if config_file else (config or "{}")
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Connector config is not valid JSON: {e}") from e
    if not isinstance(loaded, dict):
        raise typer.BadParameter("Connector config must be a JSON object")
    return loaded


@app.command("install")
def install_connector(
    provider: str = typer.Argument(..., help="Provider name (see 'connectors providers')"),
    config: str | None = typer.Option(
        None, "--config", "-c", help="Connector config as a JSON object"
    ),
    config_file: Path | None = typer.Option(
        None, "--config-file", help="Path to a JSON file holding the connector config"
    ),
    name: str | None = typer.Option(None, "--name", "-n", help="Connector name"),
) -> None:
    """Install a connector and store the task tree its provider declares.

    Examples:
        paysync connectors install dummypay --config '{"directory": "fixtures"}'
    """
    connector_config = _load_config(config, config_file)
    settings = get_settings()

    try:
        with open_storage(settings) as storage:
            connector = ConnectorManager(storage, settings).install(
                provider, connector_config, name=name
            )
    except PaySyncError as e:
        logger.error(f"❌ Install failed: {describe_failure(e)}")
        raise typer.Exit(1) from e

    typer.echo(str(connector.id))


@app.command("providers")
def providers() -> None:
    """List the registered providers."""
    for provider in list_providers():
        typer.echo(provider)


@app.command("list")
def list_connectors() -> None:
    """List installed connectors."""
    settings = get_settings()
    try:
        with open_storage(settings) as storage:
            connectors = ConnectorManager(storage, settings).list_connectors()
    except PaySyncError as e:
        logger.error(f"❌ Failed to list connectors: {describe_failure(e)}")
        raise typer.Exit(1) from e

    echo_table(
        [
            {
                "id": str(c.id),
                "name": c.name,
                "provider": c.provider,
                "created_at": c.created_at.isoformat(timespec="seconds"),
                "root_tasks": len(c.task_tree),
                "scheduled_for_deletion": c.scheduled_for_deletion,
            }
            for c in connectors
        ]
    )


@app.command("reset")
def reset_connector(
    connector: str = typer.Argument(..., help="Connector id (provider:uuid)"),
) -> None:
    """Delete synced data and cursors; the next cycle re-fetches everything."""
    connector_id = parse_connector_id(connector)
    settings = get_settings()
    try:
        with open_storage(settings) as storage:
            deleted = ConnectorManager(storage, settings).reset(connector_id)
    except PaySyncError as e:
        logger.error(f"❌ Reset failed: {describe_failure(e)}")
        raise typer.Exit(1) from e

    logger.info(f"✅ Reset {connector_id} ({sum(deleted.values())} rows deleted)")


@app.command("uninstall")
def uninstall_connector(
    connector: str = typer.Argument(..., help="Connector id (provider:uuid)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Uninstall a connector and delete all of its data."""
    connector_id = parse_connector_id(connector)
    if not yes:
        typer.confirm(f"Delete connector {connector_id} and all of its data?", abort=True)

    settings = get_settings()
    try:
        with open_storage(settings) as storage:
            deleted = ConnectorManager(storage, settings).uninstall(connector_id)
    except PaySyncError as e:
        logger.error(f"❌ Uninstall failed: {describe_failure(e)}")
        raise typer.Exit(1) from e

    echo_table([{"kind": kind.value, "deleted": count} for kind, count in deleted.items()])
