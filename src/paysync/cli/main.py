"""`paysync` command line: connectors, sync, outbox and worker groups."""

import logging
from typing import Annotated

import typer

from ..config import set_current_profile
from ..logging import setup_logging
from .commands import connectors, outbox, sync, worker

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="paysync",
    help="PaySync: connector synchronization and reliable event delivery",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    profile: Annotated[
        str,
        typer.Option(
            "--profile",
            "-p",
            help="Configuration profile to use (loads .env.{profile}). Default: default",
            envvar="PAYSYNC_PROFILE",
        ),
    ] = "default",
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose debug logging",
        ),
    ] = False,
) -> None:
    """Select the settings profile and configure logging.

    Each profile reads its own .env.{profile} file and so its own database.

    Examples:
      paysync connectors install dummypay --config '{"directory": "fixtures"}'
      paysync --profile=dev sync run --all
      paysync outbox publish

    Can also be set via PAYSYNC_PROFILE environment variable.
    """
    setup_logging(cli_mode=True, verbose=verbose)

    try:
        set_current_profile(profile)
    except ValueError as e:
        logger.error(f"❌ {e}")
        raise typer.BadParameter(
            f"Invalid profile name: {profile}. "
            "Use only alphanumeric characters, dashes, and underscores"
        ) from e

    logger.debug(f"👤 Using profile: {profile}")


app.add_typer(connectors.app, name="connectors", help="Install and manage connectors")
app.add_typer(sync.app, name="sync", help="Run connector sync cycles")
app.add_typer(outbox.app, name="outbox", help="Deliver and inspect outbox events")
app.add_typer(worker.app, name="worker", help="Run the local periodic worker")


def main() -> None:
    """Entry point for the PaySync CLI application."""
    app()


if __name__ == "__main__":
    main()
