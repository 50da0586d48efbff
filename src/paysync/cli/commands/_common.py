"""Helpers shared by CLI command groups."""

import polars as pl
import typer

from paysync.errors import as_step_error
from paysync.models import ConnectorID


def parse_connector_id(value: str) -> ConnectorID:
    try:
        return ConnectorID.parse(value)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid connector id: {value}") from e


def describe_failure(exc: BaseException) -> str:
    """Operator-facing `REASON: message` line for a failed command."""
    error = as_step_error(exc)
    if error.retryable:
        return f"{error} (transient, re-run to resume)"
    return str(error)


def echo_table(rows: list[dict[str, object]]) -> None:
    """Print rows as a table on stdout."""
    if not rows:
        typer.echo("(none)")
        return
    with pl.Config(tbl_rows=-1, tbl_hide_dataframe_shape=True, fmt_str_lengths=80):
        typer.echo(pl.DataFrame(rows))
