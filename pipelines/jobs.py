"""Dagster ops and jobs driving the PaySync CLI.

Each op is safe to re-run after a crash: sync cycles resume from their last
checkpoint and outbox polls only see events not yet delivered.
"""

import logging
import subprocess  # noqa: S404

from dagster import Backoff, OpExecutionContext, RetryPolicy, job, op

logger = logging.getLogger(__name__)

# Retries at this level cover crashes of the whole CLI process; plugin calls
# are also retried inside each cycle.
STEP_RETRY_POLICY = RetryPolicy(max_retries=5, delay=1, backoff=Backoff.EXPONENTIAL)


def run_cli(context: OpExecutionContext, *args: str) -> str:
    """Run a PaySync CLI command and return its stdout."""
    command = ["uv", "run", "paysync", *args]
    result = subprocess.run(  # noqa: S603
        command,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.stderr:
        context.log.debug(result.stderr)
    if result.returncode != 0:
        raise RuntimeError(
            f"'{' '.join(args)}' exited with {result.returncode}: {result.stderr.strip()}"
        )
    return result.stdout


@op(retry_policy=STEP_RETRY_POLICY)
def sync_connectors(context: OpExecutionContext) -> str:
    """Run one sync cycle for every installed connector."""
    output = run_cli(context, "sync", "run", "--all")
    context.log.info(f"Sync cycle completed:\n{output}")
    return output


@op(retry_policy=STEP_RETRY_POLICY)
def publish_outbox(context: OpExecutionContext) -> str:
    """Deliver pending outbox events."""
    output = run_cli(context, "outbox", "publish")
    context.log.info(f"Outbox publish completed: {output.strip()}")
    return output


@op(retry_policy=STEP_RETRY_POLICY)
def cleanup_outbox(context: OpExecutionContext) -> str:
    """Delete processed outbox events past the retention window."""
    output = run_cli(context, "outbox", "cleanup")
    context.log.info(f"Outbox cleanup completed: {output.strip()}")
    return output


@job
def sync_connectors_job():
    sync_connectors()


@job
def publish_outbox_job():
    publish_outbox()


@job
def cleanup_outbox_job():
    cleanup_outbox()


__all__ = [
    "cleanup_outbox_job",
    "publish_outbox_job",
    "run_cli",
    "sync_connectors_job",
]
