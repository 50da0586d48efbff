"""Local worker for PaySync CLI.

Runs the periodic loops in one process: the outbox publisher every
`outbox.poll_interval` seconds and a sync cycle per connector every
`scheduler.sync_interval` seconds.
"""

import logging
import threading
import time

import typer

from paysync.config import get_settings
from paysync.engine import ConnectorManager, OutboxPublisher, build_publisher
from paysync.errors import PaySyncError, is_retryable
from paysync.logging import LoggingConfig, setup_logging
from paysync.storage import open_storage

from ._common import describe_failure

app = typer.Typer(help="Run the local periodic worker")
logger = logging.getLogger(__name__)


def run_worker(
    stop: threading.Event,
    max_iterations: int | None = None,
) -> int:
    """Run the worker loop until `stop` is set.

    Returns:
        int: Number of loop iterations executed
    """
    settings = get_settings()
    iterations = 0
    next_sync = 0.0

    with open_storage(settings) as storage:
        publisher = build_publisher(settings.events)
        manager = ConnectorManager(storage, settings, publisher=publisher, cancel_event=stop)
        outbox = OutboxPublisher(storage, publisher, max_retries=settings.outbox.max_retries)

        while not stop.is_set():
            iterations += 1
            outbox.publish_pending(settings.outbox.poll_limit)

            if time.monotonic() >= next_sync:
                for connector in manager.list_connectors():
                    if connector.scheduled_for_deletion or stop.is_set():
                        continue
                    try:
                        manager.run_cycle(connector.id)
                    except PaySyncError as e:
                        # Transient failures are retried by the next sync round
                        log = logger.warning if is_retryable(e) else logger.error
                        log(f"❌ Sync failed for {connector.id}: {describe_failure(e)}")
                next_sync = time.monotonic() + settings.scheduler.sync_interval

            if max_iterations is not None and iterations >= max_iterations:
                break
            stop.wait(settings.outbox.poll_interval)

    return iterations


@app.command("run")
def run(
    once: bool = typer.Option(False, "--once", help="Run a single iteration and exit"),
) -> None:
    """Publish the outbox and sync every connector periodically until interrupted."""
    settings = get_settings()
    config = LoggingConfig.from_settings(settings.logging)
    config.force_reconfigure = True
    setup_logging(config)

    stop = threading.Event()
    logger.info("🚀 Worker started, press Ctrl+C to stop")
    try:
        run_worker(stop, max_iterations=1 if once else None)
    except KeyboardInterrupt:
        stop.set()
        logger.info("✅ Worker stopped")
    except PaySyncError as e:
        logger.error(f"❌ Worker failed: {describe_failure(e)}")
        raise typer.Exit(1) from e
