"""Outbox publisher.

Drains PENDING outbox rows to the message bus. Successes are marked
PROCESSED and appended to the sent-events ledger in one atomic storage call;
failures are counted per row and dead-lettered once the retry budget is
spent or the error can never succeed.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from paysync.errors import StepError, as_step_error
from paysync.models import EventID, EventSent, OutboxEvent, OutboxEventStatus
from paysync.storage import Storage

from .bus import Publisher
from .events import to_message

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=30)


@dataclass
class PublishResult:
    polled: int = 0
    published: int = 0
    failed: int = 0
    dead_lettered: int = 0


class OutboxPublisher:
    """Polls the outbox and delivers pending events."""

    def __init__(self, storage: Storage, publisher: Publisher, max_retries: int = 10):
        self.storage = storage
        self.publisher = publisher
        self.max_retries = max_retries

    def publish_pending(self, limit: int = 100) -> PublishResult:
        """Deliver up to `limit` pending events, oldest first.

        A failed delivery never blocks the other events of the poll.
        """
        events = self.storage.outbox_poll_pending(limit)
        if not events:
            return PublishResult()

        result = PublishResult(polled=len(events))
        processed: list[EventID] = []
        sent: list[EventSent] = []
        failures: list[tuple[OutboxEvent, StepError]] = []

        for event in events:
            try:
                self.publisher.publish(to_message(event))
            except Exception as e:  # noqa: BLE001  # counted against the row's retry budget
                failures.append((event, as_step_error(e)))
                continue

            processed.append(event.id)
            sent.append(
                EventSent(id=event.id, connector_id=event.connector_id, sent_at=datetime.now(UTC))
            )

        # Successes are committed before any failure is recorded
        if processed:
            self.storage.outbox_mark_processed_and_record_sent(processed, sent)
            result.published = len(processed)

        for event, error in failures:
            self._mark_failed(event, error, result)

        logger.info(
            f"Outbox: {result.published} published, {result.failed} failed, "
            f"{result.dead_lettered} dead-lettered"
        )
        return result

    def _mark_failed(self, event: OutboxEvent, error: StepError, result: PublishResult) -> None:
        retry_count = event.retry_count + 1
        terminal = retry_count > self.max_retries or not error.retryable
        status = OutboxEventStatus.FAILED if terminal else OutboxEventStatus.PENDING

        self.storage.outbox_mark_failed(event.id, retry_count, str(error), status)

        result.failed += 1
        if terminal:
            result.dead_lettered += 1
            logger.error(
                f"❌ Outbox event {event.id} dead-lettered after {retry_count} attempts: "
                f"{error}"
            )
        else:
            logger.warning(f"Outbox event {event.id} failed (retry {retry_count}): {error}")

    def cleanup(self, retention: timedelta = DEFAULT_RETENTION) -> int:
        """Delete PROCESSED rows older than the retention window."""
        cutoff = datetime.now(UTC) - retention
        deleted = self.storage.outbox_delete_old_processed(cutoff)
        logger.info(f"Outbox cleanup: deleted {deleted} processed events older than {cutoff:%Y-%m-%d}")
        return deleted

    def dead_letters(self, limit: int | None = None) -> list[OutboxEvent]:
        return self.storage.outbox_list(OutboxEventStatus.FAILED, limit)
