"""Bounded-batch deletion of everything a connector owns."""

import logging
import threading
from collections.abc import Iterable

from paysync.models import ConnectorID, EntityKind
from paysync.storage import Storage

from .steps import Heartbeat, LoggingHeartbeat, check_cancelled

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


class BatchDeleter:
    """Deletes rows in batches, reporting progress after each batch.

    Cancellation is honoured between batches; committed batches stay
    deleted, so a re-run continues where the previous one stopped.
    """

    def __init__(
        self,
        storage: Storage,
        batch_size: int = DEFAULT_BATCH_SIZE,
        heartbeat: Heartbeat | None = None,
        cancel_event: threading.Event | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.storage = storage
        self.batch_size = batch_size
        self.heartbeat = heartbeat or LoggingHeartbeat()
        self.cancel_event = cancel_event

    def delete_for_connector(self, kind: EntityKind, connector_id: ConnectorID) -> int:
        total = 0
        while True:
            check_cancelled(self.cancel_event)
            deleted = self.storage.batch_delete_by_connector(kind, connector_id, self.batch_size)
            if deleted == 0:
                break
            total += deleted
            self.heartbeat.record({"kind": kind.value, "connector_id": str(connector_id), "deleted": total})

        if total:
            logger.debug(f"Deleted {total} {kind.value} rows for {connector_id}")
        return total

    def delete_all_for_connector(
        self, connector_id: ConnectorID, kinds: Iterable[EntityKind] = tuple(EntityKind)
    ) -> dict[EntityKind, int]:
        """Purge every entity kind for a connector.

        Returns:
            dict: Rows deleted per entity kind
        """
        return {kind: self.delete_for_connector(kind, connector_id) for kind in kinds}
