# ruff: noqa: S101
"""Tests for the batch deleter."""

from __future__ import annotations

import threading

import pytest
from conftest import install_fake_connector, make_accounts

from paysync.engine import BatchDeleter, LoggingHeartbeat
from paysync.engine.events import outbox_event_for_item
from paysync.errors import CancelledError
from paysync.models import (
    Connector,
    ConnectorID,
    EntityKind,
    EventID,
    EventSent,
    FetchState,
    ItemKind,
    WebhookConfig,
)
from paysync.storage import DuckDBStorage


def populate(storage: DuckDBStorage, connector_id: ConnectorID, accounts: int = 23) -> None:
    """Write rows of every entity kind for a connector."""
    items = make_accounts(f"{connector_id.reference}", accounts)
    events = [outbox_event_for_item(connector_id, item) for item in items]
    storage.upsert_items(connector_id, items, events)
    for n in range(5):
        storage.upsert_state(connector_id, FetchState(reference=f"task-{n}", state={"n": n}))
    storage.upsert_webhook_configs(
        connector_id, [WebhookConfig(name=f"hook-{n}", url_path=f"/{n}") for n in range(3)]
    )
    for n in range(4):
        storage.events_sent_upsert(
            EventSent(
                id=EventID(idempotency_key=f"sent-{n}", connector_id=connector_id),
                connector_id=connector_id,
            )
        )


def remaining_rows(storage: DuckDBStorage, connector: Connector) -> int:
    total = sum(storage.count_items(kind, connector.id) for kind in ItemKind)
    total += len(storage.list_states(connector.id))
    total += len(storage.list_webhook_configs(connector.id))
    total += sum(1 for e in storage.outbox_poll_pending(1000) if e.connector_id == connector.id)
    return total


class TestBatchDeleter:
    """Bounded batch deletion."""

    @pytest.mark.unit
    @pytest.mark.parametrize("batch_size", [1, 7, 1000])
    def test_delete_all_leaves_nothing_for_connector(
        self, storage: DuckDBStorage, batch_size: int
    ) -> None:
        """The result does not depend on the batch size."""
        connector = install_fake_connector(storage, ())
        other = install_fake_connector(storage, ())
        populate(storage, connector.id)
        populate(storage, other.id)

        deleted = BatchDeleter(storage, batch_size=batch_size).delete_all_for_connector(
            connector.id
        )

        assert deleted[EntityKind.ACCOUNTS] == 23
        assert deleted[EntityKind.OUTBOX_EVENTS] == 23
        assert deleted[EntityKind.STATES] == 5
        assert deleted[EntityKind.WEBHOOK_CONFIGS] == 3
        assert deleted[EntityKind.EVENTS_SENT] == 4
        assert remaining_rows(storage, connector) == 0
        assert not storage.events_sent_exists(
            EventID(idempotency_key="sent-0", connector_id=connector.id)
        )
        assert storage.count_items(ItemKind.ACCOUNT, other.id) == 23

    @pytest.mark.unit
    def test_heartbeat_reports_running_total(self, storage: DuckDBStorage) -> None:
        connector = install_fake_connector(storage, ())
        populate(storage, connector.id, accounts=10)
        heartbeat = LoggingHeartbeat()

        BatchDeleter(storage, batch_size=4, heartbeat=heartbeat).delete_for_connector(
            EntityKind.ACCOUNTS, connector.id
        )

        assert heartbeat.count == 3
        assert heartbeat.last["deleted"] == 10

    @pytest.mark.unit
    def test_cancellation_between_batches_keeps_progress(self, storage: DuckDBStorage) -> None:
        connector = install_fake_connector(storage, ())
        populate(storage, connector.id, accounts=10)
        cancel = threading.Event()

        class CancelAfterFirstBatch(LoggingHeartbeat):
            def record(self, progress: object) -> None:
                super().record(progress)
                cancel.set()

        deleter = BatchDeleter(
            storage, batch_size=4, heartbeat=CancelAfterFirstBatch(), cancel_event=cancel
        )

        with pytest.raises(CancelledError):
            deleter.delete_for_connector(EntityKind.ACCOUNTS, connector.id)

        assert storage.count_items(ItemKind.ACCOUNT, connector.id) == 6

        cancel.clear()
        assert deleter.delete_for_connector(EntityKind.ACCOUNTS, connector.id) == 6
        assert storage.count_items(ItemKind.ACCOUNT, connector.id) == 0

    @pytest.mark.unit
    def test_rejects_invalid_batch_size(self, storage: DuckDBStorage) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            BatchDeleter(storage, batch_size=0)
