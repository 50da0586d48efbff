"""Storage contract.

Every write is idempotent so that any step may be re-run after a crash. The
only paired write is a domain upsert together with its outbox rows, which
must commit atomically.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from paysync.models import (
    Connector,
    ConnectorID,
    EntityKind,
    EventID,
    EventSent,
    FetchState,
    ItemKind,
    OutboxEvent,
    OutboxEventStatus,
    PSPItem,
    WebhookConfig,
)


class Storage(Protocol):
    # Connectors
    def install_connector(self, connector: Connector) -> None: ...
    def get_connector(self, connector_id: ConnectorID) -> Connector: ...
    def list_connectors(self) -> list[Connector]: ...
    def schedule_connector_deletion(self, connector_id: ConnectorID) -> None: ...
    def delete_connector(self, connector_id: ConnectorID) -> None: ...

    # Fetched items
    def upsert_items(
        self,
        connector_id: ConnectorID,
        items: Sequence[PSPItem],
        outbox_events: Sequence[OutboxEvent] = (),
    ) -> int: ...
    def list_items(
        self, kind: ItemKind, connector_id: ConnectorID
    ) -> list[dict[str, Any]]: ...
    def count_items(self, kind: ItemKind, connector_id: ConnectorID) -> int: ...
    def delete_items(
        self,
        connector_id: ConnectorID,
        kind: ItemKind,
        item_ids: Sequence[str],
        outbox_events: Sequence[OutboxEvent] = (),
    ) -> int: ...

    # Fetch states
    def get_state(self, connector_id: ConnectorID, reference: str) -> FetchState | None: ...
    def upsert_state(self, connector_id: ConnectorID, state: FetchState) -> None: ...
    def list_states(self, connector_id: ConnectorID) -> list[FetchState]: ...

    # Webhooks
    def upsert_webhook_configs(
        self, connector_id: ConnectorID, configs: Sequence[WebhookConfig]
    ) -> None: ...
    def list_webhook_configs(self, connector_id: ConnectorID) -> list[WebhookConfig]: ...

    # Outbox
    def outbox_insert(self, events: Sequence[OutboxEvent]) -> int: ...
    def outbox_poll_pending(self, limit: int) -> list[OutboxEvent]: ...
    def outbox_mark_processed_and_record_sent(
        self, event_ids: Sequence[EventID], sent: Sequence[EventSent]
    ) -> None: ...
    def outbox_mark_failed(
        self,
        event_id: EventID,
        retry_count: int,
        error: str,
        status: OutboxEventStatus = OutboxEventStatus.PENDING,
    ) -> None: ...
    def outbox_delete_old_processed(self, cutoff: datetime) -> int: ...
    def outbox_list(
        self, status: OutboxEventStatus, limit: int | None = None
    ) -> list[OutboxEvent]: ...

    # Event ledger
    def events_sent_exists(self, event_id: EventID) -> bool: ...
    def events_sent_upsert(self, record: EventSent) -> None: ...

    # Deletion
    def batch_delete_by_connector(
        self, kind: EntityKind, connector_id: ConnectorID, batch_size: int
    ) -> int: ...
