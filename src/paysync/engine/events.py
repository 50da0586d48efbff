"""Event builders and the idempotent synchronous publication path.

Two delivery paths share the same builders:

- outbox: `outbox_event_for_item` rows are written with the domain upsert and
  delivered later by `OutboxPublisher`;
- inline: `EventSender.send_event` checks the sent-events ledger, publishes,
  then records the event.

The inline path is at-least-once. If the publish succeeds and the ledger
write fails, the retried step publishes the same message again. Consumers
deduplicate on `idempotency_key`.
"""

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from paysync.errors import InvalidPayloadError, StorageError, UnknownEventTypeError
from paysync.models import (
    ConnectorID,
    EventID,
    EventMessage,
    EventSent,
    EventType,
    ItemKind,
    OutboxEvent,
    OutboxEventType,
    PSPItem,
)
from paysync.storage import Storage

from .bus import Publisher

logger = logging.getLogger(__name__)

ITEM_EVENT_TYPES: dict[ItemKind, OutboxEventType] = {
    ItemKind.ACCOUNT: OutboxEventType.ACCOUNT_SAVED,
    ItemKind.BALANCE: OutboxEventType.BALANCE_SAVED,
    ItemKind.EXTERNAL_ACCOUNT: OutboxEventType.EXTERNAL_ACCOUNT_SAVED,
    ItemKind.PAYMENT: OutboxEventType.PAYMENT_SAVED,
    ItemKind.OTHER: OutboxEventType.OTHER_SAVED,
}

BUS_EVENT_TYPES: dict[str, EventType] = {
    OutboxEventType.ACCOUNT_SAVED.value: EventType.SAVED_ACCOUNT,
    OutboxEventType.BALANCE_SAVED.value: EventType.SAVED_BALANCE,
    OutboxEventType.EXTERNAL_ACCOUNT_SAVED.value: EventType.SAVED_BANK_ACCOUNT,
    OutboxEventType.PAYMENT_SAVED.value: EventType.SAVED_PAYMENT,
    OutboxEventType.PAYMENT_DELETED.value: EventType.DELETED_PAYMENT,
    OutboxEventType.OTHER_SAVED.value: EventType.SAVED_OTHER,
    OutboxEventType.CONNECTOR_RESET.value: EventType.CONNECTOR_RESET,
}


def item_payload(connector_id: ConnectorID, item: PSPItem) -> dict[str, Any]:
    """Public representation of a stored item."""
    return {
        "id": item.stored_id(connector_id),
        "connector_id": str(connector_id),
        "provider": connector_id.provider,
        "kind": item.kind.value,
        **item.model_dump(mode="json"),
    }


def outbox_event_for_item(connector_id: ConnectorID, item: PSPItem) -> OutboxEvent:
    return OutboxEvent(
        id=EventID(idempotency_key=item.idempotency_key(connector_id), connector_id=connector_id),
        event_type=ITEM_EVENT_TYPES[item.kind].value,
        entity_id=item.stored_id(connector_id),
        payload=json.dumps(item_payload(connector_id, item)),
        connector_id=connector_id,
    )


def connector_reset_event(connector_id: ConnectorID, at: datetime | None = None) -> OutboxEvent:
    at = at or datetime.now(UTC)
    return OutboxEvent(
        id=EventID(idempotency_key=f"reset-{at.isoformat()}", connector_id=connector_id),
        event_type=OutboxEventType.CONNECTOR_RESET.value,
        entity_id=str(connector_id),
        payload=json.dumps({"connector_id": str(connector_id), "at": at.isoformat()}),
        connector_id=connector_id,
    )


def payment_deleted_event(connector_id: ConnectorID, payment_id: str) -> OutboxEvent:
    return OutboxEvent(
        id=EventID(idempotency_key=f"delete-{payment_id}", connector_id=connector_id),
        event_type=OutboxEventType.PAYMENT_DELETED.value,
        entity_id=payment_id,
        payload=json.dumps({"id": payment_id, "connector_id": str(connector_id)}),
        connector_id=connector_id,
    )


def to_message(event: OutboxEvent) -> EventMessage:
    """Build the bus message for an outbox event.

    Raises:
        UnknownEventTypeError: If the event type has no bus mapping
        InvalidPayloadError: If the stored payload is not valid JSON
    """
    event_type = BUS_EVENT_TYPES.get(event.event_type)
    if event_type is None:
        raise UnknownEventTypeError(event.event_type)

    try:
        payload = json.loads(event.payload)
    except json.JSONDecodeError as e:
        raise InvalidPayloadError(event.event_type, event.id.key, e) from e

    return EventMessage(
        idempotency_key=event.id.key,
        type=event_type,
        payload=payload,
    )


class EventSender:
    """Publishes events inline, at most once per EventID while the ledger holds."""

    def __init__(self, storage: Storage, publisher: Publisher):
        self.storage = storage
        self.publisher = publisher

    def send_event(
        self, event_id: EventID, payload_builder: Callable[[], EventMessage]
    ) -> bool:
        """Publish unless the ledger already records `event_id`.

        Returns:
            bool: True if a message was published, False if it was a duplicate
        """
        if self.storage.events_sent_exists(event_id):
            logger.debug(f"Event {event_id} already sent, skipping")
            return False

        message = payload_builder()
        self.publisher.publish(message)

        try:
            self.storage.events_sent_upsert(
                EventSent(id=event_id, connector_id=event_id.connector_id)
            )
        except StorageError:
            logger.warning(
                f"Event {event_id} was published but not recorded; "
                "a retry of this step will publish it again"
            )
            raise
        return True
