# ruff: noqa: S101
"""Tests for the idempotent synchronous publication path and event builders."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from conftest import RecordingPublisher, make_accounts
from pytest_mock import MockerFixture

from paysync.engine import EventSender, to_message
from paysync.engine.events import (
    connector_reset_event,
    outbox_event_for_item,
    payment_deleted_event,
)
from paysync.errors import (
    InvalidPayloadError,
    StorageError,
    TransientError,
    UnknownEventTypeError,
)
from paysync.models import ConnectorID, EventID, EventMessage, EventType, OutboxEventType
from paysync.storage import DuckDBStorage

CONNECTOR = ConnectorID(provider="fake")


def message_for(event_id: EventID) -> EventMessage:
    return EventMessage(idempotency_key=event_id.key, type=EventType.CONNECTOR_RESET)


class TestSendEvent:
    """Ledger check, publish, ledger write."""

    @pytest.mark.unit
    def test_publishes_once_per_event_id(
        self, storage: DuckDBStorage, publisher: RecordingPublisher
    ) -> None:
        sender = EventSender(storage, publisher)
        event_id = EventID(idempotency_key="reset-1", connector_id=CONNECTOR)

        assert sender.send_event(event_id, lambda: message_for(event_id)) is True
        assert sender.send_event(event_id, lambda: message_for(event_id)) is False

        assert publisher.keys == [event_id.key]
        assert storage.events_sent_exists(event_id)

    @pytest.mark.unit
    def test_builder_not_called_for_duplicates(
        self, storage: DuckDBStorage, publisher: RecordingPublisher
    ) -> None:
        sender = EventSender(storage, publisher)
        event_id = EventID(idempotency_key="reset-1")
        sender.send_event(event_id, lambda: message_for(event_id))

        builder = MagicMock()
        sender.send_event(event_id, builder)

        builder.assert_not_called()

    @pytest.mark.unit
    def test_publish_failure_records_nothing(self, storage: DuckDBStorage) -> None:
        publisher = RecordingPublisher()
        event_id = EventID(idempotency_key="reset-1", connector_id=CONNECTOR)
        publisher.failing_keys.add(event_id.key)

        with pytest.raises(TransientError, match="bus unavailable"):
            EventSender(storage, publisher).send_event(event_id, lambda: message_for(event_id))

        assert not storage.events_sent_exists(event_id)

    @pytest.mark.unit
    def test_ledger_failure_after_publish_allows_redelivery(
        self, storage: DuckDBStorage, publisher: RecordingPublisher, mocker: MockerFixture
    ) -> None:
        """Publish succeeded but the ledger write failed: a retry publishes again."""
        sender = EventSender(storage, publisher)
        event_id = EventID(idempotency_key="reset-1", connector_id=CONNECTOR)
        mocker.patch.object(
            storage, "events_sent_upsert", side_effect=StorageError("disk full")
        )

        with pytest.raises(StorageError):
            sender.send_event(event_id, lambda: message_for(event_id))

        mocker.stopall()
        sender.send_event(event_id, lambda: message_for(event_id))

        assert publisher.keys == [event_id.key, event_id.key]


class TestBuilders:
    """Outbox event construction and message mapping."""

    @pytest.mark.unit
    def test_item_event_key_is_stable_for_identical_data(self) -> None:
        (account,) = make_accounts("acc", 1)
        first = outbox_event_for_item(CONNECTOR, account)
        second = outbox_event_for_item(CONNECTOR, account.model_copy())

        assert first.id == second.id
        assert first.event_type == OutboxEventType.ACCOUNT_SAVED.value
        assert first.entity_id == account.stored_id(CONNECTOR)

    @pytest.mark.unit
    def test_item_event_key_changes_with_data(self) -> None:
        (account,) = make_accounts("acc", 1)
        renamed = account.model_copy(update={"name": "Renamed"})

        assert (
            outbox_event_for_item(CONNECTOR, account).id
            != outbox_event_for_item(CONNECTOR, renamed).id
        )

    @pytest.mark.unit
    def test_item_payload_contains_connector_and_item(self) -> None:
        (account,) = make_accounts("acc", 1)
        payload = json.loads(outbox_event_for_item(CONNECTOR, account).payload)

        assert payload["connector_id"] == str(CONNECTOR)
        assert payload["provider"] == "fake"
        assert payload["reference"] == "acc-0"
        assert payload["kind"] == "accounts"

    @pytest.mark.unit
    def test_reset_and_payment_deleted_messages(self) -> None:
        assert to_message(connector_reset_event(CONNECTOR)).type is EventType.CONNECTOR_RESET
        deleted = to_message(payment_deleted_event(CONNECTOR, "pay-1"))
        assert deleted.type is EventType.DELETED_PAYMENT
        assert deleted.payload["id"] == "pay-1"

    @pytest.mark.unit
    def test_to_message_rejects_unknown_type_and_bad_payload(self) -> None:
        event = connector_reset_event(CONNECTOR)

        with pytest.raises(UnknownEventTypeError):
            to_message(event.model_copy(update={"event_type": "nope"}))
        with pytest.raises(InvalidPayloadError):
            to_message(event.model_copy(update={"payload": "not-json"}))
