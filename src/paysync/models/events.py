"""Event records: outbox rows, the sent-events ledger and bus messages."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .connectors import ConnectorID

EVENT_APP = "paysync"
EVENT_VERSION = "v1"


class OutboxEventType(str, Enum):
    """Event types written to the outbox next to a domain write."""

    ACCOUNT_SAVED = "account.saved"
    BALANCE_SAVED = "balance.saved"
    EXTERNAL_ACCOUNT_SAVED = "external_account.saved"
    PAYMENT_SAVED = "payment.saved"
    PAYMENT_DELETED = "payment.deleted"
    OTHER_SAVED = "other.saved"
    CONNECTOR_RESET = "connector.reset"


class EventType(str, Enum):
    """Event types published on the message bus."""

    SAVED_ACCOUNT = "SAVED_ACCOUNT"
    SAVED_BALANCE = "SAVED_BALANCE"
    SAVED_BANK_ACCOUNT = "SAVED_BANK_ACCOUNT"
    SAVED_PAYMENT = "SAVED_PAYMENT"
    DELETED_PAYMENT = "DELETED_PAYMENT"
    SAVED_OTHER = "SAVED_OTHER"
    CONNECTOR_RESET = "CONNECTOR_RESET"


class OutboxEventStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class EventID(BaseModel):
    """Identity of one logical event occurrence.

    Publishing the same EventID has its side effect at most once, however
    many times the producing step is retried.
    """

    model_config = ConfigDict(frozen=True)

    idempotency_key: str = Field(..., min_length=1)
    connector_id: ConnectorID | None = None

    @property
    def key(self) -> str:
        if self.connector_id is None:
            return self.idempotency_key
        return f"{self.idempotency_key}@{self.connector_id}"

    def __str__(self) -> str:
        return self.key


class OutboxEvent(BaseModel):
    """Pending event stored in the same transaction as its domain write.

    `payload` is kept as the raw JSON text written by the producer; it is
    decoded only when the event is published.
    """

    model_config = ConfigDict(frozen=True)

    id: EventID
    event_type: str
    entity_id: str
    payload: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: OutboxEventStatus = OutboxEventStatus.PENDING
    connector_id: ConnectorID | None = None
    retry_count: int = Field(default=0, ge=0)
    last_retry_at: datetime | None = None
    error: str | None = None


class EventSent(BaseModel):
    """Ledger row recording that an event has been published."""

    model_config = ConfigDict(frozen=True)

    id: EventID
    connector_id: ConnectorID | None = None
    sent_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class EventMessage(BaseModel):
    """Transport message handed to the bus publisher."""

    model_config = ConfigDict(frozen=True)

    idempotency_key: str
    date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    app: str = EVENT_APP
    version: str = EVENT_VERSION
    type: EventType
    payload: Any = None
