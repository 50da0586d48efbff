"""Domain models for PaySync.

Connectors, task trees, provider (PSP) items, fetch states and the event
records used by the outbox and the event ledger.
"""

from .connectors import Connector, ConnectorID, EntityKind
from .events import (
    EVENT_APP,
    EVENT_VERSION,
    EventID,
    EventMessage,
    EventSent,
    EventType,
    OutboxEvent,
    OutboxEventStatus,
    OutboxEventType,
)
from .psp import (
    FetchPage,
    ItemKind,
    PaymentStatus,
    PaymentType,
    PSPAccount,
    PSPBalance,
    PSPExternalAccount,
    PSPItem,
    PSPOther,
    PSPPayment,
    WebhookConfig,
    stored_item_id,
)
from .tasks import FetchState, FromPayload, TaskNode, TaskTree, TaskType

__all__ = [
    "Connector",
    "ConnectorID",
    "EVENT_APP",
    "EVENT_VERSION",
    "EntityKind",
    "EventID",
    "EventMessage",
    "EventSent",
    "EventType",
    "FetchPage",
    "FetchState",
    "FromPayload",
    "ItemKind",
    "OutboxEvent",
    "OutboxEventStatus",
    "OutboxEventType",
    "PSPAccount",
    "PSPBalance",
    "PSPExternalAccount",
    "PSPItem",
    "PSPOther",
    "PSPPayment",
    "PaymentStatus",
    "PaymentType",
    "TaskNode",
    "TaskTree",
    "TaskType",
    "WebhookConfig",
    "stored_item_id",
]
