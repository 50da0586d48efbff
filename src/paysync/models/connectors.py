"""Connector identity and persisted connector records."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from .tasks import TaskTree


class EntityKind(str, Enum):
    """Per-connector record sets purged when a connector is decommissioned.

    Values are storage table names. Order matters: dependent records first.
    """

    BALANCES = "balances"
    PAYMENTS = "payments"
    ACCOUNTS = "accounts"
    EXTERNAL_ACCOUNTS = "external_accounts"
    OTHERS = "others"
    STATES = "states"
    WEBHOOK_CONFIGS = "webhook_configs"
    OUTBOX_EVENTS = "outbox_events"
    EVENTS_SENT = "events_sent"


class ConnectorID(BaseModel):
    """A configured instance of a provider integration."""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(..., min_length=1)
    reference: UUID = Field(default_factory=uuid4)

    def __str__(self) -> str:
        return f"{self.provider}:{self.reference}"

    @classmethod
    def parse(cls, value: str) -> "ConnectorID":
        """Parse the `provider:reference` string form.

        Raises:
            ValueError: If the string is not a valid connector id
        """
        provider, sep, reference = value.rpartition(":")
        if not sep or not provider:
            raise ValueError(f"invalid connector id: {value!r}")
        return cls(provider=provider, reference=UUID(reference))


class Connector(BaseModel):
    """Installed connector with the task tree returned by its plugin."""

    model_config = ConfigDict(frozen=True)

    id: ConnectorID
    name: str
    config: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    scheduled_for_deletion: bool = False
    task_tree: TaskTree = ()

    @property
    def provider(self) -> str:
        return self.id.provider
