"""Provider (PSP) item schemas returned by connector plugins.

Every item carries a provider-assigned `reference`. The reference is the
dedup key within a page, the seed of the stored row id and the seed of the
payload handed to child tasks.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar
from uuid import NAMESPACE_URL, uuid5

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ItemKind(str, Enum):
    """Kinds of fetched items, valued by their storage table."""

    ACCOUNT = "accounts"
    BALANCE = "balances"
    EXTERNAL_ACCOUNT = "external_accounts"
    PAYMENT = "payments"
    OTHER = "others"


class PaymentType(str, Enum):
    PAY_IN = "PAY-IN"
    PAYOUT = "PAYOUT"
    TRANSFER = "TRANSFER"
    OTHER = "OTHER"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"
    OTHER = "OTHER"


def stored_item_id(connector_id: object, kind: ItemKind, reference: str) -> str:
    return str(uuid5(NAMESPACE_URL, f"{connector_id}/{kind.value}/{reference}"))


class PSPItem(BaseModel):
    """Base schema shared by every fetched item."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ClassVar[ItemKind]

    reference: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, str] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)

    def stored_id(self, connector_id: object) -> str:
        """Deterministic row id of this item for one connector."""
        return stored_item_id(connector_id, self.kind, self.reference)

    def idempotency_key(self, connector_id: object) -> str:
        """Content hash of the stored row.

        Re-saving identical data yields the same key, so the event ledger
        suppresses the duplicate; a changed row yields a new event. A
        `created_at` the provider did not supply is left out of the hash.
        """
        exclude = None if "created_at" in self.model_fields_set else {"created_at"}
        body = json.dumps(
            {
                "connector_id": str(connector_id),
                "kind": self.kind.value,
                "item": self.model_dump(mode="json", exclude=exclude),
            },
            sort_keys=True,
        )
        return hashlib.sha256(body.encode()).hexdigest()


class PSPAccount(PSPItem):
    kind: ClassVar[ItemKind] = ItemKind.ACCOUNT

    name: str | None = None
    default_asset: str | None = None


class PSPExternalAccount(PSPAccount):
    """Counterparty (bank) account; same shape as an internal account."""

    kind: ClassVar[ItemKind] = ItemKind.EXTERNAL_ACCOUNT


class PSPBalance(PSPItem):
    """Balance snapshot of one account in one asset.

    Amounts are integers in the asset's minor units.
    """

    kind: ClassVar[ItemKind] = ItemKind.BALANCE

    account_reference: str = Field(..., min_length=1)
    asset: str = Field(..., min_length=1)
    amount: int

    @model_validator(mode="before")
    @classmethod
    def default_reference(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("reference"):
            created_at = data.get("created_at")
            stamp = created_at.isoformat() if isinstance(created_at, datetime) else created_at
            data = {
                **data,
                "reference": f"{data.get('account_reference')}/{data.get('asset')}/{stamp or 'latest'}",
            }
        return data


class PSPPayment(PSPItem):
    kind: ClassVar[ItemKind] = ItemKind.PAYMENT

    type: PaymentType = PaymentType.OTHER
    status: PaymentStatus = PaymentStatus.OTHER
    amount: int
    asset: str = Field(..., min_length=1)
    scheme: str = "OTHER"
    source_account_reference: str | None = None
    destination_account_reference: str | None = None


class PSPOther(PSPItem):
    """Provider-specific entity fetched by a named FETCH_OTHERS task."""

    kind: ClassVar[ItemKind] = ItemKind.OTHER

    other: dict[str, Any] = Field(default_factory=dict)


class WebhookConfig(BaseModel):
    """Webhook endpoint registered with the provider by CREATE_WEBHOOKS."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    url_path: str = Field(..., min_length=1)
    metadata: dict[str, str] = Field(default_factory=dict)


ItemT = TypeVar("ItemT", bound=PSPItem)


@dataclass
class FetchPage(Generic[ItemT]):
    """One page returned by a plugin `fetch_next_*` call.

    `payments_to_delete` lists references of payments the provider no longer
    has; only payment fetches set it.
    """

    items: list[ItemT] = field(default_factory=list)
    new_state: Any = None
    has_more: bool = False
    payments_to_delete: list[str] = field(default_factory=list)
