"""File-backed development provider.

Reads JSON files from a directory so the scheduler can be exercised without
network access:

- ``accounts.json``: ``[{"id", "name", "currency", "opening_date"}]``
- ``balances.json``: ``[{"account_id", "amount_in_minors", "currency"}]``
- ``external_accounts.json``: same shape as ``accounts.json``
- ``payments.json``: ``[{"id", "created_at", "amount_in_minors", "currency",
  "type", "status", "source_account_id", "destination_account_id"}]``

Cursor state is ``{"offset": n}``. Missing files behave as empty.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from paysync.errors import InvalidArgumentError
from paysync.models import (
    ConnectorID,
    FetchPage,
    FromPayload,
    PaymentStatus,
    PaymentType,
    PSPAccount,
    PSPBalance,
    PSPExternalAccount,
    PSPPayment,
    TaskNode,
    TaskTree,
    TaskType,
    WebhookConfig,
)

from .base import BasePlugin
from .registry import register_plugin

logger = logging.getLogger(__name__)

PROVIDER = "dummypay"
PAGE_SIZE = 25


class DummyPayConfig(BaseModel):
    """Connector configuration for dummypay."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    directory: Path = Field(..., description="Directory holding the JSON files")

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, v: Path) -> Path:
        if not v.is_dir():
            raise ValueError(f"directory does not exist: {v}")
        return v


class DummyPayPlugin(BasePlugin):
    """Paginates over the JSON files of one directory."""

    def __init__(self, name: str, config: DummyPayConfig):
        super().__init__(name)
        self.config = config

    @classmethod
    def from_config(cls, name: str, raw_config: dict[str, Any]) -> "DummyPayPlugin":
        try:
            config = DummyPayConfig.model_validate(raw_config)
        except ValueError as e:
            raise InvalidArgumentError(f"invalid dummypay config: {e}") from e
        return cls(name, config)

    def install(self, connector_id: ConnectorID) -> TaskTree:
        logger.info(f"Installing dummypay connector {connector_id}")
        return (
            TaskNode(
                task_type=TaskType.FETCH_ACCOUNTS,
                children=(TaskNode(task_type=TaskType.FETCH_BALANCES),),
            ),
            TaskNode(task_type=TaskType.FETCH_EXTERNAL_ACCOUNTS),
            TaskNode(task_type=TaskType.FETCH_PAYMENTS),
        )

    def uninstall(
        self, connector_id: ConnectorID, webhook_configs: list[WebhookConfig]
    ) -> None:
        logger.info(f"Uninstalling dummypay connector {connector_id}")

    def fetch_next_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPAccount]:
        rows, new_state, has_more = self._page("accounts.json", state, page_size)
        return FetchPage(
            items=[self._account(PSPAccount, row) for row in rows],
            new_state=new_state,
            has_more=has_more,
        )

    def fetch_next_external_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPExternalAccount]:
        rows, new_state, has_more = self._page("external_accounts.json", state, page_size)
        return FetchPage(
            items=[self._account(PSPExternalAccount, row) for row in rows],
            new_state=new_state,
            has_more=has_more,
        )

    def fetch_next_balances(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPBalance]:
        if from_payload is None:
            raise InvalidArgumentError("fetch_next_balances requires a parent account")

        account_reference = from_payload.payload["reference"]
        now = datetime.now(UTC).replace(microsecond=0)
        balances = [
            PSPBalance(
                account_reference=row["account_id"],
                asset=row["currency"],
                amount=int(row["amount_in_minors"]),
                created_at=now,
            )
            for row in self._read("balances.json")
            if row.get("account_id") == account_reference
        ]
        return FetchPage(items=balances, new_state={}, has_more=False)

    def fetch_next_payments(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPPayment]:
        rows, new_state, has_more = self._page("payments.json", state, page_size)
        payments = [
            PSPPayment(
                reference=row["id"],
                created_at=row["created_at"],
                amount=int(row["amount_in_minors"]),
                asset=row["currency"],
                type=PaymentType(row.get("type", PaymentType.OTHER.value)),
                status=PaymentStatus(row.get("status", PaymentStatus.OTHER.value)),
                source_account_reference=row.get("source_account_id"),
                destination_account_reference=row.get("destination_account_id"),
                raw=row,
            )
            for row in rows
        ]
        return FetchPage(items=payments, new_state=new_state, has_more=has_more)

    @staticmethod
    def _account(model: type[PSPAccount], row: dict[str, Any]) -> Any:
        return model(
            reference=row["id"],
            created_at=row["opening_date"],
            name=row.get("name"),
            default_asset=row.get("currency"),
            raw=row,
        )

    def _page(
        self, filename: str, state: Any, page_size: int
    ) -> tuple[list[dict[str, Any]], dict[str, int], bool]:
        offset = int((state or {}).get("offset", 0))
        rows = self._read(filename)
        page = rows[offset : offset + page_size]
        next_offset = offset + len(page)
        return page, {"offset": next_offset}, next_offset < len(rows)

    def _read(self, filename: str) -> list[dict[str, Any]]:
        path = self.config.directory / filename
        if not path.exists():
            return []
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            return []
        try:
            rows = json.loads(content)
        except json.JSONDecodeError as e:
            raise InvalidArgumentError(f"failed to decode {filename}: {e}") from e
        if not isinstance(rows, list):
            raise InvalidArgumentError(f"{filename} must contain a JSON list")
        return rows


register_plugin(PROVIDER, DummyPayPlugin.from_config, page_size=PAGE_SIZE)
