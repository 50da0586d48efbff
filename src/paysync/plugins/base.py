"""Plugin contract implemented by every provider integration.

A plugin is a pure function of (from payload, cursor state, page size) to a
page of items plus the next cursor state. It never touches storage; the
scheduler owns persistence and checkpoints.
"""

from typing import Any, Protocol

from paysync.errors import UnimplementedError
from paysync.models import (
    ConnectorID,
    FetchPage,
    FromPayload,
    PSPAccount,
    PSPBalance,
    PSPExternalAccount,
    PSPOther,
    PSPPayment,
    TaskTree,
    WebhookConfig,
)


class Plugin(Protocol):
    """Operations a provider integration exposes to the scheduler."""

    @property
    def name(self) -> str: ...

    def install(self, connector_id: ConnectorID) -> TaskTree: ...

    def uninstall(
        self, connector_id: ConnectorID, webhook_configs: list[WebhookConfig]
    ) -> None: ...

    def fetch_next_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPAccount]: ...

    def fetch_next_balances(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPBalance]: ...

    def fetch_next_external_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPExternalAccount]: ...

    def fetch_next_payments(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPPayment]: ...

    def fetch_next_others(
        self, name: str, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPOther]: ...

    def create_webhooks(
        self, connector_id: ConnectorID, from_payload: FromPayload | None
    ) -> list[WebhookConfig]: ...


class BasePlugin:
    """Plugin whose every operation is unsupported.

    Providers subclass it and override only what they implement; the rest
    surfaces as a non-retryable UNIMPLEMENTED error.
    """

    def __init__(self, name: str):
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def install(self, connector_id: ConnectorID) -> TaskTree:
        raise UnimplementedError("install is not implemented")

    def uninstall(
        self, connector_id: ConnectorID, webhook_configs: list[WebhookConfig]
    ) -> None:
        raise UnimplementedError("uninstall is not implemented")

    def fetch_next_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPAccount]:
        raise UnimplementedError("fetch_next_accounts is not implemented")

    def fetch_next_balances(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPBalance]:
        raise UnimplementedError("fetch_next_balances is not implemented")

    def fetch_next_external_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPExternalAccount]:
        raise UnimplementedError("fetch_next_external_accounts is not implemented")

    def fetch_next_payments(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPPayment]:
        raise UnimplementedError("fetch_next_payments is not implemented")

    def fetch_next_others(
        self, name: str, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPOther]:
        raise UnimplementedError("fetch_next_others is not implemented")

    def create_webhooks(
        self, connector_id: ConnectorID, from_payload: FromPayload | None
    ) -> list[WebhookConfig]:
        raise UnimplementedError("create_webhooks is not implemented")
