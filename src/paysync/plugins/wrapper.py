"""Boundary between provider code and the core.

Every plugin call is logged, and any exception a provider raises is
converted into a `PaySyncError` so the core only ever sees classified
errors.
"""

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from paysync.errors import PaySyncError, to_paysync_error
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

from .base import Plugin

logger = logging.getLogger(__name__)

T = TypeVar("T")


def translate_error(exc: Exception) -> PaySyncError:
    """Convert a provider exception into a classified error.

    Uses the shared `classify` mapping, so a provider error and the same
    error raised by a bus publisher always get the same kind.
    """
    return to_paysync_error(exc)


class PluginWrapper:
    """Plugin proxy adding call logging and error translation."""

    def __init__(self, provider: str, plugin: Plugin):
        self.provider = provider
        self.plugin = plugin

    @classmethod
    def build(cls, provider: str, factory: Callable[[], Plugin]) -> "PluginWrapper":
        """Run a plugin factory, translating configuration errors."""
        try:
            plugin = factory()
        except Exception as e:
            raise translate_error(e) from e
        return cls(provider, plugin)

    @property
    def name(self) -> str:
        return self.plugin.name

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        logger.debug(f"{self.provider}: {operation}")
        try:
            return fn()
        except Exception as e:
            error = translate_error(e)
            logger.debug(f"{self.provider}: {operation} failed: {error.reason}: {error}")
            if error is e:
                raise
            raise error from e

    def install(self, connector_id: ConnectorID) -> TaskTree:
        return self._call("install", lambda: self.plugin.install(connector_id))

    def uninstall(
        self, connector_id: ConnectorID, webhook_configs: list[WebhookConfig]
    ) -> None:
        self._call("uninstall", lambda: self.plugin.uninstall(connector_id, webhook_configs))

    def fetch_next_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPAccount]:
        return self._call(
            "fetch_next_accounts",
            lambda: self.plugin.fetch_next_accounts(from_payload, state, page_size),
        )

    def fetch_next_balances(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPBalance]:
        return self._call(
            "fetch_next_balances",
            lambda: self.plugin.fetch_next_balances(from_payload, state, page_size),
        )

    def fetch_next_external_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPExternalAccount]:
        return self._call(
            "fetch_next_external_accounts",
            lambda: self.plugin.fetch_next_external_accounts(from_payload, state, page_size),
        )

    def fetch_next_payments(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPPayment]:
        return self._call(
            "fetch_next_payments",
            lambda: self.plugin.fetch_next_payments(from_payload, state, page_size),
        )

    def fetch_next_others(
        self, name: str, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPOther]:
        return self._call(
            f"fetch_next_others[{name}]",
            lambda: self.plugin.fetch_next_others(name, from_payload, state, page_size),
        )

    def create_webhooks(
        self, connector_id: ConnectorID, from_payload: FromPayload | None
    ) -> list[WebhookConfig]:
        return self._call(
            "create_webhooks",
            lambda: self.plugin.create_webhooks(connector_id, from_payload),
        )
