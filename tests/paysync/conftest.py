"""Shared pytest fixtures for PaySync tests.

Provides profile cleanup, a DuckDB storage in a temporary directory, a
scripted fake plugin and a recording bus publisher.
"""

import json
from collections.abc import Generator, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from paysync.config import clear_settings_cache, set_current_profile
from paysync.engine import LocalStepRunner, RetryPolicy, Scheduler
from paysync.errors import TransientError
from paysync.models import (
    Connector,
    ConnectorID,
    EventMessage,
    FetchPage,
    FromPayload,
    PSPAccount,
    PSPBalance,
    PSPExternalAccount,
    PSPItem,
    PSPOther,
    PSPPayment,
    TaskTree,
    WebhookConfig,
)
from paysync.plugins import BasePlugin, PluginWrapper
from paysync.storage import DuckDBStorage

BASE_TIME = datetime(2025, 1, 1, tzinfo=UTC)


def make_accounts(prefix: str, count: int, start: int = 0) -> list[PSPAccount]:
    """Build `count` accounts with references `{prefix}-{n}`."""
    return [
        PSPAccount(
            reference=f"{prefix}-{n}",
            created_at=BASE_TIME + timedelta(minutes=n),
            name=f"Account {n}",
            default_asset="EUR/2",
        )
        for n in range(start, start + count)
    ]


def make_balance(account_reference: str, amount: int) -> PSPBalance:
    return PSPBalance(
        account_reference=account_reference,
        asset="EUR/2",
        amount=amount,
        created_at=BASE_TIME,
    )


class FakePlugin(BasePlugin):
    """Plugin serving scripted pages.

    Pages are keyed by fetch kind ("accounts", "balances", ...), and for child
    tasks by `"{kind}:{parent reference}"`. The cursor state is
    `{"page": n}`; every call is recorded in `calls`. `deletions` uses the
    same keys and lists the payment references removed on each page.
    """

    def __init__(self, tree: TaskTree = (), pages: dict[str, list[list[PSPItem]]] | None = None):
        super().__init__("fake")
        self.tree = tree
        self.pages = pages or {}
        self.deletions: dict[str, list[list[str]]] = {}
        self.calls: list[tuple[str, str | None, Any]] = []
        self.failures: dict[tuple[str, int], Exception] = {}
        self.webhooks: list[WebhookConfig] = []
        self.uninstalled = False

    def fail_once(self, key: str, page: int, error: Exception) -> None:
        """Raise `error` the next time page `page` (0-based) of `key` is fetched."""
        self.failures[(key, page)] = error

    def _fetch(self, kind: str, from_payload: FromPayload | None, state: Any) -> FetchPage[Any]:
        key = kind
        if from_payload is not None:
            key = f"{kind}:{from_payload.payload['reference']}"
        self.calls.append((key, from_payload.id if from_payload else None, state))

        index = state["page"] if state else 0
        error = self.failures.pop((key, index), None)
        if error is not None:
            raise error

        pages = self.pages.get(key, [])
        items = pages[index] if index < len(pages) else []
        deletions = self.deletions.get(key, [])
        return FetchPage(
            items=list(items),
            new_state={"page": index + 1},
            has_more=index + 1 < len(pages),
            payments_to_delete=list(deletions[index]) if index < len(deletions) else [],
        )

    def install(self, connector_id: ConnectorID) -> TaskTree:
        return self.tree

    def uninstall(self, connector_id: ConnectorID, webhook_configs: list[WebhookConfig]) -> None:
        self.uninstalled = True

    def fetch_next_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPAccount]:
        return self._fetch("accounts", from_payload, state)

    def fetch_next_balances(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPBalance]:
        return self._fetch("balances", from_payload, state)

    def fetch_next_external_accounts(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPExternalAccount]:
        return self._fetch("external_accounts", from_payload, state)

    def fetch_next_payments(
        self, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPPayment]:
        return self._fetch("payments", from_payload, state)

    def fetch_next_others(
        self, name: str, from_payload: FromPayload | None, state: Any, page_size: int
    ) -> FetchPage[PSPOther]:
        return self._fetch(f"others[{name}]", from_payload, state)

    def create_webhooks(
        self, connector_id: ConnectorID, from_payload: FromPayload | None
    ) -> list[WebhookConfig]:
        return self.webhooks


class RecordingPublisher:
    """Bus publisher keeping every accepted message in memory."""

    def __init__(self) -> None:
        self.messages: list[EventMessage] = []
        self.failing_keys: set[str] = set()

    def publish(self, message: EventMessage) -> None:
        if message.idempotency_key in self.failing_keys:
            raise TransientError(f"bus unavailable for {message.idempotency_key}")
        self.messages.append(message)

    @property
    def keys(self) -> list[str]:
        return [m.idempotency_key for m in self.messages]


def no_retry_runner() -> LocalStepRunner:
    return LocalStepRunner(retry_policy=RetryPolicy(maximum_attempts=1))


def install_fake_connector(storage: DuckDBStorage, tree: TaskTree) -> Connector:
    connector = Connector(
        id=ConnectorID(provider="fake"),
        name="fake",
        created_at=BASE_TIME,
        task_tree=tree,
    )
    storage.install_connector(connector)
    return connector


def build_scheduler(
    storage: DuckDBStorage,
    connector: Connector,
    plugin: FakePlugin,
    page_size: int = 2,
    **kwargs: Any,
) -> Scheduler:
    kwargs.setdefault("step_runner", no_retry_runner())
    return Scheduler(
        connector,
        PluginWrapper("fake", plugin),
        storage,
        page_size=page_size,
        **kwargs,
    )


def references(rows: Sequence[dict[str, Any]]) -> list[str]:
    return sorted(row["reference"] for row in rows)


@pytest.fixture(autouse=True)
def clean_profile_state() -> Generator[None, None, None]:
    """Reset the settings cache and the current profile around every test."""
    clear_settings_cache()
    set_current_profile("test")

    yield

    clear_settings_cache()
    set_current_profile("test")


@pytest.fixture
def storage(tmp_path: Path) -> Generator[DuckDBStorage, None, None]:
    """DuckDB storage in a temporary database file."""
    store = DuckDBStorage(tmp_path / "paysync.duckdb")
    yield store
    store.close()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every configured path into tmp_path and disable file logging."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PAYSYNC_DATABASE__PATH", str(tmp_path / "db" / "paysync.duckdb"))
    monkeypatch.setenv("PAYSYNC_EVENTS__FILE_PATH", str(tmp_path / "events" / "events.jsonl"))
    monkeypatch.setenv("PAYSYNC_LOGGING__LOG_TO_FILE", "false")
    monkeypatch.setenv("PAYSYNC_RETRY__MAXIMUM_ATTEMPTS", "1")
    monkeypatch.setenv("LOG_TO_FILE", "false")
    return tmp_path


@pytest.fixture
def dummypay_dir(tmp_path: Path) -> Path:
    """Dummypay directory with three accounts, two balances and five payments."""
    directory = tmp_path / "dummypay"
    directory.mkdir()
    accounts = [
        {
            "id": f"acc-{n}",
            "name": f"Account {n}",
            "currency": "EUR/2",
            "opening_date": f"2025-01-0{n + 1}T00:00:00Z",
        }
        for n in range(3)
    ]
    balances = [
        {"account_id": "acc-0", "amount_in_minors": 1000, "currency": "EUR/2"},
        {"account_id": "acc-2", "amount_in_minors": 250, "currency": "EUR/2"},
    ]
    payments = [
        {
            "id": f"pay-{n}",
            "created_at": "2025-02-01T00:00:00Z",
            "amount_in_minors": 100 * n,
            "currency": "EUR/2",
            "type": "PAY-IN",
            "status": "SUCCEEDED",
        }
        for n in range(5)
    ]
    (directory / "accounts.json").write_text(json.dumps(accounts))
    (directory / "balances.json").write_text(json.dumps(balances))
    (directory / "payments.json").write_text(json.dumps(payments))
    return directory
