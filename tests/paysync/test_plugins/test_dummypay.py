# ruff: noqa: S101
"""Tests for the file-backed dummypay provider."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import install_fake_connector

from paysync.engine import LocalStepRunner, RetryPolicy, Scheduler
from paysync.errors import InvalidArgumentError
from paysync.models import ConnectorID, FromPayload, ItemKind, PaymentType, TaskType
from paysync.plugins import create_plugin, get_plugin_spec, list_providers
from paysync.storage import DuckDBStorage


class TestDummyPayPlugin:
    """Plugin operations."""

    @pytest.mark.unit
    def test_registered(self) -> None:
        assert "dummypay" in list_providers()
        assert get_plugin_spec("DummyPay").page_size == 25

    @pytest.mark.unit
    def test_install_declares_tree(self, dummypay_dir: Path) -> None:
        plugin = create_plugin("dummypay", "dev", {"directory": str(dummypay_dir)})

        tree = plugin.install(ConnectorID(provider="dummypay"))

        assert [node.task_type for node in tree] == [
            TaskType.FETCH_ACCOUNTS,
            TaskType.FETCH_EXTERNAL_ACCOUNTS,
            TaskType.FETCH_PAYMENTS,
        ]
        assert tree[0].children[0].task_type is TaskType.FETCH_BALANCES

    @pytest.mark.unit
    def test_invalid_config(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidArgumentError):
            create_plugin("dummypay", "dev", {"directory": str(tmp_path / "missing")})
        with pytest.raises(InvalidArgumentError):
            create_plugin("dummypay", "dev", {"directory": str(tmp_path), "extra": 1})

    @pytest.mark.unit
    def test_pages_follow_offset_cursor(self, dummypay_dir: Path) -> None:
        plugin = create_plugin("dummypay", "dev", {"directory": str(dummypay_dir)})

        first = plugin.fetch_next_payments(None, None, 2)
        last = plugin.fetch_next_payments(None, {"offset": 4}, 2)

        assert [p.reference for p in first.items] == ["pay-0", "pay-1"]
        assert first.new_state == {"offset": 2}
        assert first.has_more
        assert [p.reference for p in last.items] == ["pay-4"]
        assert not last.has_more
        assert first.items[0].type is PaymentType.PAY_IN

    @pytest.mark.unit
    def test_balances_require_parent_account(self, dummypay_dir: Path) -> None:
        plugin = create_plugin("dummypay", "dev", {"directory": str(dummypay_dir)})

        with pytest.raises(InvalidArgumentError):
            plugin.fetch_next_balances(None, None, 10)

        page = plugin.fetch_next_balances(
            FromPayload(id="FETCH_ACCOUNTS/acc-0", payload={"reference": "acc-0"}), None, 10
        )
        assert [b.amount for b in page.items] == [1000]

    @pytest.mark.unit
    def test_missing_file_is_empty(self, dummypay_dir: Path) -> None:
        plugin = create_plugin("dummypay", "dev", {"directory": str(dummypay_dir)})

        page = plugin.fetch_next_external_accounts(None, None, 10)

        assert page.items == []
        assert not page.has_more

    @pytest.mark.unit
    def test_malformed_file(self, dummypay_dir: Path) -> None:
        (dummypay_dir / "accounts.json").write_text("{broken")
        plugin = create_plugin("dummypay", "dev", {"directory": str(dummypay_dir)})

        with pytest.raises(InvalidArgumentError):
            plugin.fetch_next_accounts(None, None, 10)


class TestDummyPaySync:
    """Full cycle through the scheduler."""

    @pytest.mark.integration
    def test_full_cycle(self, dummypay_dir: Path, storage: DuckDBStorage) -> None:
        plugin = create_plugin("dummypay", "dev", {"directory": str(dummypay_dir)})
        connector = install_fake_connector(
            storage, plugin.install(ConnectorID(provider="dummypay"))
        )
        scheduler = Scheduler(
            connector,
            plugin,
            storage,
            page_size=2,
            step_runner=LocalStepRunner(retry_policy=RetryPolicy(maximum_attempts=1)),
        )

        stats = scheduler.run_cycle()

        assert storage.count_items(ItemKind.ACCOUNT, connector.id) == 3
        assert storage.count_items(ItemKind.BALANCE, connector.id) == 2
        assert storage.count_items(ItemKind.PAYMENT, connector.id) == 5
        assert stats.items["payments"] == 5
        # 2 account pages, 3 balance tasks, 1 external page, 3 payment pages
        assert stats.pages == 9
