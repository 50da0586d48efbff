# ruff: noqa: S101
"""Tests for the PaySync CLI.

Commands run end to end against a DuckDB file and an events file inside the
test's temporary directory, with the file-backed dummypay provider.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from paysync.cli.commands._common import describe_failure
from paysync.cli.main import app
from paysync.config import get_current_profile
from paysync.errors import FailedPreconditionError, TransientError
from paysync.models import ConnectorID


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def install_dummypay(runner: CliRunner, directory: Path) -> str:
    result = runner.invoke(
        app,
        ["connectors", "install", "dummypay", "--config", json.dumps({"directory": str(directory)})],
    )
    assert result.exit_code == 0, result.output
    return next(line for line in result.stdout.splitlines() if line.startswith("dummypay:"))


def read_events(isolated_env: Path) -> list[dict[str, object]]:
    path = isolated_env / "events" / "events.jsonl"
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestGlobalOptions:
    """Profile and help handling."""

    @pytest.mark.unit
    def test_profile_flag(self, runner: CliRunner, isolated_env: Path) -> None:
        result = runner.invoke(app, ["-p", "alice", "connectors", "providers"])

        assert result.exit_code == 0
        assert get_current_profile() == "alice"
        assert "dummypay" in result.stdout

    @pytest.mark.unit
    def test_invalid_profile(self, runner: CliRunner, isolated_env: Path) -> None:
        result = runner.invoke(app, ["--profile=bad profile", "connectors", "providers"])

        assert result.exit_code != 0


class TestConnectorCommands:
    """Connector install, list, reset and uninstall."""

    @pytest.mark.unit
    def test_install_and_list(
        self, runner: CliRunner, isolated_env: Path, dummypay_dir: Path
    ) -> None:
        connector_id = install_dummypay(runner, dummypay_dir)

        result = runner.invoke(app, ["connectors", "list"])

        assert result.exit_code == 0
        assert ConnectorID.parse(connector_id).provider == "dummypay"
        assert connector_id in result.stdout

    @pytest.mark.unit
    def test_install_from_config_file(
        self, runner: CliRunner, isolated_env: Path, dummypay_dir: Path
    ) -> None:
        config_file = isolated_env / "dummypay.json"
        config_file.write_text(json.dumps({"directory": str(dummypay_dir)}))

        result = runner.invoke(
            app, ["connectors", "install", "dummypay", "--config-file", str(config_file)]
        )

        assert result.exit_code == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("config", ["{not json", "[1, 2]"])
    def test_install_rejects_bad_config(
        self, runner: CliRunner, isolated_env: Path, config: str
    ) -> None:
        result = runner.invoke(app, ["connectors", "install", "dummypay", "--config", config])

        assert result.exit_code == 2

    @pytest.mark.unit
    def test_install_unknown_provider(self, runner: CliRunner, isolated_env: Path) -> None:
        result = runner.invoke(app, ["connectors", "install", "nope"])

        assert result.exit_code == 1

    @pytest.mark.unit
    def test_reset_and_uninstall(
        self, runner: CliRunner, isolated_env: Path, dummypay_dir: Path
    ) -> None:
        connector_id = install_dummypay(runner, dummypay_dir)
        assert runner.invoke(app, ["sync", "run", connector_id]).exit_code == 0

        assert runner.invoke(app, ["connectors", "reset", connector_id]).exit_code == 0

        result = runner.invoke(app, ["connectors", "uninstall", connector_id, "--yes"])
        assert result.exit_code == 0
        assert "(none)" in runner.invoke(app, ["connectors", "list"]).stdout

    @pytest.mark.unit
    def test_uninstall_asks_for_confirmation(
        self, runner: CliRunner, isolated_env: Path, dummypay_dir: Path
    ) -> None:
        connector_id = install_dummypay(runner, dummypay_dir)

        result = runner.invoke(app, ["connectors", "uninstall", connector_id], input="n\n")

        assert result.exit_code == 1
        assert connector_id in runner.invoke(app, ["connectors", "list"]).stdout

    @pytest.mark.unit
    def test_unknown_connector(
        self, runner: CliRunner, isolated_env: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        missing = str(ConnectorID(provider="dummypay"))

        assert runner.invoke(app, ["connectors", "reset", missing]).exit_code == 1
        assert f"NOT_FOUND: connector {missing} not found" in caplog.text
        assert runner.invoke(app, ["connectors", "reset", "not-an-id"]).exit_code == 2


class TestSyncAndOutbox:
    """Sync cycles followed by outbox delivery."""

    @pytest.mark.integration
    def test_sync_then_publish(
        self, runner: CliRunner, isolated_env: Path, dummypay_dir: Path
    ) -> None:
        install_dummypay(runner, dummypay_dir)

        sync = runner.invoke(app, ["sync", "run", "--all"])
        assert sync.exit_code == 0, sync.output

        publish = runner.invoke(app, ["outbox", "publish", "--drain"])
        assert publish.exit_code == 0
        assert "published=10 failed=0" in publish.stdout

        events = read_events(isolated_env)
        assert len(events) == 10
        assert {e["type"] for e in events} == {
            "SAVED_ACCOUNT",
            "SAVED_BALANCE",
            "SAVED_PAYMENT",
        }

        again = runner.invoke(app, ["outbox", "publish"])
        assert "published=0 failed=0" in again.stdout

    @pytest.mark.unit
    def test_sync_requires_target(self, runner: CliRunner, isolated_env: Path) -> None:
        assert runner.invoke(app, ["sync", "run"]).exit_code == 2

    @pytest.mark.unit
    def test_failed_connector_exits_non_zero(
        self, runner: CliRunner, isolated_env: Path, dummypay_dir: Path
    ) -> None:
        install_dummypay(runner, dummypay_dir)
        (dummypay_dir / "payments.json").write_text("{broken")

        result = runner.invoke(app, ["sync", "run", "--all"])

        assert result.exit_code == 1

    @pytest.mark.unit
    def test_cleanup_and_dead_letters(self, runner: CliRunner, isolated_env: Path) -> None:
        cleanup = runner.invoke(app, ["outbox", "cleanup", "--days", "1"])
        dead = runner.invoke(app, ["outbox", "dead-letters"])

        assert cleanup.exit_code == 0
        assert "deleted=0" in cleanup.stdout
        assert dead.exit_code == 0
        assert "(none)" in dead.stdout


class TestWorker:
    """Local worker loop."""

    @pytest.mark.integration
    def test_single_iteration_syncs_and_publishes(
        self, runner: CliRunner, isolated_env: Path, dummypay_dir: Path
    ) -> None:
        install_dummypay(runner, dummypay_dir)

        result = runner.invoke(app, ["worker", "run", "--once"])

        assert result.exit_code == 0, result.output
        # The outbox is polled before the first sync of the iteration
        assert read_events(isolated_env) == []

        assert runner.invoke(app, ["outbox", "publish"]).exit_code == 0
        assert len(read_events(isolated_env)) == 10


class TestDescribeFailure:
    """Failure lines shown to operators."""

    @pytest.mark.unit
    def test_terminal_failure_shows_reason(self) -> None:
        error = FailedPreconditionError("deleting", reason="CONNECTOR_SCHEDULED_FOR_DELETION")

        assert describe_failure(error) == "CONNECTOR_SCHEDULED_FOR_DELETION: deleting"

    @pytest.mark.unit
    def test_transient_failure_suggests_rerun(self) -> None:
        line = describe_failure(TransientError("step timed out", reason="TIMEOUT"))

        assert line == "TIMEOUT: step timed out (transient, re-run to resume)"
