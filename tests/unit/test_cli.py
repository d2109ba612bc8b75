"""Tests for the click-based CLI."""

import json
import logging
import signal
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from repo_migrator.cli.commands import cli
from repo_migrator.cli.common import handle_exception, stop_on_interrupt
from repo_migrator.core.health import HealthMonitor
from repo_migrator.exceptions import (
    AuthenticationError,
    ConfigurationError,
    InventoryError,
    MigrationAbortedError,
)
from repo_migrator.types import ItemOutcome, StatusSnapshot


@pytest.fixture(autouse=True)
def _drop_handlers():
    """setup_logger binds stream handlers to the runner's streams; drop them."""
    yield
    logger = logging.getLogger("repo_migrator")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture()
def workspace(tmp_path, monkeypatch):
    """A working directory with a config file and a two-repository inventory."""
    monkeypatch.chdir(tmp_path)
    config = {
        "batch": {"batch_size": 2, "retry_count": 1, "batch_delay": 0, "retry_delay": 0},
        "health": {"network_targets": []},
        "alerting": {"channels": {"console": {"enabled": False}}},
        "state": {"output_dir": "state"},
    }
    (tmp_path / "config.yaml").write_text(yaml.safe_dump(config))
    (tmp_path / "repos.csv").write_text(
        "id,source,target\n"
        "api,contoso/Platform/api,contoso-gh/api\n"
        "web,contoso/Platform/web,contoso-gh/web\n"
    )
    return tmp_path


class FakeTool:
    """Stands in for MigrationTool; fails the ids listed in ``failing``."""

    failing: set = set()
    calls: list = []

    def __init__(self, config, dry_run=False):
        self.dry_run = dry_run

    def __call__(self, item):
        FakeTool.calls.append(item.id)
        if item.id in FakeTool.failing:
            return ItemOutcome.failure("exit code 1: repository exists")
        return ItemOutcome(success=True, exit_code=0)


@pytest.fixture()
def fake_tool():
    FakeTool.failing = set()
    FakeTool.calls = []
    with patch("repo_migrator.cli.migrate_cmd.MigrationTool", FakeTool):
        yield FakeTool


def _report(workspace):
    reports = list(workspace.glob("migration_logs/run_*/migration_report.yaml"))
    assert len(reports) == 1
    return yaml.safe_load(reports[0].read_text())


class TestCLIGroup:
    """Tests for the CLI group structure."""

    def test_cli_has_all_subcommands(self):
        expected = {"migrate", "monitor", "health-check", "test-alert", "init-config"}
        assert set(cli.commands.keys()) == expected

    def test_version_flag(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "repo-migrator" in result.output
        assert "0.1.0" in result.output

    def test_short_help_flag(self):
        result = CliRunner().invoke(cli, ["-h"])
        assert result.exit_code == 0
        assert "migrate" in result.output
        assert "health-check" in result.output

    def test_no_subcommand_shows_help(self):
        result = CliRunner().invoke(cli, [])
        assert result.exit_code == 0
        assert "Usage" in result.output


class TestMigrateCommand:
    """Tests for the migrate subcommand."""

    def test_help_shows_all_options(self):
        result = CliRunner().invoke(cli, ["migrate", "--help"])
        assert result.exit_code == 0
        for opt in ["--inventory", "--config", "--dry_run", "--resume", "--verbose", "--debug_api", "--json_logs"]:
            assert opt in result.output

    def test_missing_inventory_option(self):
        result = CliRunner().invoke(cli, ["migrate"])
        assert result.exit_code != 0
        assert "Missing option" in result.output or "Error" in result.output

    def test_successful_run(self, workspace, fake_tool):
        result = CliRunner().invoke(cli, ["migrate", "--inventory", "repos.csv", "--no_progress"])

        assert result.exit_code == 0, result.output
        assert "MIGRATION RUN SUMMARY" in result.output
        assert sorted(fake_tool.calls) == ["api", "web"]
        report = _report(workspace)
        assert report["classification"] == "OK"
        assert report["summary"]["succeeded"] == 2
        assert [i["status"] for i in report["items"]] == ["Migrated", "Migrated"]
        assert not (workspace / "state" / ".migration_checkpoint.json").exists()
        assert (workspace / "state" / "metrics.jsonl").exists()

    def test_failures_set_exit_code_and_keep_checkpoint(self, workspace, fake_tool):
        fake_tool.failing = {"web"}

        result = CliRunner().invoke(cli, ["migrate", "--inventory", "repos.csv", "--no_progress"])

        # 50% success is below the warning threshold
        assert result.exit_code == 2
        assert fake_tool.calls.count("web") == 2
        checkpoint = json.loads((workspace / "state" / ".migration_checkpoint.json").read_text())
        assert set(checkpoint["completed_items"]) == {"api"}
        assert "web" in checkpoint["failed_items"]

    def test_resume_skips_completed(self, workspace, fake_tool):
        state = workspace / "state"
        state.mkdir()
        (state / ".migration_checkpoint.json").write_text(
            json.dumps({"schema_version": 1, "completed_items": {"api": "2026-01-01T00:00:00+00:00"}})
        )

        result = CliRunner().invoke(
            cli, ["migrate", "--inventory", "repos.csv", "--resume", "--no_progress"]
        )

        assert result.exit_code == 0, result.output
        assert fake_tool.calls == ["web"]
        assert _report(workspace)["summary"]["skipped"] == 1

    def test_authentication_abort(self, workspace, fake_tool):
        def reject(self, item):
            raise AuthenticationError("github returned HTTP 401", 401)

        with patch.object(FakeTool, "__call__", reject):
            result = CliRunner().invoke(cli, ["migrate", "--inventory", "repos.csv", "--no_progress"])

        assert result.exit_code == 2
        assert (workspace / "state" / ".migration_checkpoint.json").exists()

    def test_dry_run_executes_nothing(self, workspace):
        with patch("repo_migrator.services.migration_tool.subprocess.run") as mock_run:
            result = CliRunner().invoke(
                cli, ["migrate", "--inventory", "repos.csv", "--dry_run", "--no_progress"]
            )

        assert result.exit_code == 0, result.output
        assert "DRY RUN SUMMARY" in result.output
        mock_run.assert_not_called()
        assert _report(workspace)["dry_run"] is True
        assert not (workspace / "state" / ".migration_checkpoint.json").exists()
        assert not (workspace / "state" / "metrics.jsonl").exists()

    def test_missing_inventory_file(self, workspace):
        result = CliRunner().invoke(cli, ["migrate", "--inventory", "missing.csv"])
        assert result.exit_code == 2

    def test_invalid_config(self, workspace):
        (workspace / "config.yaml").write_text("batch: {batch_size: 0}\n")
        result = CliRunner().invoke(cli, ["migrate", "--inventory", "repos.csv"])
        assert result.exit_code == 2


class TestMonitorCommand:
    def test_requires_status_endpoint(self, workspace):
        result = CliRunner().invoke(cli, ["monitor", "--once"])
        assert result.exit_code == 2

    def test_single_cycle(self, workspace):
        config = yaml.safe_load((workspace / "config.yaml").read_text())
        config["target"] = {
            "base_url": "https://api.github.com",
            "status_path": "/orgs/contoso/migrations",
        }
        (workspace / "config.yaml").write_text(yaml.safe_dump(config))
        source = MagicMock()
        source.return_value.fetch_counts.return_value = StatusSnapshot(pending=1, migrated=1)

        with patch("repo_migrator.cli.monitor_cmd.MigrationStatusSource", source), patch(
            "repo_migrator.cli.monitor_cmd.build_health_monitor",
            return_value=HealthMonitor([]),
        ):
            result = CliRunner().invoke(cli, ["monitor", "--once", "--inventory", "repos.csv"])

        assert result.exit_code == 0, result.output
        assert "Monitoring stopped (single_cycle) after 1 cycle(s)" in result.output
        assert source.call_args.args[2] == 2
        assert list(workspace.glob("migration_logs/run_*/run_summary.yaml"))


class TestHealthCheckCommand:
    def test_no_dependencies(self, workspace):
        result = CliRunner().invoke(cli, ["health-check"])
        assert result.exit_code == 0
        assert "No dependencies configured." in result.output

    def test_unreachable_network_target(self, workspace):
        (workspace / "config.yaml").write_text(
            yaml.safe_dump({"health": {"network_targets": ["github.com:443"], "retries": 0}})
        )
        with patch("repo_migrator.core.health.socket.create_connection", side_effect=OSError("unreachable")):
            result = CliRunner().invoke(cli, ["health-check"])

        assert result.exit_code == 1
        assert "Unhealthy" in result.output
        assert "github.com:443" in result.output


class TestAlertCommands:
    def test_test_alert_console(self, workspace):
        (workspace / "config.yaml").write_text("{}\n")
        result = CliRunner().invoke(cli, ["test-alert", "--severity", "high"])

        assert result.exit_code == 0
        assert "Dispatch status: delivered" in result.output
        assert "console: ok" in result.output

    def test_test_alert_without_channels(self, workspace):
        result = CliRunner().invoke(cli, ["test-alert"])
        assert result.exit_code == 1
        assert "Dispatch status: failed" in result.output

    def test_init_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        runner = CliRunner()

        first = runner.invoke(cli, ["init-config", "generated.yaml"])
        second = runner.invoke(cli, ["init-config", "generated.yaml"])

        assert first.exit_code == 0
        assert (tmp_path / "generated.yaml").exists()
        assert second.exit_code == 1


class TestHandleException:
    def test_keyboard_interrupt(self):
        assert handle_exception(KeyboardInterrupt()) == 1

    @pytest.mark.parametrize(
        "exc",
        [
            ConfigurationError("bad"),
            InventoryError("missing"),
            MigrationAbortedError("aborted"),
            AuthenticationError("401", 401),
            FileNotFoundError("nope"),
            RuntimeError("boom"),
        ],
    )
    def test_fatal_errors(self, exc):
        assert handle_exception(exc) == 2


class TestStopOnInterrupt:
    @pytest.mark.parametrize("signum", [signal.SIGINT, signal.SIGTERM])
    def test_first_signal_requests_stop(self, signum):
        request_stop = MagicMock()
        before = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}

        with stop_on_interrupt(request_stop):
            handler = signal.getsignal(signum)
            handler(signum, None)

            request_stop.assert_called_once()
            assert signal.getsignal(signal.SIGINT) is signal.default_int_handler
            assert signal.getsignal(signal.SIGTERM) == signal.SIG_DFL

        assert {sig: signal.getsignal(sig) for sig in before} == before
