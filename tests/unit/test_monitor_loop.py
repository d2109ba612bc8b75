"""Unit tests for the orchestration loop."""

import json

import pytest
import yaml

from repo_migrator.core.config import MonitoringConfig
from repo_migrator.core.health import HealthMonitor, Probe
from repo_migrator.core.monitor_loop import LoopState, MonitoringLoop, StopReason
from repo_migrator.core.state import MigrationStateTracker
from repo_migrator.exceptions import AuthenticationError, GatewayError
from repo_migrator.types import Severity, StatusSnapshot


class ScriptedSource:
    """Status source returning scripted snapshots; the last one repeats."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def fetch_counts(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class DownProbe(Probe):
    name = "github-api"

    def check(self):
        raise ConnectionError("unreachable")


def _counts(pending=10, in_progress=0, migrated=0, failed=0):
    return StatusSnapshot(pending=pending, in_progress=in_progress, migrated=migrated, failed=failed)


@pytest.fixture()
def make_loop(clock, clock_sleeper, make_dispatcher, channel):
    """Build a loop wired to fake clocks and a recording channel."""

    def _make(source, probes=(), output_dir=None, **monitoring):
        config = MonitoringConfig(**{"interval_seconds": 600, "continuous": True, **monitoring})
        tracker = MigrationStateTracker(
            stalled_threshold_minutes=config.stalled_threshold_minutes, clock=clock
        )
        health = HealthMonitor(list(probes), retries=0, sleep=clock_sleeper)
        return MonitoringLoop(
            config,
            tracker,
            health,
            make_dispatcher([channel]),
            source,
            output_dir=output_dir,
            clock=clock,
            sleep=clock_sleeper,
        )

    return _make


class TestStopConditions:
    def test_single_cycle(self, make_loop, clock_sleeper):
        loop = make_loop(ScriptedSource(_counts()), continuous=False)

        summary = loop.run()

        assert loop.cycles == 1
        assert loop.stop_reason == StopReason.SINGLE_CYCLE
        assert loop.state == LoopState.STOPPED
        assert clock_sleeper.calls == []
        assert summary["stop_reason"] == "single_cycle"

    def test_max_runtime(self, make_loop, clock_sleeper):
        loop = make_loop(ScriptedSource(_counts()), max_runtime_minutes=30)

        loop.run()

        assert loop.stop_reason == StopReason.MAX_RUNTIME
        assert loop.cycles == 4
        assert clock_sleeper.calls == [600, 600, 600]

    def test_complete(self, make_loop, channel):
        loop = make_loop(
            ScriptedSource(_counts(pending=5, migrated=5), _counts(pending=0, migrated=9, failed=1))
        )

        loop.run()

        assert loop.stop_reason == StopReason.COMPLETE
        assert loop.cycles == 2
        complete = [a for a in channel.alerts if a.type == "MigrationComplete"]
        assert len(complete) == 1
        assert complete[0].severity == Severity.INFO
        assert complete[0].message == "Migration complete: 9 migrated, 1 failed"

    def test_stop_requested_before_run(self, make_loop):
        loop = make_loop(ScriptedSource(_counts()))
        loop.request_stop()

        loop.run()

        assert loop.cycles == 1
        assert loop.stop_reason == StopReason.REQUESTED

    def test_stop_requested_while_sleeping(self, clock, make_loop):
        loop = None

        def sleep(seconds):
            clock.advance(seconds)
            loop.request_stop()

        loop = make_loop(ScriptedSource(_counts()))
        loop._sleep = sleep

        loop.run()

        assert loop.cycles == 1
        assert loop.stop_reason == StopReason.REQUESTED

    def test_not_reentrant(self, make_loop):
        class Reentrant:
            def fetch_counts(self):
                return loop.run()

        loop = make_loop(Reentrant())

        with pytest.raises(RuntimeError, match="already running"):
            loop.run()


class TestAlerts:
    """Alerts raised by the reporting phase."""

    def test_stall_alert_raised_once(self, make_loop, channel):
        loop = make_loop(
            ScriptedSource(_counts(pending=8, migrated=2)),
            max_runtime_minutes=90,
            stalled_threshold_minutes=60,
        )

        loop.run()

        assert loop.cycles == 10
        stalls = [a for a in channel.alerts if a.type == "MigrationStalled"]
        assert len(stalls) == 1
        assert stalls[0].severity == Severity.HIGH
        assert stalls[0].message == "No change in 'migrated' for at least 60 minutes"

    def test_no_stall_while_progressing(self, make_loop, channel):
        source = ScriptedSource(*[_counts(pending=100 - i, migrated=i) for i in range(12)])
        loop = make_loop(source, max_runtime_minutes=100, stalled_threshold_minutes=60)

        loop.run()

        assert "MigrationStalled" not in channel.types()

    def test_new_failures(self, make_loop, channel):
        loop = make_loop(
            ScriptedSource(_counts(pending=10), _counts(pending=8, failed=2)),
            max_runtime_minutes=10,
        )

        loop.run()

        failures = [a for a in channel.alerts if a.type == "MigrationFailures"]
        assert len(failures) == 1
        assert failures[0].message == "2 new failed migration(s), 2 failed in total"
        assert failures[0].data == {"new_failures": 2, "failed": 2}

    def test_unhealthy_dependency(self, make_loop, channel):
        loop = make_loop(ScriptedSource(_counts()), probes=[DownProbe()], continuous=False)

        loop.run()

        health = [a for a in channel.alerts if a.type == "HealthCheckFailed"]
        assert len(health) == 1
        assert health[0].severity == Severity.HIGH
        assert loop.last_health.unhealthy[0].dependency == "github-api"

    def test_authentication_failure_stops_loop(self, make_loop, channel):
        source = ScriptedSource(AuthenticationError("github returned HTTP 401", 401))
        loop = make_loop(source)

        summary = loop.run()

        assert loop.cycles == 1
        assert summary["stop_reason"] == "authentication_failed"
        assert channel.alerts[-1].severity == Severity.CRITICAL
        assert channel.alerts[-1].type == "MigrationRunAborted"

    def test_status_query_failure_continues(self, make_loop, channel):
        source = ScriptedSource(GatewayError("github returned HTTP 422"), _counts())
        loop = make_loop(source, max_runtime_minutes=10)

        loop.run()

        assert loop.cycles == 2
        assert source.calls == 2
        failed = [a for a in channel.alerts if a.type == "StatusQueryFailed"]
        assert failed[0].severity == Severity.MEDIUM

    def test_alerts_sent_counts_deliveries(self, make_loop, channel):
        loop = make_loop(ScriptedSource(_counts(pending=0, migrated=3)))

        summary = loop.run()

        assert summary["alerts_sent"] == len(channel.alerts) == 1


class TestArtifacts:
    def test_snapshot_and_summary_written(self, make_loop, tmp_path):
        loop = make_loop(
            ScriptedSource(_counts(pending=4, migrated=6)),
            output_dir=tmp_path,
            continuous=False,
        )

        loop.run()

        snapshot = json.loads((tmp_path / "status_snapshot.json").read_text())
        assert snapshot["cycle"] == 1
        assert snapshot["counts"]["migrated"] == 6
        summary = yaml.safe_load((tmp_path / "run_summary.yaml").read_text())
        assert summary["cycles"] == 1
        assert summary["stop_reason"] == "single_cycle"
        assert summary["status"]["counts"]["pending"] == 4

    def test_no_files_without_output_dir(self, make_loop, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        make_loop(ScriptedSource(_counts()), continuous=False).run()
        assert list(tmp_path.iterdir()) == []
