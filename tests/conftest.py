"""Shared test fixtures for the repo_migrator test suite."""

from __future__ import annotations

import logging
from datetime import datetime

import pytest

from repo_migrator.core.config import BatchConfig
from repo_migrator.types import WorkItem


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateTimeClock:
    """Manually set ``datetime`` clock for components that use wall time."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class SleepRecorder:
    """Drop-in for ``time.sleep`` that records instead of sleeping."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self.clock = clock

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def make_items():
    """Factory fixture returning ``n`` pending work items ``repo-01`` ... ``repo-nn``."""

    def _make(n: int) -> list[WorkItem]:
        return [
            WorkItem(
                id=f"repo-{i:02d}",
                source_ref=f"contoso/Platform/repo-{i:02d}",
                target_ref=f"contoso-gh/repo-{i:02d}",
            )
            for i in range(1, n + 1)
        ]

    return _make


@pytest.fixture()
def batch_config() -> BatchConfig:
    """Batch settings with no delays, for fast tests."""
    return BatchConfig(batch_size=10, retry_count=3, batch_delay=0, retry_delay=0)


@pytest.fixture(autouse=True)
def _reset_logger_handlers():
    """Drop handlers added by setup_logger so file handles don't leak between tests."""
    yield
    logger = logging.getLogger("repo_migrator")
    for handler in logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture()
def datetime_clock() -> FakeDateTimeClock:
    """Wall clock starting at noon, outside any default quiet hours."""
    return FakeDateTimeClock(datetime(2026, 1, 5, 12, 0))


@pytest.fixture()
def clock_sleeper(clock: FakeClock) -> SleepRecorder:
    """Sleep recorder that advances the shared fake clock."""
    return SleepRecorder(clock)
