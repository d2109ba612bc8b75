"""Unit test configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from repo_migrator.core.config import AlertingConfig
from repo_migrator.notifications.channels import AlertChannel
from repo_migrator.notifications.dispatcher import AlertDispatcher
from repo_migrator.types import Alert

# ---------------------------------------------------------------------------
# Recording alert channel
# ---------------------------------------------------------------------------


class RecordingChannel(AlertChannel):
    """Channel that keeps every alert it receives; can be told to fail."""

    def __init__(self, name: str = "recording", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.alerts: list[Alert] = []

    def _send(self, alert: Alert) -> None:
        if self.fail:
            raise ConnectionError("webhook unreachable")
        self.alerts.append(alert)

    def types(self) -> list[str]:
        return [a.type for a in self.alerts]


@pytest.fixture()
def make_channel():
    """Factory fixture for :class:`RecordingChannel` instances."""

    def _make(name: str = "recording", fail: bool = False) -> RecordingChannel:
        return RecordingChannel(name, fail)

    return _make


@pytest.fixture()
def channel(make_channel) -> RecordingChannel:
    return make_channel()


@pytest.fixture()
def make_dispatcher(datetime_clock):
    """Factory fixture: build a dispatcher from alerting config overrides.

    Usage in tests::

        def test_something(make_dispatcher, channel):
            dispatcher = make_dispatcher([channel], dedup_cooldown_minutes=5)
    """

    def _make(channels: list[AlertChannel], **overrides: Any) -> AlertDispatcher:
        data: dict[str, Any] = {"channels": {"console": {"enabled": False}}}
        data.update(overrides)
        return AlertDispatcher(
            AlertingConfig.from_dict(data), channels, clock=datetime_clock
        )

    return _make
