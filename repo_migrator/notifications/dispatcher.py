"""
Alert dispatcher.

Routes alerts to the enabled channels after applying, in order, the severity
filter, quiet hours and the deduplication window.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable

from repo_migrator.core.config import AlertingConfig
from repo_migrator.exceptions import ChannelDeliveryError
from repo_migrator.notifications.channels import AlertChannel
from repo_migrator.types import (
    Alert,
    DeliveryResult,
    DispatchResult,
    DispatchStatus,
    Severity,
)
from repo_migrator.utils.logging import log_with_context


def make_alert(type_: str, severity: Severity, message: str, **data: Any) -> Alert:
    """Shorthand for building an :class:`Alert` with keyword data fields."""
    return Alert(type=type_, severity=severity, message=message, data=data)


class AlertDispatcher:
    """Filters, deduplicates and fans out alerts.

    The dedup table maps ``(type, message)`` to the time the alert was last
    delivered. It is process-local, guarded by a lock and pruned of expired
    entries on every send. A send claims its entry before delivering, so
    concurrent sends of the same alert deliver once. The entry is dropped again
    when no channel accepted the alert, so a total delivery failure does not
    suppress the next attempt.
    """

    def __init__(
        self,
        config: AlertingConfig,
        channels: list[AlertChannel],
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.channels = channels
        self._clock = clock
        self._cooldown = timedelta(minutes=config.dedup_cooldown_minutes)
        self._sent: dict[tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def _in_quiet_hours(self, alert: Alert, now: datetime) -> bool:
        quiet = self.config.quiet_hours
        if not quiet.enabled or not quiet.contains(now.time()):
            return False
        return not (quiet.allow_critical and alert.severity == Severity.CRITICAL)

    def _prune(self, now: datetime) -> None:
        expired = [
            key for key, sent in self._sent.items() if now - sent >= self._cooldown
        ]
        for key in expired:
            del self._sent[key]

    def _reserve(self, alert: Alert, now: datetime) -> bool:
        """Claim the dedup slot for ``alert``; False when it is already taken."""
        with self._lock:
            self._prune(now)
            if alert.dedup_key in self._sent:
                return False
            self._sent[alert.dedup_key] = now
            return True

    def _release(self, alert: Alert) -> None:
        with self._lock:
            self._sent.pop(alert.dedup_key, None)

    def send(self, alert: Alert) -> DispatchResult:
        """Route ``alert`` to every enabled channel.

        Returns:
            The dispatch status and the per-channel delivery results.
        """
        if alert.severity not in self.config.severity_filter:
            log_with_context(
                logging.DEBUG,
                f"Alert {alert.type} dropped by severity filter ({alert.severity.value})",
                alert_type=alert.type,
            )
            return DispatchResult(DispatchStatus.FILTERED)

        now = self._clock()
        if self._in_quiet_hours(alert, now):
            log_with_context(
                logging.INFO,
                f"Alert {alert.type} suppressed during quiet hours",
                alert_type=alert.type,
            )
            return DispatchResult(DispatchStatus.QUIET_HOURS)

        if not self._reserve(alert, now):
            log_with_context(
                logging.DEBUG,
                f"Duplicate alert {alert.type} suppressed within cooldown",
                alert_type=alert.type,
            )
            return DispatchResult(DispatchStatus.DUPLICATE)

        deliveries = [self._deliver(channel, alert) for channel in self.channels]

        if any(d.success for d in deliveries):
            log_with_context(
                logging.INFO,
                f"Alert {alert.type} delivered to "
                + ", ".join(d.channel for d in deliveries if d.success),
                alert_type=alert.type,
                severity=alert.severity.value,
            )
            return DispatchResult(DispatchStatus.DELIVERED, deliveries)

        self._release(alert)
        log_with_context(
            logging.ERROR,
            f"Alert {alert.type} could not be delivered to any channel",
            alert_type=alert.type,
        )
        return DispatchResult(DispatchStatus.FAILED, deliveries)

    def _deliver(self, channel: AlertChannel, alert: Alert) -> DeliveryResult:
        try:
            return channel.deliver(alert)
        except Exception as e:
            error = ChannelDeliveryError(channel.name, str(e))
            log_with_context(logging.ERROR, str(error), channel=channel.name)
            return DeliveryResult(channel=channel.name, success=False, error=str(e))
