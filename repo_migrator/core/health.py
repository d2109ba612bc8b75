"""
Health monitor for the migration's external dependencies.

Each dependency is checked by a probe: an HTTP call to a platform API through
the service gateway, or a plain TCP connect to a network endpoint. Probes are
independent; one failing never affects the result of another.
"""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from repo_migrator.constants import ALERT_HEALTH_CHECK_FAILED
from repo_migrator.core.config import HealthConfig
from repo_migrator.services.gateway import ServiceGateway
from repo_migrator.types import Alert, HealthState, HealthStatus, Severity
from repo_migrator.utils.logging import log_with_context


class Probe:
    """A single dependency check. ``check`` returns latency in milliseconds."""

    name: str

    def check(self) -> float:
        raise NotImplementedError


class HttpProbe(Probe):
    """Calls the health path of a platform API."""

    def __init__(self, name: str, gateway: ServiceGateway, timeout: float | None = None):
        self.name = name
        self.gateway = gateway
        self.timeout = timeout

    def check(self) -> float:
        return self.gateway.ping(timeout=self.timeout)


class NetworkProbe(Probe):
    """Opens and closes a TCP connection to ``host:port``."""

    def __init__(self, name: str, host: str, port: int, timeout: float = 10.0):
        self.name = name
        self.host = host
        self.port = port
        self.timeout = timeout

    def check(self) -> float:
        started = time.monotonic()
        with socket.create_connection((self.host, self.port), timeout=self.timeout):
            pass
        return (time.monotonic() - started) * 1000


@dataclass
class HealthReport:
    """Result of one probe cycle."""

    statuses: list[HealthStatus] = field(default_factory=list)

    @property
    def unhealthy(self) -> list[HealthStatus]:
        return [s for s in self.statuses if s.state == HealthState.UNHEALTHY]

    @property
    def degraded(self) -> list[HealthStatus]:
        return [s for s in self.statuses if s.state == HealthState.DEGRADED]

    @property
    def healthy(self) -> bool:
        """True unless some dependency is unhealthy. Degraded still counts."""
        return not self.unhealthy


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthMonitor:
    """Runs every probe once per cycle with a bounded number of retries.

    A probe that fails every attempt increments its dependency's consecutive
    failure count; the dependency is reported unhealthy once the count reaches
    ``unhealthy_threshold`` and degraded before that. A probe that only passes
    on a retry, or whose latency exceeds ``degraded_latency_ms``, is degraded.
    """

    def __init__(
        self,
        probes: list[Probe],
        retries: int = 1,
        retry_delay: float = 2.0,
        unhealthy_threshold: int = 1,
        degraded_latency_ms: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.probes = probes
        self.retries = retries
        self.retry_delay = retry_delay
        self.unhealthy_threshold = max(unhealthy_threshold, 1)
        self.degraded_latency_ms = degraded_latency_ms
        self._sleep = sleep
        self._clock = clock
        self._statuses: dict[str, HealthStatus] = {}

    @property
    def statuses(self) -> dict[str, HealthStatus]:
        """Latest status per dependency, overwritten every cycle."""
        return dict(self._statuses)

    def check_all(self) -> HealthReport:
        report = HealthReport()
        for probe in self.probes:
            status = self._check_probe(probe)
            self._statuses[probe.name] = status
            report.statuses.append(status)

        if report.unhealthy:
            log_with_context(
                logging.WARNING,
                "Health check failed for: "
                + ", ".join(s.dependency for s in report.unhealthy),
            )
        else:
            log_with_context(
                logging.DEBUG,
                f"Health check passed for {len(report.statuses)} dependencies",
            )
        return report

    def _check_probe(self, probe: Probe) -> HealthStatus:
        previous = self._statuses.get(probe.name)
        last_error: str | None = None

        for attempt in range(self.retries + 1):
            if attempt > 0:
                self._sleep(self.retry_delay)
            try:
                latency = probe.check()
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                log_with_context(
                    logging.DEBUG,
                    f"Probe {probe.name} attempt {attempt + 1} failed: {last_error}",
                    dependency=probe.name,
                )
                continue

            slow = (
                self.degraded_latency_ms is not None
                and latency > self.degraded_latency_ms
            )
            state = HealthState.DEGRADED if attempt > 0 or slow else HealthState.HEALTHY
            return HealthStatus(
                dependency=probe.name,
                state=state,
                last_checked_at=self._clock(),
                latency_ms=latency,
                error=last_error,
                consecutive_failures=0,
            )

        failures = (previous.consecutive_failures if previous else 0) + 1
        state = (
            HealthState.UNHEALTHY
            if failures >= self.unhealthy_threshold
            else HealthState.DEGRADED
        )
        log_with_context(
            logging.WARNING,
            f"Dependency {probe.name} is {state.value.lower()}: {last_error}",
            dependency=probe.name,
            consecutive_failures=failures,
        )
        return HealthStatus(
            dependency=probe.name,
            state=state,
            last_checked_at=self._clock(),
            error=last_error,
            consecutive_failures=failures,
        )


def build_health_alert(report: HealthReport) -> Alert:
    """Create the HIGH severity alert listing every unhealthy dependency."""
    names = [s.dependency for s in report.unhealthy]
    return Alert(
        type=ALERT_HEALTH_CHECK_FAILED,
        severity=Severity.HIGH,
        message="Unhealthy dependencies: " + ", ".join(names),
        data={s.dependency: s.error or "unknown error" for s in report.unhealthy},
    )


def build_probes(
    config: HealthConfig,
    source_gateway: ServiceGateway | None = None,
    target_gateway: ServiceGateway | None = None,
) -> list[Probe]:
    """Probes for the configured platform APIs and network targets."""
    probes: list[Probe] = []
    for gateway in (source_gateway, target_gateway):
        if gateway is not None and gateway.endpoint.configured:
            probes.append(HttpProbe(f"{gateway.name}-api", gateway, config.timeout))
    for target in config.network_targets:
        host, _, port = target.rpartition(":")
        probes.append(NetworkProbe(target, host, int(port), config.timeout))
    return probes


def build_health_monitor(
    config: HealthConfig,
    source_gateway: ServiceGateway | None = None,
    target_gateway: ServiceGateway | None = None,
) -> HealthMonitor:
    return HealthMonitor(
        build_probes(config, source_gateway, target_gateway),
        retries=config.retries,
        retry_delay=config.retry_delay,
        unhealthy_threshold=config.unhealthy_threshold,
        degraded_latency_ms=config.degraded_latency_ms,
    )
