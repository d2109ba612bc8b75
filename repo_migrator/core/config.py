"""
Configuration module for the repository migration orchestrator.

This module loads the YAML configuration file once at startup into a tree of
frozen dataclasses. Every component receives the section it needs through its
constructor; nothing reads configuration from process-wide state.
Secrets (API tokens, webhook URLs, SMTP passwords) are resolved from the
environment variables named in the file, falling back to inline values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import time as dt_time
from pathlib import Path
from typing import Any

import yaml

from repo_migrator.exceptions import ConfigurationError
from repo_migrator.types import Severity
from repo_migrator.utils.logging import log_with_context

AUTH_SCHEMES = ("bearer", "token", "basic")
RETRY_BACKOFF_MODES = ("flat", "exponential")

DEFAULT_MIGRATION_COMMAND = (
    "gh",
    "ado2gh",
    "migrate-repo",
    "--ado-org",
    "{source_org}",
    "--ado-team-project",
    "{source_project}",
    "--ado-repo",
    "{source_name}",
    "--github-org",
    "{target_org}",
    "--github-repo",
    "{target_name}",
)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{key}' must be a mapping")
    return value


def _number(data: dict[str, Any], key: str, default: float, minimum: float = 0) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"'{key}' must be a number, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"'{key}' must be >= {minimum}, got {value}")
    return float(value)


def _integer(data: dict[str, Any], key: str, default: int, minimum: int = 0) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"'{key}' must be >= {minimum}, got {value}")
    return value


def _secret(data: dict[str, Any], inline_key: str, env_key: str) -> str:
    env_name = data.get(env_key)
    if env_name:
        value = os.environ.get(str(env_name))
        if value:
            return value
    return str(data.get(inline_key) or "")


def parse_time_of_day(value: Any) -> dt_time:
    """Parse ``"HH:MM"`` into a :class:`datetime.time`.

    YAML 1.1 loads an unquoted ``22:00`` as the base-60 integer 1320, so an
    integer is read as minutes since midnight.

    Raises:
        ConfigurationError: If the value is not a valid time of day.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        if 0 <= value < 24 * 60:
            return dt_time(value // 60, value % 60)
        raise ConfigurationError(
            f"Invalid time of day {value!r}, expected HH:MM"
        )
    try:
        hours, minutes = str(value).split(":")
        return dt_time(int(hours), int(minutes))
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid time of day {value!r}, expected HH:MM"
        ) from e


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EndpointConfig:
    """A source or target platform REST API."""

    name: str = ""
    base_url: str = ""
    token: str = field(default="", repr=False)
    auth_scheme: str = "bearer"
    health_path: str = "/"
    status_path: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_name: str) -> EndpointConfig:
        auth_scheme = str(data.get("auth_scheme", "bearer")).lower()
        if auth_scheme not in AUTH_SCHEMES:
            raise ConfigurationError(
                f"Invalid auth_scheme '{auth_scheme}' for {default_name}, "
                f"expected one of {', '.join(AUTH_SCHEMES)}"
            )
        return cls(
            name=str(data.get("name", default_name)),
            base_url=str(data.get("base_url", "")).rstrip("/"),
            token=_secret(data, "token", "token_env"),
            auth_scheme=auth_scheme,
            health_path=str(data.get("health_path", "/")),
            status_path=str(data.get("status_path", "")),
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url)


@dataclass(frozen=True)
class ApiConfig:
    """Timeouts and retry policy for the service gateway."""

    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 2.0
    max_delay: float = 60.0
    rate_limit_delay: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApiConfig:
        return cls(
            timeout=_number(data, "timeout", 30.0, minimum=0.1),
            max_retries=_integer(data, "max_retries", 3),
            retry_delay=_number(data, "retry_delay", 2.0),
            max_delay=_number(data, "max_delay", 60.0),
            rate_limit_delay=_number(data, "rate_limit_delay", 60.0),
        )


@dataclass(frozen=True)
class BatchConfig:
    """Chunking, concurrency and retry settings for the batch executor.

    ``retry_backoff`` is ``flat`` (every retry round waits ``retry_delay``) or
    ``exponential`` (``retry_delay * backoff_multiplier ** (round - 1)``,
    capped at ``max_retry_delay``).
    """

    batch_size: int = 10
    retry_count: int = 3
    batch_delay: float = 5.0
    retry_delay: float = 30.0
    retry_backoff: str = "flat"
    backoff_multiplier: float = 2.0
    max_retry_delay: float = 600.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchConfig:
        retry_backoff = str(data.get("retry_backoff", "flat")).lower()
        if retry_backoff not in RETRY_BACKOFF_MODES:
            raise ConfigurationError(
                f"Invalid retry_backoff '{retry_backoff}', "
                f"expected one of {', '.join(RETRY_BACKOFF_MODES)}"
            )
        return cls(
            batch_size=_integer(data, "batch_size", 10, minimum=1),
            retry_count=_integer(data, "retry_count", 3),
            batch_delay=_number(data, "batch_delay", 5.0),
            retry_delay=_number(data, "retry_delay", 30.0),
            retry_backoff=retry_backoff,
            backoff_multiplier=_number(data, "backoff_multiplier", 2.0, minimum=1),
            max_retry_delay=_number(data, "max_retry_delay", 600.0),
        )

    def retry_round_delay(self, round_number: int) -> float:
        """Delay before retry round ``round_number`` (1-based)."""
        if self.retry_backoff == "exponential":
            delay = self.retry_delay * self.backoff_multiplier ** (round_number - 1)
            return min(delay, self.max_retry_delay)
        return self.retry_delay


@dataclass(frozen=True)
class MigrationToolConfig:
    """The external command run once per work item."""

    command: tuple[str, ...] = DEFAULT_MIGRATION_COMMAND
    timeout: float = 3600.0
    completion_marker: str | None = None
    working_dir: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationToolConfig:
        command = data.get("command", list(DEFAULT_MIGRATION_COMMAND))
        if isinstance(command, str):
            command = command.split()
        if not command or not all(isinstance(part, str) for part in command):
            raise ConfigurationError(
                "'migration_tool.command' must be a non-empty list of strings"
            )
        return cls(
            command=tuple(command),
            timeout=_number(data, "timeout", 3600.0, minimum=1),
            completion_marker=data.get("completion_marker") or None,
            working_dir=data.get("working_dir") or None,
        )


@dataclass(frozen=True)
class HealthConfig:
    """Probe policy for the health monitor.

    ``unhealthy_threshold`` is the number of consecutive failed cycles before a
    dependency is reported unhealthy; failures below the threshold report
    degraded. The default of 1 flips on the first failure.
    """

    timeout: float = 10.0
    retries: int = 1
    retry_delay: float = 2.0
    network_targets: tuple[str, ...] = ("github.com:443",)
    unhealthy_threshold: int = 1
    degraded_latency_ms: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthConfig:
        targets = data.get("network_targets", ["github.com:443"]) or []
        for target in targets:
            host, _, port = str(target).rpartition(":")
            if not host or not port.isdigit():
                raise ConfigurationError(
                    f"Invalid network target {target!r}, expected host:port"
                )
        degraded = data.get("degraded_latency_ms")
        return cls(
            timeout=_number(data, "timeout", 10.0, minimum=0.1),
            retries=_integer(data, "retries", 1),
            retry_delay=_number(data, "retry_delay", 2.0),
            network_targets=tuple(str(t) for t in targets),
            unhealthy_threshold=_integer(data, "unhealthy_threshold", 1, minimum=1),
            degraded_latency_ms=(
                _number(data, "degraded_latency_ms", 0.0) if degraded else None
            ),
        )


@dataclass(frozen=True)
class MonitoringConfig:
    """Timer settings for the orchestration loop."""

    interval_seconds: float = 300.0
    continuous: bool = True
    max_runtime_minutes: float = 0.0  # 0 = unbounded
    stalled_threshold_minutes: float = 60.0
    tracked_metric: str = "migrated"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonitoringConfig:
        return cls(
            interval_seconds=_number(data, "interval_seconds", 300.0),
            continuous=bool(data.get("continuous", True)),
            max_runtime_minutes=_number(data, "max_runtime_minutes", 0.0),
            stalled_threshold_minutes=_number(
                data, "stalled_threshold_minutes", 60.0, minimum=0.1
            ),
            tracked_metric=str(data.get("tracked_metric", "migrated")),
        )


@dataclass(frozen=True)
class QuietHoursConfig:
    enabled: bool = False
    start: dt_time = dt_time(22, 0)
    end: dt_time = dt_time(7, 0)
    allow_critical: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuietHoursConfig:
        return cls(
            enabled=bool(data.get("enabled", False)),
            start=parse_time_of_day(data.get("start", "22:00")),
            end=parse_time_of_day(data.get("end", "07:00")),
            allow_critical=bool(data.get("allow_critical", True)),
        )

    def contains(self, moment: dt_time) -> bool:
        """True when ``moment`` falls inside the window (which may wrap midnight)."""
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= moment < self.end
        return moment >= self.start or moment < self.end


@dataclass(frozen=True)
class ConsoleChannelConfig:
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConsoleChannelConfig:
        return cls(enabled=bool(data.get("enabled", True)))


@dataclass(frozen=True)
class WebhookChannelConfig:
    enabled: bool = False
    webhook_url: str = field(default="", repr=False)
    timeout: float = 10.0

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str) -> WebhookChannelConfig:
        config = cls(
            enabled=bool(data.get("enabled", False)),
            webhook_url=_secret(data, "webhook_url", "webhook_url_env"),
            timeout=_number(data, "timeout", 10.0, minimum=0.1),
        )
        if config.enabled and not config.webhook_url:
            raise ConfigurationError(f"{name} channel is enabled but has no webhook_url")
        return config


@dataclass(frozen=True)
class EmailChannelConfig:
    enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    use_tls: bool = True
    username: str = ""
    password: str = field(default="", repr=False)
    from_address: str = ""
    to_addresses: tuple[str, ...] = ()
    timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EmailChannelConfig:
        recipients = data.get("to_addresses") or []
        if isinstance(recipients, str):
            recipients = [recipients]
        config = cls(
            enabled=bool(data.get("enabled", False)),
            smtp_host=str(data.get("smtp_host", "")),
            smtp_port=_integer(data, "smtp_port", 587, minimum=1),
            use_tls=bool(data.get("use_tls", True)),
            username=str(data.get("username", "")),
            password=_secret(data, "password", "password_env"),
            from_address=str(data.get("from_address", "")),
            to_addresses=tuple(str(r) for r in recipients),
            timeout=_number(data, "timeout", 30.0, minimum=0.1),
        )
        if config.enabled and not (
            config.smtp_host and config.from_address and config.to_addresses
        ):
            raise ConfigurationError(
                "email channel is enabled but smtp_host, from_address or "
                "to_addresses is missing"
            )
        return config


@dataclass(frozen=True)
class AlertingConfig:
    """Severity filter, quiet hours, dedup window and channel settings."""

    severity_filter: frozenset[Severity] = frozenset(Severity)
    quiet_hours: QuietHoursConfig = field(default_factory=QuietHoursConfig)
    dedup_cooldown_minutes: float = 15.0
    console: ConsoleChannelConfig = field(default_factory=ConsoleChannelConfig)
    slack: WebhookChannelConfig = field(default_factory=WebhookChannelConfig)
    teams: WebhookChannelConfig = field(default_factory=WebhookChannelConfig)
    email: EmailChannelConfig = field(default_factory=EmailChannelConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertingConfig:
        raw_filter = data.get("severity_filter")
        if raw_filter is None:
            severity_filter = frozenset(Severity)
        else:
            try:
                severity_filter = frozenset(
                    Severity(str(s).upper()) for s in raw_filter
                )
            except ValueError as e:
                raise ConfigurationError(f"Invalid severity_filter: {e}") from e

        channels = _section(data, "channels")
        return cls(
            severity_filter=severity_filter,
            quiet_hours=QuietHoursConfig.from_dict(_section(data, "quiet_hours")),
            dedup_cooldown_minutes=_number(data, "dedup_cooldown_minutes", 15.0),
            console=ConsoleChannelConfig.from_dict(_section(channels, "console")),
            slack=WebhookChannelConfig.from_dict(_section(channels, "slack"), "slack"),
            teams=WebhookChannelConfig.from_dict(_section(channels, "teams"), "teams"),
            email=EmailChannelConfig.from_dict(_section(channels, "email")),
        )


@dataclass(frozen=True)
class StateConfig:
    """Where snapshots, the metric log and the checkpoint are written."""

    output_dir: str = "migration_state"
    metric_log: str | None = "metrics.jsonl"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateConfig:
        return cls(
            output_dir=str(data.get("output_dir", "migration_state")),
            metric_log=data.get("metric_log", "metrics.jsonl") or None,
        )

    @property
    def metric_log_path(self) -> Path | None:
        if not self.metric_log:
            return None
        return Path(self.output_dir) / self.metric_log


@dataclass(frozen=True)
class OrchestratorConfig:
    """Typed, immutable configuration for a whole run."""

    source: EndpointConfig = field(
        default_factory=lambda: EndpointConfig(name="source")
    )
    target: EndpointConfig = field(
        default_factory=lambda: EndpointConfig(name="target")
    )
    api: ApiConfig = field(default_factory=ApiConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    migration_tool: MigrationToolConfig = field(default_factory=MigrationToolConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    state: StateConfig = field(default_factory=StateConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrchestratorConfig:
        """Create an OrchestratorConfig from a raw config dictionary.

        Raises:
            ConfigurationError: If any section holds an invalid value.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")
        return cls(
            source=EndpointConfig.from_dict(_section(data, "source"), "source"),
            target=EndpointConfig.from_dict(_section(data, "target"), "target"),
            api=ApiConfig.from_dict(_section(data, "api")),
            batch=BatchConfig.from_dict(_section(data, "batch")),
            migration_tool=MigrationToolConfig.from_dict(
                _section(data, "migration_tool")
            ),
            health=HealthConfig.from_dict(_section(data, "health")),
            monitoring=MonitoringConfig.from_dict(_section(data, "monitoring")),
            alerting=AlertingConfig.from_dict(_section(data, "alerting")),
            state=StateConfig.from_dict(_section(data, "state")),
        )


def load_config(config_path: Path) -> OrchestratorConfig:
    """
    Load configuration from YAML file and apply default values.

    A missing file is not an error: a warning is logged and defaults are used.
    A file that exists but cannot be read or parsed, or holds invalid values,
    is fatal.

    Args:
        config_path: Path to the config YAML file

    Returns:
        OrchestratorConfig with all necessary defaults applied

    Raises:
        ConfigurationError: If the file is unreadable or invalid
    """
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded_config = yaml.safe_load(f)
        except (yaml.YAMLError, OSError) as e:
            raise ConfigurationError(
                f"Failed to load config file {config_path}: {e}"
            ) from e
        # Handle None result from empty file
        if loaded_config is not None:
            raw = loaded_config
        log_with_context(logging.INFO, f"Loaded configuration from {config_path}")
    else:
        log_with_context(
            logging.WARNING,
            f"Config file {config_path} not found, using default settings",
        )

    return OrchestratorConfig.from_dict(raw)


def create_default_config(output_path: Path) -> bool:
    """
    Create a default configuration file with recommended settings.

    The function will not overwrite an existing configuration file.

    Args:
        output_path: Path where the default config should be saved

    Returns:
        True if the config file was created successfully, False otherwise
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Config file {output_path} already exists, not overwriting",
        )
        return False

    default_config = {
        "source": {
            "name": "azure-devops",
            "base_url": "https://dev.azure.com/example-org",
            "token_env": "ADO_PAT",
            "auth_scheme": "basic",
            "health_path": "/_apis/projects?$top=1",
        },
        "target": {
            "name": "github",
            "base_url": "https://api.github.com",
            "token_env": "GH_PAT",
            "auth_scheme": "bearer",
            "health_path": "/rate_limit",
            "status_path": "/orgs/example-org/migrations",
        },
        "api": {"timeout": 30, "max_retries": 3, "retry_delay": 2},
        "batch": {
            "batch_size": 10,
            "retry_count": 3,
            "batch_delay": 5,
            "retry_delay": 30,
            "retry_backoff": "flat",
        },
        "migration_tool": {
            "command": list(DEFAULT_MIGRATION_COMMAND),
            "timeout": 3600,
        },
        "health": {
            "timeout": 10,
            "retries": 1,
            "network_targets": ["github.com:443", "dev.azure.com:443"],
        },
        "monitoring": {
            "interval_seconds": 300,
            "continuous": True,
            "max_runtime_minutes": 0,
            "stalled_threshold_minutes": 60,
        },
        "alerting": {
            "severity_filter": [s.value for s in Severity],
            "quiet_hours": {
                "enabled": False,
                "start": "22:00",
                "end": "07:00",
                "allow_critical": True,
            },
            "dedup_cooldown_minutes": 15,
            "channels": {
                "console": {"enabled": True},
                "slack": {"enabled": False, "webhook_url_env": "SLACK_WEBHOOK_URL"},
                "teams": {"enabled": False, "webhook_url_env": "TEAMS_WEBHOOK_URL"},
                "email": {
                    "enabled": False,
                    "smtp_host": "smtp.example.com",
                    "smtp_port": 587,
                    "use_tls": True,
                    "from_address": "migration@example.com",
                    "to_addresses": ["ops@example.com"],
                    "password_env": "SMTP_PASSWORD",
                },
            },
        },
        "state": {"output_dir": "migration_state", "metric_log": "metrics.jsonl"},
    }

    try:
        with open(output_path, "w") as f:
            yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)
        log_with_context(logging.INFO, f"Created default config file at {output_path}")
        return True
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to create default config file: {e}")
        return False
