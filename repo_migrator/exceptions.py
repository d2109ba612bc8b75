"""Custom exception hierarchy for the repository migration orchestrator."""

from __future__ import annotations


class MigratorError(Exception):
    """Base exception for all migration-related errors."""

    retryable = False


class ConfigurationError(MigratorError):
    """Raised when configuration is invalid or missing. Fatal at startup."""


class InventoryError(MigratorError):
    """Raised when the work item inventory is missing or malformed."""


class GatewayError(MigratorError):
    """Raised when a source or target platform API call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(GatewayError):
    """Raised on timeouts, connection failures and 5xx responses."""

    retryable = True


class AuthenticationError(GatewayError):
    """Raised when credentials are rejected. Aborts the whole run."""


class RateLimitError(GatewayError):
    """Raised when the platform reports an exhausted rate limit."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after = retry_after


class NotFoundError(GatewayError):
    """Raised when the requested resource does not exist."""


class ItemMigrationFailure(MigratorError):
    """Raised when a single work item fails to migrate."""

    retryable = True

    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(f"{item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason


class ChannelDeliveryError(MigratorError):
    """Raised when an alert channel fails to deliver a notification."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"{channel} delivery failed: {reason}")
        self.channel = channel
        self.reason = reason


class InvalidTransitionError(MigratorError):
    """Raised when a work item is moved between incompatible states."""


class MigrationAbortedError(MigratorError):
    """Raised when the migration run is aborted by a fatal error."""
