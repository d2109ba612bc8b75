"""
REST gateway to the source and target platforms.

Every HTTP call made by the orchestrator goes through :class:`ServiceGateway`,
which adds the credential header, maps HTTP failures onto the typed
exceptions in :mod:`repo_migrator.exceptions` and retries the retryable ones
with exponential backoff.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Callable

import requests

from repo_migrator.constants import (
    HTTP_FORBIDDEN,
    HTTP_NOT_FOUND,
    HTTP_RATE_LIMIT,
    HTTP_SERVER_ERROR_MIN,
    HTTP_UNAUTHORIZED,
    RATE_LIMIT_REMAINING_HEADER,
    RETRY_AFTER_HEADER,
)
from repo_migrator.core.config import ApiConfig, EndpointConfig
from repo_migrator.exceptions import (
    AuthenticationError,
    GatewayError,
    NotFoundError,
    RateLimitError,
    TransientNetworkError,
)
from repo_migrator.types import StatusSnapshot
from repo_migrator.utils.logging import (
    log_api_request,
    log_api_response,
    log_with_context,
)

BACKOFF_FACTOR = 2.0


def _retry_after(response: requests.Response) -> float | None:
    value = response.headers.get(RETRY_AFTER_HEADER)
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or response.reason or "").strip()[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]


def raise_for_status(response: requests.Response, endpoint: str) -> None:
    """Translate an unsuccessful response into a :class:`GatewayError`.

    Args:
        response: The HTTP response.
        endpoint: Name of the platform, used in error messages.

    Raises:
        AuthenticationError: 401, or 403 without rate-limit signals.
        RateLimitError: 429, or 403 with an exhausted rate-limit header.
        NotFoundError: 404.
        TransientNetworkError: Any 5xx.
        GatewayError: Any other 4xx.
    """
    status = response.status_code
    if status < 400:
        return

    message = f"{endpoint} returned HTTP {status}: {_error_detail(response)}"

    if status == HTTP_UNAUTHORIZED:
        raise AuthenticationError(message, status)
    if status == HTTP_RATE_LIMIT or (
        status == HTTP_FORBIDDEN
        and response.headers.get(RATE_LIMIT_REMAINING_HEADER) == "0"
    ):
        raise RateLimitError(message, status, retry_after=_retry_after(response))
    if status == HTTP_FORBIDDEN:
        raise AuthenticationError(message, status)
    if status == HTTP_NOT_FOUND:
        raise NotFoundError(message, status)
    if status >= HTTP_SERVER_ERROR_MIN:
        raise TransientNetworkError(message, status)
    raise GatewayError(message, status)


class ServiceGateway:
    """Authenticated JSON client for one platform API."""

    def __init__(
        self,
        endpoint: EndpointConfig,
        api_config: ApiConfig,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.api_config = api_config
        self.session = session or requests.Session()
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.endpoint.name

    def _auth_headers(self) -> dict[str, str]:
        token = self.endpoint.token
        if not token:
            return {}
        if self.endpoint.auth_scheme == "basic":
            # Azure DevOps style: empty user name, token as password
            encoded = base64.b64encode(f":{token}".encode()).decode("ascii")
            return {"Authorization": f"Basic {encoded}"}
        if self.endpoint.auth_scheme == "token":
            return {"Authorization": f"token {token}"}
        return {"Authorization": f"Bearer {token}"}

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.endpoint.base_url}/{path.lstrip('/')}"

    # -- Requests ------------------------------------------------------------

    def request(
        self,
        method: str,
        path: str,
        retries: int | None = None,
        **kwargs: Any,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Retryable failures (rate limits, timeouts, connection errors and 5xx
        responses) are retried up to ``retries`` times, defaulting to
        ``api.max_retries``. Rate limits wait for ``Retry-After`` (or
        ``rate_limit_delay``); other failures back off exponentially from
        ``retry_delay`` up to ``max_delay``.

        Args:
            method: HTTP method.
            path: Path relative to the endpoint base URL, or an absolute URL.
            retries: Override for the number of retries.
            **kwargs: Passed through to :meth:`requests.Session.request`.

        Returns:
            The decoded JSON body, or None for an empty response.

        Raises:
            GatewayError: Or one of its subclasses when the call fails.
        """
        max_retries = self.api_config.max_retries if retries is None else retries
        url = self.url(path)

        for attempt in range(max_retries + 1):
            try:
                return self._send(method, url, **kwargs)
            except RateLimitError as e:
                if attempt >= max_retries:
                    log_with_context(
                        logging.ERROR,
                        f"Max retries reached. Last error: {e}",
                        component="http",
                        endpoint=self.name,
                    )
                    raise
                wait = (
                    e.retry_after
                    if e.retry_after is not None
                    else self.api_config.rate_limit_delay
                )
                log_with_context(
                    logging.WARNING,
                    f"Rate limited by {self.name}, waiting {wait:.1f} seconds...",
                    component="http",
                    endpoint=self.name,
                )
                self._sleep(wait)
            except TransientNetworkError as e:
                if attempt >= max_retries:
                    log_with_context(
                        logging.ERROR,
                        f"Max retries reached. Last error: {e}",
                        component="http",
                        endpoint=self.name,
                    )
                    raise
                sleep_time = min(
                    self.api_config.retry_delay * (BACKOFF_FACTOR**attempt),
                    self.api_config.max_delay,
                )
                log_with_context(
                    logging.WARNING,
                    f"{e}. Retrying in {sleep_time:.1f} seconds...",
                    component="http",
                    endpoint=self.name,
                )
                self._sleep(sleep_time)

        raise RuntimeError("Exited retry loop unexpectedly.")

    def _send(self, method: str, url: str, **kwargs: Any) -> Any:
        headers = {"Accept": "application/json", **self._auth_headers()}
        headers.update(kwargs.pop("headers", None) or {})
        kwargs.setdefault("timeout", self.api_config.timeout)

        log_api_request(method, url, kwargs.get("json"), endpoint=self.name)
        try:
            response = self.session.request(method, url, headers=headers, **kwargs)
        except requests.Timeout as e:
            raise TransientNetworkError(f"{self.name} request timed out: {e}") from e
        except requests.ConnectionError as e:
            raise TransientNetworkError(f"{self.name} connection failed: {e}") from e
        except requests.RequestException as e:
            raise GatewayError(f"{self.name} request failed: {e}") from e

        if not response.content:
            log_api_response(response.status_code, url, endpoint=self.name)
            raise_for_status(response, self.name)
            return None

        try:
            body = response.json()
        except ValueError:
            body = response.text
        log_api_response(response.status_code, url, body, endpoint=self.name)
        raise_for_status(response, self.name)
        return body

    def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post_json(self, path: str, payload: dict[str, Any]) -> Any:
        return self.request("POST", path, json=payload)

    # -- Health --------------------------------------------------------------

    def ping(self, timeout: float | None = None) -> float:
        """Call the health path once, without retries.

        Returns:
            Round-trip latency in milliseconds.

        Raises:
            GatewayError: If the platform is unreachable or rejects the call.
        """
        started = time.monotonic()
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        self.request("GET", self.endpoint.health_path, retries=0, **kwargs)
        return (time.monotonic() - started) * 1000

    def validate_credentials(self) -> bool:
        """Return True when the platform accepts the configured token."""
        try:
            self.ping()
        except AuthenticationError as e:
            log_with_context(
                logging.ERROR,
                f"Credentials for {self.name} were rejected: {e}",
                endpoint=self.name,
            )
            return False
        log_with_context(
            logging.INFO, f"Credentials for {self.name} are valid", endpoint=self.name
        )
        return True


# ---------------------------------------------------------------------------
# Migration status
# ---------------------------------------------------------------------------

_PENDING_STATES = {"queued", "pending", "pending_validation", "not_started"}
_IN_PROGRESS_STATES = {
    "in_progress",
    "inprogress",
    "exporting",
    "exported",
    "importing",
    "running",
}
_MIGRATED_STATES = {"succeeded", "completed", "imported", "success"}
_FAILED_STATES = {"failed", "failed_validation", "error"}


class MigrationStatusSource:
    """Reads the target platform's migration list and aggregates it into counts.

    The status endpoint may return a list of migrations or a mapping holding
    the list under ``migrations``, ``items``, ``value`` or ``nodes``. Each
    migration carries its state under ``state`` or ``status``. When
    ``inventory_total`` is known, inventory items the platform has not seen
    yet count as pending.
    """

    def __init__(
        self,
        gateway: ServiceGateway,
        status_path: str,
        inventory_total: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.gateway = gateway
        self.status_path = status_path
        self.inventory_total = inventory_total
        self._clock = clock

    @staticmethod
    def _entries(body: Any) -> list[dict[str, Any]]:
        if isinstance(body, dict):
            for key in ("migrations", "items", "value", "nodes"):
                if isinstance(body.get(key), list):
                    body = body[key]
                    break
        if not isinstance(body, list):
            raise GatewayError("Unexpected migration status payload")
        return [entry for entry in body if isinstance(entry, dict)]

    def fetch_counts(self) -> StatusSnapshot:
        """Query the platform and return the aggregate counts.

        Raises:
            GatewayError: If the query fails or the payload is not understood.
        """
        body = self.gateway.get_json(self.status_path)
        pending = in_progress = migrated = failed = 0

        for entry in self._entries(body):
            state = str(entry.get("state") or entry.get("status") or "").lower()
            if state in _MIGRATED_STATES:
                migrated += 1
            elif state in _FAILED_STATES:
                failed += 1
            elif state in _PENDING_STATES:
                pending += 1
            elif state in _IN_PROGRESS_STATES:
                in_progress += 1
            else:
                log_with_context(
                    logging.DEBUG,
                    f"Unknown migration state '{state}', counting as in progress",
                )
                in_progress += 1

        seen = pending + in_progress + migrated + failed
        if self.inventory_total is not None and self.inventory_total > seen:
            pending += self.inventory_total - seen

        return StatusSnapshot(
            pending=pending,
            in_progress=in_progress,
            migrated=migrated,
            failed=failed,
            timestamp=self._clock(),
        )
