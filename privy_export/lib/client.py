"""Paginated fetch client for the Privy users API.

One call to ``fetch_page`` issues exactly one logical page request. Rate
limiting (HTTP 429) and transport failures are retried internally with
exponential backoff; everything else is surfaced to the caller.

Example:
    with PrivyClient("app-id", "app-secret") as client:
        page = client.fetch_page()
        while page.next_cursor:
            page = client.fetch_page(cursor=page.next_cursor)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import httpx
import requests_toolbelt
import tenacity
from requests_toolbelt.utils.user_agent import user_agent

from privy_export import __version__
from privy_export.lib.backoff import BackoffController
from privy_export.lib.errors import (
    MalformedResponseError,
    NetworkFailureError,
    RateLimitedError,
    UpstreamError,
)
from privy_export.lib.resilience import RetryPolicy, retry_call

if TYPE_CHECKING:
    from privy_export.lib.config import ExportConfig

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_BASE_URL", "Page", "ClientStats", "PrivyClient", "parse_page"]

DEFAULT_BASE_URL = "https://auth.privy.io/api/v1"
USERS_ENDPOINT = "/users"
APP_ID_HEADER = "privy-app-id"

_USER_AGENT = user_agent(
    "privy-user-export",
    __version__,
    extras=[
        ("httpx", getattr(httpx, "__version__", "unknown")),
        ("tenacity", getattr(tenacity, "__version__", "unknown")),
        ("requests-toolbelt", getattr(requests_toolbelt, "__version__", "unknown")),
    ],
)


@dataclass
class Page:
    """One page of users plus the cursor for the next one (None on the last page)."""

    records: List[Dict[str, Any]]
    next_cursor: Optional[str] = None

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class ClientStats:
    requests: int = 0
    pages: int = 0
    rate_limited: int = 0
    network_failures: int = 0


def parse_page(body: Any) -> Page:
    """Validate the response shape and build a Page."""
    if not isinstance(body, dict):
        raise MalformedResponseError(
            "Invalid response format from Privy API: expected a JSON object",
            details={"type": type(body).__name__},
        )

    records = body.get("data")
    if not isinstance(records, list):
        raise MalformedResponseError(
            "Invalid response format from Privy API: 'data' must be an array",
            details={"type": type(records).__name__},
        )

    if "next_cursor" not in body:
        raise MalformedResponseError(
            "Invalid response format from Privy API: 'next_cursor' is missing"
        )
    next_cursor = body["next_cursor"]
    if next_cursor is not None and not isinstance(next_cursor, str):
        raise MalformedResponseError(
            "Invalid response format from Privy API: 'next_cursor' must be a string or null",
            details={"type": type(next_cursor).__name__},
        )

    for position, record in enumerate(records):
        if not isinstance(record, dict) or not record.get("id"):
            raise MalformedResponseError(
                "Invalid response format from Privy API: user without an id",
                details={"position": position},
            )

    return Page(records=records, next_cursor=next_cursor or None)


class PrivyClient:
    """Sequential, paced, retrying client for ``GET /users``."""

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        endpoint: str = USERS_ENDPOINT,
        timeout: float = 30.0,
        pacing_seconds: float = 2.0,
        backoff: Optional[BackoffController] = None,
        max_network_retries: int = 5,
        sleep: Callable[[float], None] = time.sleep,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not app_id or not app_secret:
            raise ValueError("app_id and app_secret are required")
        self.app_id = app_id
        self.endpoint = endpoint
        self.pacing_seconds = pacing_seconds
        self.stats = ClientStats()
        self._sleep = sleep

        backoff = backoff or BackoffController()
        self._policies = {
            RateLimitedError: RetryPolicy.unbounded(backoff),
            NetworkFailureError: RetryPolicy.capped(backoff, max_network_retries),
        }

        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            auth=httpx.BasicAuth(app_id, app_secret),
            headers={
                "Accept": "application/json",
                APP_ID_HEADER: app_id,
                "User-Agent": _USER_AGENT,
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: "ExportConfig",
        *,
        sleep: Callable[[float], None] = time.sleep,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "PrivyClient":
        return cls(
            config.app_id,
            config.app_secret,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            pacing_seconds=config.pacing_seconds,
            backoff=config.backoff(),
            max_network_retries=config.max_network_retries,
            sleep=sleep,
            transport=transport,
        )

    def __enter__(self) -> "PrivyClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request_once(self, params: Dict[str, str]) -> httpx.Response:
        self.stats.requests += 1
        try:
            response = self._http.get(self.endpoint, params=params)
        except httpx.TransportError as exc:
            self.stats.network_failures += 1
            raise NetworkFailureError(f"Network error: {exc}", cause=exc) from exc

        if response.status_code == 429:
            self.stats.rate_limited += 1
            raise RateLimitedError(
                "Rate limit exceeded",
                retry_after=response.headers.get("Retry-After"),
            )
        if not response.is_success:
            raise UpstreamError(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    def fetch_page(self, cursor: Optional[str] = None, since: Optional[int] = None) -> Page:
        """Fetch one page of users.

        Args:
            cursor: Cursor returned by the previous page (None = first page)
            since: Only return users created after this unix timestamp

        Raises:
            UpstreamError: Non-2xx response other than 429
            MalformedResponseError: Body does not look like a users page
            ExhaustedRetriesError: Network failures outlasted the retry budget
        """
        params: Dict[str, str] = {}
        if cursor:
            params["cursor"] = cursor
        if since is not None:
            params["created_after"] = str(since)

        logger.info("Fetching users from %s%s", self.endpoint, f" with {params}" if params else "")
        response = retry_call(
            self._request_once,
            params,
            policies=self._policies,
            sleep=self._sleep,
            operation="Fetching users page",
        )

        # Steady-state pacing, independent of any backoff already applied.
        self._sleep(self.pacing_seconds)

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                "Invalid response format from Privy API: body is not JSON",
                details={"error": str(exc)},
            ) from exc

        page = parse_page(body)
        self.stats.pages += 1
        return page
