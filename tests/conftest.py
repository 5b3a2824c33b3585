"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from privy_export.lib.config import ExportConfig  # noqa: E402

NETWORK_FAILURE = "network"


class SleepRecorder:
    """Stands in for time.sleep and remembers every requested delay."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


class FakePrivyApi:
    """In-memory /users endpoint served through httpx.MockTransport.

    Pages are keyed by the cursor that requests them (None = first page).
    ``fail`` queues responses that are served, in order, before the real page
    for a cursor: an int is returned as that HTTP status, NETWORK_FAILURE
    raises httpx.ConnectError and an httpx.Response is served as is.
    """

    NETWORK_FAILURE = NETWORK_FAILURE

    def __init__(self) -> None:
        self.pages: Dict[Optional[str], Tuple[List[Dict[str, Any]], Optional[str]]] = {}
        self.failures: Dict[Optional[str], List[Any]] = {}
        self.requests: List[httpx.Request] = []

    def add_page(
        self,
        cursor: Optional[str],
        users: List[Dict[str, Any]],
        next_cursor: Optional[str],
    ) -> "FakePrivyApi":
        self.pages[cursor] = (users, next_cursor)
        return self

    def fail(self, cursor: Optional[str], *items: Any) -> "FakePrivyApi":
        self.failures.setdefault(cursor, []).extend(items)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        cursor = request.url.params.get("cursor")

        pending = self.failures.get(cursor)
        if pending:
            item = pending.pop(0)
            if item == NETWORK_FAILURE:
                raise httpx.ConnectError("connection refused", request=request)
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(item, text="scripted failure")

        users, next_cursor = self.pages[cursor]
        since = request.url.params.get("created_after")
        if since is not None:
            users = [u for u in users if u["created_at"] > int(since)]
        return httpx.Response(200, json={"data": users, "next_cursor": next_cursor})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def cursors_requested(self) -> List[Optional[str]]:
        return [r.url.params.get("cursor") for r in self.requests]


def make_user(
    user_id: str,
    created_at: int = 1_700_000_000,
    *,
    email: Optional[str] = None,
    wallet: Optional[str] = None,
    is_guest: bool = False,
) -> Dict[str, Any]:
    linked: List[Dict[str, Any]] = []
    if email:
        linked.append({"type": "email", "address": email})
    if wallet:
        linked.append({"type": "wallet", "address": wallet, "chain_type": "ethereum"})
    return {
        "id": user_id,
        "created_at": created_at,
        "is_guest": is_guest,
        "linked_accounts": linked,
    }


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def privy_api() -> FakePrivyApi:
    return FakePrivyApi()


@pytest.fixture
def user():
    """Factory for upstream user records."""
    return make_user


@pytest.fixture
def export_config(tmp_path):
    """Factory for an ExportConfig writing all files under tmp_path."""

    def _make(**overrides: Any) -> ExportConfig:
        values: Dict[str, Any] = {
            "app_id": "app-123",
            "app_secret": "secret-456",
            "base_url": "https://privy.test/api/v1",
            "output_file": str(tmp_path / "users.csv"),
            "cursor_file": str(tmp_path / "privy_cursor.txt"),
            "timestamp_file": str(tmp_path / "last_fetch_timestamp.txt"),
            "jitter_factor": 0.0,
        }
        values.update(overrides)
        return ExportConfig(**values)

    return _make


@pytest.fixture(autouse=True)
def clean_export_env(monkeypatch):
    """Keep real PRIVY_* / export variables out of every test.

    Each variable is registered with monkeypatch first so values loaded from
    a .env file during a test are removed again afterwards.
    """
    for var in (
        "PRIVY_APP_ID",
        "PRIVY_APP_SECRET",
        "PRIVY_API_URL",
        "OUTPUT_FILE",
        "CURSOR_FILE",
        "TIMESTAMP_FILE",
        "PASS_START_FILE",
        "FETCH_NEW_ONLY",
        "UNIQUE_FILES",
        "EXPORT_LOG_LEVEL",
        "EXPORT_LOG_FORMAT",
    ):
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
