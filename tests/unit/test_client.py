"""Tests for the Privy users API client.

HTTP is served by httpx.MockTransport via the privy_api fixture; sleeps are
recorded, never performed.
"""

import base64

import httpx
import pytest

from privy_export.lib.backoff import BackoffController
from privy_export.lib.client import Page, PrivyClient, parse_page
from privy_export.lib.errors import ExhaustedRetriesError, MalformedResponseError, UpstreamError


@pytest.fixture
def make_client(sleeps):
    clients = []

    def _make(transport, **kwargs):
        kwargs.setdefault("base_url", "https://privy.test/api/v1")
        kwargs.setdefault("backoff", BackoffController(jitter_factor=0.0))
        client = PrivyClient("app-123", "secret-456", sleep=sleeps, transport=transport, **kwargs)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


class TestParsePage:
    """Response shape validation."""

    def test_valid_page(self, user):
        page = parse_page({"data": [user("u1")], "next_cursor": "c2"})
        assert isinstance(page, Page)
        assert len(page) == 1
        assert page.next_cursor == "c2"
        assert not page.is_last

    def test_null_cursor_is_last_page(self):
        page = parse_page({"data": [], "next_cursor": None})
        assert page.is_last
        assert len(page) == 0

    def test_empty_string_cursor_is_normalised(self):
        assert parse_page({"data": [], "next_cursor": ""}).next_cursor is None

    @pytest.mark.parametrize(
        "body",
        [
            [],
            "not an object",
            {"next_cursor": None},
            {"data": None, "next_cursor": None},
            {"data": {"id": "u1"}, "next_cursor": None},
            {"data": []},
            {"data": [], "next_cursor": 5},
            {"data": [{"created_at": 1}], "next_cursor": None},
            {"data": ["u1"], "next_cursor": None},
        ],
    )
    def test_malformed_bodies(self, body):
        with pytest.raises(MalformedResponseError):
            parse_page(body)


class TestFetchPage:
    """Request building, pacing and error mapping."""

    def test_first_page_has_no_query(self, privy_api, make_client, user):
        privy_api.add_page(None, [user("u1")], "c2")
        client = make_client(privy_api.transport)

        page = client.fetch_page()

        assert [r["id"] for r in page.records] == ["u1"]
        assert page.next_cursor == "c2"
        request = privy_api.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/api/v1/users"
        assert request.url.query == b""

    def test_cursor_and_since_parameters(self, privy_api, make_client, user):
        privy_api.add_page("c2", [user("u2", 1_700_000_500)], None)
        client = make_client(privy_api.transport)

        client.fetch_page(cursor="c2", since=1_700_000_000)

        params = privy_api.requests[0].url.params
        assert params["cursor"] == "c2"
        assert params["created_after"] == "1700000000"

    def test_sends_basic_auth_and_app_id_header(self, privy_api, make_client):
        privy_api.add_page(None, [], None)
        client = make_client(privy_api.transport)

        client.fetch_page()

        headers = privy_api.requests[0].headers
        expected = base64.b64encode(b"app-123:secret-456").decode()
        assert headers["authorization"] == f"Basic {expected}"
        assert headers["privy-app-id"] == "app-123"
        assert headers["user-agent"].startswith("privy-user-export/")

    def test_pacing_sleep_after_success(self, privy_api, make_client, sleeps):
        privy_api.add_page(None, [], None)
        client = make_client(privy_api.transport, pacing_seconds=2.0)

        client.fetch_page()

        assert sleeps.calls == [2.0]

    def test_rate_limited_three_times_then_success(self, privy_api, make_client, sleeps, user):
        privy_api.add_page(None, [user("u1")], None).fail(None, 429, 429, 429)
        client = make_client(privy_api.transport, pacing_seconds=2.0)

        page = client.fetch_page()

        assert len(page) == 1
        assert len(privy_api.requests) == 4
        # three backoff sleeps, then the pacing sleep
        assert sleeps.calls == [2.0, 4.0, 8.0, 2.0]
        assert client.stats.rate_limited == 3
        assert client.stats.requests == 4
        assert client.stats.pages == 1

    def test_retry_after_header_sets_minimum_wait(self, privy_api, make_client, sleeps, user):
        privy_api.add_page(None, [user("u1")], None)
        privy_api.fail(None, httpx.Response(429, headers={"Retry-After": "7"}))
        client = make_client(privy_api.transport, pacing_seconds=2.0)

        client.fetch_page()

        assert sleeps.calls == [7.0, 2.0]
        assert client.stats.rate_limited == 1

    def test_network_failures_exhaust_after_five_retries(self, privy_api, make_client, sleeps):
        privy_api.add_page(None, [], None).fail(None, *[privy_api.NETWORK_FAILURE] * 6)
        client = make_client(privy_api.transport)

        with pytest.raises(ExhaustedRetriesError) as exc_info:
            client.fetch_page()

        assert len(privy_api.requests) == 6
        assert sleeps.calls == [2.0, 4.0, 8.0, 16.0, 32.0]
        assert isinstance(exc_info.value.last_error.cause, httpx.ConnectError)
        assert client.stats.network_failures == 6

    def test_network_failure_recovers(self, privy_api, make_client, sleeps, user):
        privy_api.add_page(None, [user("u1")], None).fail(None, privy_api.NETWORK_FAILURE)
        client = make_client(privy_api.transport, pacing_seconds=2.0)

        page = client.fetch_page()

        assert len(page) == 1
        assert sleeps.calls == [2.0, 2.0]

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 500, 503])
    def test_other_errors_are_fatal(self, privy_api, make_client, sleeps, status):
        privy_api.add_page(None, [], None).fail(None, status)
        client = make_client(privy_api.transport)

        with pytest.raises(UpstreamError) as exc_info:
            client.fetch_page()

        assert exc_info.value.status_code == status
        assert exc_info.value.message == f"HTTP error! status: {status}"
        assert len(privy_api.requests) == 1
        assert sleeps.calls == []

    def test_non_json_body_is_malformed(self, make_client):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        client = make_client(transport)

        with pytest.raises(MalformedResponseError, match="not JSON"):
            client.fetch_page()

    def test_malformed_body_is_not_retried(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"users": []})

        client = make_client(httpx.MockTransport(handler))

        with pytest.raises(MalformedResponseError):
            client.fetch_page()

        assert len(calls) == 1


class TestClientConstruction:
    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            PrivyClient("", "secret")

    def test_from_config(self, export_config, privy_api, sleeps):
        config = export_config(rate_limit_seconds=1.0, max_requests_per_minute=20)
        privy_api.add_page(None, [], None)

        with PrivyClient.from_config(config, sleep=sleeps, transport=privy_api.transport) as client:
            assert client.pacing_seconds == 3.0
            client.fetch_page()

        assert privy_api.requests[0].url.host == "privy.test"
        assert sleeps.calls == [3.0]
