"""Tests for URL routing, timeouts and transport errors in ApiClient."""

import asyncio

import httpx
import pytest

from clubclient.logging import (
    _add_correlation_id,
    correlation_scope,
    get_correlation_id,
    set_correlation_id,
)
from clubclient.service.client import ApiClient
from clubclient.service.errors import ApiError, NetworkError, RequestTimeoutError


class TestUrlRouting:
    """Only the application's own API goes through the auth pipeline."""

    def test_relative_api_path_is_routed(self, client):
        assert client.is_api_url(client.resolve_url("/api/tables"))
        assert client.is_api_url(client.resolve_url("api/tables"))

    def test_same_origin_outside_prefix_is_not_routed(self, client):
        assert not client.is_api_url("http://club.test/uploads/logo.png")
        assert not client.is_api_url("http://club.test/apix/tables")

    def test_other_origin_is_not_routed(self, client):
        assert not client.is_api_url("https://cdn.example.com/api/tables")
        assert not client.is_api_url("http://club.test:8080/api/tables")
        assert not client.is_api_url("https://club.test/api/tables")

    def test_base_url_with_path(self, token_store, events):
        client = ApiClient("https://host.test/club/", token_store, events=events)

        assert client.url_for("auth/refresh") == "https://host.test/club/api/auth/refresh"
        assert client.resolve_url("/api/orders") == "https://host.test/club/api/orders"
        assert not client.is_api_url("https://host.test/api/orders")
        assert client.is_api_url("https://host.test/club/api/orders")

    def test_custom_prefix(self, token_store, events):
        client = ApiClient("http://club.test", token_store, events=events, api_prefix="v2")

        assert client.api_prefix == "/v2/"
        assert client.url_for("/auth/login") == "http://club.test/v2/auth/login"
        assert client.is_api_url("http://club.test/v2/menu")
        assert not client.is_api_url("http://club.test/api/menu")

    @pytest.mark.asyncio
    async def test_third_party_url_bypasses_pipeline(self, client, backend, token_store):
        await token_store.set_tokens("A1", "R1")
        backend.expired_tokens.add("A1")
        backend.refresh_grants["R1"] = "A2"

        response = await client.request("GET", "https://images.example.com/api/logo.png")

        sent = backend.requests[-1]
        assert response.status_code == 401
        assert "Authorization" not in sent.headers
        assert "X-Request-ID" not in sent.headers
        assert backend.calls("/api/auth/refresh") == []

    @pytest.mark.asyncio
    async def test_same_origin_non_api_url_has_no_bearer(self, client, backend, token_store):
        await token_store.set_tokens("A1", "R1")

        response = await client.request("GET", "/health-check")

        assert response.json() == {"external": True}
        assert "Authorization" not in backend.requests[-1].headers


class TestCorrelationId:
    """One correlation ID spans a request, its refresh and its retry."""

    @pytest.mark.asyncio
    async def test_refresh_flow_shares_one_request_id(self, client, backend, token_store):
        await token_store.set_tokens("A1", "R1")
        backend.expired_tokens.add("A1")
        backend.refresh_grants["R1"] = "A2"

        await client.request("GET", "/api/tables")

        request_ids = {r.headers.get("X-Request-ID") for r in backend.requests}
        assert len(backend.requests) == 3
        assert len(request_ids) == 1
        assert None not in request_ids
        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_separate_requests_get_separate_ids(self, client, backend, token_store):
        await token_store.set_tokens("A1", "R1")
        backend.valid_tokens.add("A1")

        await client.request("GET", "/api/tables")
        await client.request("GET", "/api/menu")

        first, second = (r.headers["X-Request-ID"] for r in backend.requests)
        assert first != second

    @pytest.mark.asyncio
    async def test_enclosing_id_is_reused(self, client, backend, token_store):
        await token_store.set_tokens("A1", "R1")
        backend.valid_tokens.add("A1")
        set_correlation_id("cli-run-1")

        await client.request("GET", "/api/tables")

        assert backend.requests[-1].headers["X-Request-ID"] == "cli-run-1"
        assert get_correlation_id() == "cli-run-1"

    def test_log_entries_carry_the_active_id(self):
        with correlation_scope() as correlation_id:
            entry = _add_correlation_id(None, "info", {"event": "token_refresh_succeeded"})

        assert entry["correlation_id"] == correlation_id
        assert "correlation_id" not in _add_correlation_id(None, "info", {"event": "x"})


class TestTransportErrors:
    """Timeouts and connectivity failures surface as distinct errors."""

    @pytest.mark.asyncio
    async def test_slow_response_raises_timeout(self, token_store, events):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={})

        client = ApiClient(
            "http://club.test",
            token_store,
            events=events,
            timeout=0.05,
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(RequestTimeoutError) as exc_info:
            await client.request("GET", "/api/tables")

        assert "timed out" in exc_info.value.message
        assert exc_info.value.error_code == "timeout"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_per_request_timeout_overrides_default(self, token_store, events):
        async def handler(request):
            await asyncio.sleep(0.2)
            return httpx.Response(200, json={"ok": True})

        client = ApiClient(
            "http://club.test",
            token_store,
            events=events,
            timeout=0.01,
            transport=httpx.MockTransport(handler),
        )

        body = await client.get_json("/api/health", timeout=2.0)

        assert body == {"ok": True}

    @pytest.mark.asyncio
    async def test_httpx_timeout_is_mapped(self, token_store, events):
        def handler(request):
            raise httpx.ReadTimeout("read timed out")

        client = ApiClient(
            "http://club.test", token_store, events=events, transport=httpx.MockTransport(handler)
        )

        with pytest.raises(RequestTimeoutError):
            await client.request("GET", "/api/tables")

    @pytest.mark.asyncio
    async def test_connect_error_raises_network_error(self, token_store, events):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = ApiClient(
            "http://club.test", token_store, events=events, transport=httpx.MockTransport(handler)
        )

        with pytest.raises(NetworkError) as exc_info:
            await client.request("GET", "/api/tables")

        assert "http://club.test" in exc_info.value.message
        assert not isinstance(exc_info.value, RequestTimeoutError)


class TestJsonHelpers:
    """Decoding of success and error bodies."""

    @pytest.mark.asyncio
    async def test_error_body_becomes_api_error(self, token_store, events):
        def handler(request):
            return httpx.Response(404, json={"error": "Table not found", "code": "NOT_FOUND"})

        client = ApiClient(
            "http://club.test", token_store, events=events, transport=httpx.MockTransport(handler)
        )

        with pytest.raises(ApiError) as exc_info:
            await client.get_json("/api/tables/99")

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Table not found"
        assert exc_info.value.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_error_without_body_uses_status(self, token_store, events):
        def handler(request):
            return httpx.Response(502)

        client = ApiClient(
            "http://club.test", token_store, events=events, transport=httpx.MockTransport(handler)
        )

        with pytest.raises(ApiError) as exc_info:
            await client.delete_json("/api/menu/1")

        assert exc_info.value.message == "HTTP error! status: 502"

    @pytest.mark.asyncio
    async def test_empty_success_body_is_none(self, token_store, events):
        def handler(request):
            return httpx.Response(204)

        client = ApiClient(
            "http://club.test", token_store, events=events, transport=httpx.MockTransport(handler)
        )

        assert await client.delete_json("/api/menu/1") is None

    @pytest.mark.asyncio
    async def test_non_json_success_body_raises(self, token_store, events):
        def handler(request):
            return httpx.Response(200, text="<html>")

        client = ApiClient(
            "http://club.test", token_store, events=events, transport=httpx.MockTransport(handler)
        )

        with pytest.raises(ApiError):
            await client.get_json("/api/menu")

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_client(self, token_store, events, backend):
        async with ApiClient(
            "http://club.test", token_store, events=events, transport=backend.transport()
        ) as client:
            await client.request("GET", "/api/tables")

        assert client.http.is_closed

    @pytest.mark.asyncio
    async def test_injected_http_client_is_not_closed(self, token_store, events, backend):
        http = httpx.AsyncClient(transport=backend.transport())
        client = ApiClient("http://club.test", token_store, events=events, http=http)

        await client.aclose()

        assert not http.is_closed
        await http.aclose()
