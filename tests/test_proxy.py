"""Reverse proxy forwarding and retrofitting tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from retrocsp.config.loader import get_settings
from retrocsp.main import _build_pipeline, app

HTML = b"<html><head><title>t</title></head><body>hi</body></html>"


@pytest.fixture
def proxy_client():
    """Test client with mocked HTTP client and pipeline."""
    import retrocsp.main as main_module

    mock_response = httpx.Response(
        status_code=200,
        headers={"content-type": "application/json", "x-custom": "value"},
        content=b'{"message": "upstream response"}',
    )

    mock_http = AsyncMock()
    mock_http.request = AsyncMock(return_value=mock_response)

    with TestClient(app, raise_server_exceptions=False) as c:
        # Set mocks AFTER lifespan runs so they don't get overwritten
        main_module._http_client = mock_http
        main_module._pipeline = _build_pipeline()
        yield c, mock_http

    main_module._http_client = None
    main_module._pipeline = None


def _upstream_html(mock_http, headers):
    mock_http.request.return_value = httpx.Response(
        status_code=200,
        headers=[("content-type", "text/html; charset=utf-8"), *headers],
        content=HTML,
    )


class TestForwarding:
    def test_get_forwarding(self, proxy_client):
        """GET requests are forwarded to upstream."""
        client, mock_http = proxy_client
        resp = client.get("/api/users")
        assert resp.status_code == 200
        assert resp.json()["message"] == "upstream response"
        call_kwargs = mock_http.request.call_args.kwargs
        assert call_kwargs["method"] == "GET"
        assert call_kwargs["url"] == "http://mock-upstream:3000/api/users"

    def test_query_string_forwarded(self, proxy_client):
        client, mock_http = proxy_client
        client.get("/search?q=csp&page=2")
        assert mock_http.request.call_args.kwargs["url"].endswith("/search?q=csp&page=2")

    def test_post_body_forwarded(self, proxy_client):
        client, mock_http = proxy_client
        resp = client.post("/api/users", content=b"name=test")
        assert resp.status_code == 200
        call_kwargs = mock_http.request.call_args.kwargs
        assert call_kwargs["method"] == "POST"
        assert call_kwargs["content"] == b"name=test"

    def test_request_headers(self, proxy_client):
        """Custom headers are forwarded; host is not; a request id is added."""
        client, mock_http = proxy_client
        client.get("/test", headers={"X-Custom-Header": "test-value"})
        forwarded = mock_http.request.call_args.kwargs["headers"]
        assert forwarded.get("x-custom-header") == "test-value"
        assert "host" not in {key.lower() for key in forwarded}
        assert len(forwarded["x-request-id"]) == 8

    def test_response_headers_preserved(self, proxy_client):
        client, _ = proxy_client
        resp = client.get("/test")
        assert resp.headers["x-custom"] == "value"
        assert len(resp.headers["x-request-id"]) == 8

    def test_not_initialized(self, proxy_client):
        import retrocsp.main as main_module

        client, _ = proxy_client
        main_module._http_client = None
        assert client.get("/test").status_code == 503


class TestUpstreamErrors:
    def test_timeout(self, proxy_client):
        client, mock_http = proxy_client
        mock_http.request.side_effect = httpx.ConnectTimeout("timed out")
        assert client.get("/slow").status_code == 504

    def test_connect_error(self, proxy_client):
        client, mock_http = proxy_client
        mock_http.request.side_effect = httpx.ConnectError("refused")
        assert client.get("/down").status_code == 502

    def test_other_http_error(self, proxy_client):
        client, mock_http = proxy_client
        mock_http.request.side_effect = httpx.RemoteProtocolError("bad framing")
        assert client.get("/broken").status_code == 502


class TestBodyLimits:
    def test_request_body_too_large(self, proxy_client):
        client, mock_http = proxy_client
        get_settings().max_body_bytes = 10
        resp = client.post("/upload", content=b"x" * 100)
        assert resp.status_code == 413
        mock_http.request.assert_not_called()

    def test_upstream_response_too_large(self, proxy_client):
        client, _ = proxy_client
        get_settings().max_body_bytes = 10
        assert client.get("/big").status_code == 502


class TestRetrofitting:
    def test_html_response_retrofitted(self, proxy_client):
        client, mock_http = proxy_client
        _upstream_html(mock_http, [("content-security-policy", "script-src 'strict-dynamic' https:; navigate-to 'self'")])
        resp = client.get("/")
        assert resp.status_code == 200

        header = resp.headers["content-security-policy"]
        assert "https:" not in header
        assert header.endswith("navigate-to 'self'; form-action 'self'")
        assert "window.__retroCSP" in resp.text
        assert resp.headers["content-length"] == str(len(resp.content))

    def test_multiple_upstream_policies(self, proxy_client):
        client, mock_http = proxy_client
        _upstream_html(mock_http, [
            ("content-security-policy", "navigate-to 'self'"),
            ("content-security-policy", "navigate-to https://other.test"),
        ])
        resp = client.get("/")
        assert resp.headers["content-security-policy"] == (
            "navigate-to 'self'; form-action 'self', "
            "navigate-to https://other.test; form-action https://other.test"
        )
        assert '"navigateToDirectives":[["\'self\'"],["https://other.test"]]' in resp.text

    def test_html_without_policy_untouched(self, proxy_client):
        client, mock_http = proxy_client
        _upstream_html(mock_http, [])
        resp = client.get("/")
        assert resp.content == HTML
        assert "content-security-policy" not in resp.headers

    def test_json_untouched(self, proxy_client):
        client, mock_http = proxy_client
        mock_http.request.return_value = httpx.Response(
            status_code=200,
            headers={"content-type": "application/json", "content-security-policy": "navigate-to 'self'"},
            content=b"{}",
        )
        resp = client.get("/api")
        assert resp.headers["content-security-policy"] == "navigate-to 'self'"
        assert resp.content == b"{}"
