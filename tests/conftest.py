"""Shared test fixtures."""

from __future__ import annotations

import base64
import hashlib
import itertools

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide default settings for all tests."""
    monkeypatch.setenv("RETROCSP_UPSTREAM_URL", "http://mock-upstream:3000")
    monkeypatch.setenv("RETROCSP_LOG_JSON", "false")
    monkeypatch.setenv("RETROCSP_LOG_LEVEL", "debug")
    monkeypatch.delenv("RETROCSP_CONFIG_FILE", raising=False)
    monkeypatch.delenv("RETROCSP_PUBLIC_ORIGIN", raising=False)
    monkeypatch.delenv("RETROCSP_ENABLED_RETROFITTERS", raising=False)

    # Reset cached settings
    import retrocsp.config.loader as loader
    loader._settings = None
    yield
    loader._settings = None


@pytest.fixture
def nonce_factory():
    """Deterministic nonce factory: n0, n1, n2, ..."""
    counter = itertools.count()
    return lambda: f"n{next(counter)}"


@pytest.fixture
def sha256_source():
    """Build the 'sha256-...' source expression for a piece of code."""

    def _source(code: str) -> str:
        digest = base64.b64encode(hashlib.sha256(code.encode("utf-8")).digest()).decode("ascii")
        return f"'sha256-{digest}'"

    return _source


@pytest.fixture
def client():
    """Create a FastAPI test client."""
    import retrocsp.main as main_module
    main_module._pipeline = None
    main_module._http_client = None

    from retrocsp.main import app
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    main_module._pipeline = None
    main_module._http_client = None
