"""
Shared test fixtures and helpers.
"""
from __future__ import annotations

import asyncio
import json
from typing import Generator, List, Optional, Tuple

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from spa_proxy.routers import internal
from spa_proxy.routers.spa import use_spa_proxy
from spa_proxy.services.launch_options import ForwardingOptions
from spa_proxy.services.stats import StatsCollector, stats_collector
from spa_proxy.state import AppState, app_state


DESTINATION = "http://localhost:5173"


def make_request(
    method: str = "GET",
    path: str = "/",
    query: bytes = b"",
    headers: Optional[List[Tuple[bytes, bytes]]] = None,
    body: bytes = b"",
    disconnect: bool = False,
    disconnect_after_body: bool = False,
) -> Request:
    """
    Build a Starlette request straight from an ASGI scope.

    disconnect makes the caller go away before sending anything and
    disconnect_after_body right after the body. Otherwise receive() blocks
    once the body is delivered, like a caller waiting for its response.
    """
    if headers is None:
        headers = [(b"host", b"backend.local:5000")]
    if disconnect:
        messages = [{"type": "http.disconnect"}]
    else:
        messages = [{"type": "http.request", "body": body, "more_body": False}]
        if disconnect_after_body:
            messages.append({"type": "http.disconnect"})

    async def receive():
        if messages:
            return messages.pop(0)
        await asyncio.Event().wait()

    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query,
        "headers": headers,
        "server": ("backend.local", 5000),
        "client": ("127.0.0.1", 50000),
    }
    return Request(scope, receive)


@pytest.fixture
def forwarding_options() -> ForwardingOptions:
    """Forwarding to a local Vite-style dev server."""
    return ForwardingOptions(destination=DESTINATION, timeout=100.0)


@pytest.fixture
def restore_app_state() -> Generator[AppState, None, None]:
    """Reset app_state after a test installs forwarding."""
    original_options = app_state.options
    original_forwarder = app_state.forwarder

    yield app_state

    app_state.options = original_options
    app_state.forwarder = original_forwarder


@pytest.fixture(autouse=True)
def reset_stats():
    """Clear the shared stats collector around every test."""
    stats_collector._stats.clear()
    yield
    stats_collector._stats.clear()


@pytest.fixture
def spa_app(forwarding_options, restore_app_state) -> FastAPI:
    """Host app with one local API route, internal routes and SPA forwarding."""
    test_app = FastAPI()

    @test_app.get("/api/ping")
    async def ping():
        return {"pong": True}

    test_app.include_router(internal.router)
    use_spa_proxy(test_app, forwarding_options)
    return test_app


@pytest.fixture
def client(spa_app) -> TestClient:
    """Create a test client for the forwarding app."""
    return TestClient(spa_app)


@pytest.fixture
def fresh_stats_collector() -> StatsCollector:
    """Create a fresh StatsCollector instance for testing."""
    return StatsCollector()


def write_marker(path, section: Optional[dict] = None) -> str:
    """Write a launch manager marker file and return its path."""
    if section is None:
        section = {
            "ClientUrl": DESTINATION,
            "LaunchCommand": "npm run dev",
            "WorkingDirectory": "ClientApp",
            "MaxTimeoutInSeconds": 60,
        }
    path.write_text(json.dumps({"SpaProxyServer": section}))
    return str(path)


@pytest.fixture
def marker_file(tmp_path) -> str:
    """A valid spa.proxy.json in a temporary directory."""
    return write_marker(tmp_path / "spa.proxy.json")


@pytest.fixture
def mock_env(marker_file, monkeypatch):
    """Point the configuration at the temporary marker file."""
    monkeypatch.setenv("SPA_PROXY_MARKER_FILE", marker_file)
    monkeypatch.delenv("SPA_PROXY_CLIENT_URL", raising=False)
    monkeypatch.delenv("SPA_PROXY_TIMEOUT", raising=False)
    from spa_proxy.config import get_config
    get_config.cache_clear()
    yield
    get_config.cache_clear()
