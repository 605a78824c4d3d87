"""Shared fixtures for proxygen tests.

Network access is always replaced by httpx.MockTransport; nothing here
talks to a real upstream.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from proxygen.models import (
    ApiKeyAuth,
    CatalogAuth,
    CatalogEntry,
    CatalogRateLimit,
    Endpoint,
    Parameter,
    ServerConfig,
)

FIXTURES = Path(__file__).parent / "fixtures"

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def load_fixture(name: str) -> dict[str, Any]:
    return json.loads((FIXTURES / name).read_text(encoding="utf-8"))


@pytest.fixture
def weather_doc() -> dict[str, Any]:
    """OpenAPI 3 document: apiKey header auth, three paths, one ignored verb."""
    return load_fixture("weather_openapi.json")


@pytest.fixture
def petstore_doc() -> dict[str, Any]:
    """Swagger 2 document: host/basePath, body params, oauth2 implicit flow."""
    return load_fixture("petstore_swagger.json")


@pytest.fixture
def finance_entry() -> CatalogEntry:
    """Catalog entry with no endpoints and no spec identifier."""
    return CatalogEntry(
        id="",
        name="Stocks",
        base_url="api.stocks.example/",
        category="Finance",
        provider="stocks-example",
        authentication=CatalogAuth(type="apiKey", key_name="apikey", key_location="query"),
        rate_limit=CatalogRateLimit(requests=500, period="per day"),
    )


# ---------------------------------------------------------------------------
# Configs
# ---------------------------------------------------------------------------

def make_config(**overrides: Any) -> ServerConfig:
    """Small single-endpoint config for harness and codegen tests."""
    fields: dict[str, Any] = {
        "id": "cfg-1",
        "name": "Weather API",
        "base_url": "https://api.example.com",
        "provider": "weather",
        "authentication": ApiKeyAuth(header_name="X-API-Key"),
        "endpoints": [
            Endpoint(
                id="get--weather",
                path="/weather",
                method="GET",
                tool_name="currentWeather",
                description="Current weather",
                parameters=[Parameter(name="q", required=True)],
            ),
        ],
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }
    fields.update(overrides)
    return ServerConfig(**fields)


@pytest.fixture
def weather_config() -> ServerConfig:
    return make_config()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class Recorder:
    """MockTransport handler that records requests and replies from a callable."""

    def __init__(self, reply: Callable[[httpx.Request], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.reply = reply or (lambda request: httpx.Response(200, json={"ok": True}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.reply(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
async def mock_client(recorder: Recorder):
    """AsyncClient whose transport is the recorder."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        yield client
