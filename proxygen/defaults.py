"""Sample endpoints for catalog entries that declare none.

Classification is a plain substring match on the free-text category. The
endpoint lists are illustrative placeholders so a spec-less API still gets
a usable server; nothing here is guaranteed to exist upstream.
"""

from __future__ import annotations

from .extractor import generic_endpoint_id
from .models import (
    CachingPolicy,
    Endpoint,
    EndpointDescriptor,
    Parameter,
    ParameterValidation,
)
from .naming import resolve_tool_name


def _get(path: str, tool_name: str, description: str, ttl: int, *params: Parameter) -> Endpoint:
    return Endpoint(
        id=generic_endpoint_id("GET", path),
        path=path,
        method="GET",
        tool_name=tool_name,
        description=description,
        parameters=list(params),
        caching=CachingPolicy(enabled=True, ttl=ttl),
    )


def _weather() -> list[Endpoint]:
    return [
        _get(
            "/current", "getCurrentWeather", "Get current weather for a location", 600,
            Parameter(name="location", required=True, description="City name or coordinates"),
            Parameter(
                name="units",
                description="Unit system",
                enum=["metric", "imperial", "kelvin"],
                default="metric",
            ),
        ),
    ]


def _finance() -> list[Endpoint]:
    return [
        _get(
            "/quote", "getStockPrice", "Get the latest price for a stock symbol", 60,
            Parameter(
                name="symbol",
                required=True,
                description="Ticker symbol, e.g. AAPL",
                example="AAPL",
                validation=ParameterValidation(pattern=r"^[A-Za-z.]{1,10}$"),
            ),
        ),
        _get(
            "/rates", "getExchangeRates", "Get currency exchange rates", 3600,
            Parameter(name="base", description="Base currency code", default="USD"),
            Parameter(name="symbols", description="Comma-separated currency codes"),
        ),
    ]


def _social() -> list[Endpoint]:
    return [
        _get(
            "/posts", "getPosts", "List recent posts", 300,
            Parameter(
                name="limit",
                type="number",
                description="Maximum number of posts",
                default=20,
                validation=ParameterValidation(min=1, max=100),
            ),
            Parameter(
                name="offset",
                type="number",
                description="Number of posts to skip",
                default=0,
                validation=ParameterValidation(min=0),
            ),
        ),
    ]


# Category substring -> endpoint factory, checked in order
_CATEGORIES = (
    ("weather", _weather),
    ("finance", _finance),
    ("social", _social),
)


def synthetic_endpoints(category: str, api_name: str) -> list[Endpoint]:
    """Best-effort endpoints for a category; one generic GET /api/data otherwise."""
    lowered = (category or "").lower()
    for keyword, factory in _CATEGORIES:
        if keyword in lowered:
            return factory()

    descriptor = EndpointDescriptor(path="/api/data", method="GET")
    tool_name = resolve_tool_name(descriptor, api_name)
    return [
        _get("/api/data", tool_name, f"Fetch data from {api_name or 'the API'}", 300),
    ]
