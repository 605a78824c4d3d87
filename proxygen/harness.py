"""Live endpoint tests against an assembled ServerConfig.

Requests get the same header and credential treatment the generated
server applies. "Test all" runs strictly one endpoint at a time with a
fixed pause between requests so upstream rate limits are not tripped.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any
from urllib.parse import quote

import httpx

from .auth import apply_credentials
from .models import Endpoint, ServerConfig, TestResult
from .naming import route_param_name

logger = logging.getLogger(__name__)

TEST_TIMEOUT = 30.0
TEST_ALL_DELAY = 0.5  # seconds between sequential endpoint tests

_PLACEHOLDER_RE = re.compile(r"\{([^}]+)\}")

# Only GET sends its parameters in the query string; every other method sends a JSON body
_QUERY_METHODS = {"GET"}


def _substitute_path(path: str, values: dict[str, Any]) -> tuple[str, set[str]]:
    """Fill `{name}` placeholders from values; returns the path and the keys used."""
    by_route = {route_param_name(key): key for key in values}
    used: set[str] = set()

    def _fill(match: re.Match) -> str:
        key = by_route.get(match.group(1))
        if key is None or values[key] in (None, ""):
            return match.group(0)
        used.add(key)
        return quote(str(values[key]), safe="")

    return _PLACEHOLDER_RE.sub(_fill, path), used


def prepare_request(
    config: ServerConfig,
    endpoint: Endpoint,
    values: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build httpx request arguments for one endpoint test.

    GET puts the remaining values in the query string and sends no body;
    every other method, DELETE included, sends them as a JSON body with no
    query string (an API key configured as a query parameter is the
    exception).
    """
    values = dict(values or {})
    path, used = _substitute_path(endpoint.path, values)
    remaining = {k: v for k, v in values.items() if k not in used and v not in (None, "")}

    headers = {"Content-Type": "application/json"}
    headers.update(config.global_headers)
    params: dict[str, Any] = {}
    auth_flow = apply_credentials(config.authentication, headers, params)

    method = "POST" if endpoint.method == "GRAPHQL" else endpoint.method
    request: dict[str, Any] = {
        "method": method,
        "url": config.base_url + path,
        "headers": headers,
    }
    if method in _QUERY_METHODS:
        params.update(remaining)
    elif remaining:
        request["json"] = remaining
    if params:
        request["params"] = params
    if auth_flow is not None:
        request["auth"] = auth_flow
    return request


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


async def run_endpoint_test(
    config: ServerConfig,
    endpoint: Endpoint,
    values: dict[str, Any] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = TEST_TIMEOUT,
) -> TestResult:
    """Issue one live request and record the outcome.

    Network failures and timeouts become failed results, never exceptions.
    """
    if endpoint.method == "WEBSOCKET":
        return TestResult(
            endpoint_id=endpoint.id,
            success=False,
            error="WebSocket endpoints cannot be tested with a single HTTP request",
        )

    request = prepare_request(config, endpoint, values)
    started = time.perf_counter()
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own:
                response = await own.request(**request)
        else:
            response = await client.request(timeout=timeout, **request)
    except httpx.TimeoutException:
        elapsed = (time.perf_counter() - started) * 1000
        logger.warning("%s timed out after %ss", endpoint.tool_name, timeout)
        return TestResult(
            endpoint_id=endpoint.id,
            success=False,
            error=f"timed out after {timeout}s",
            response_time=round(elapsed, 2),
        )
    except httpx.HTTPError as exc:
        elapsed = (time.perf_counter() - started) * 1000
        logger.warning("%s failed: %s", endpoint.tool_name, exc)
        return TestResult(
            endpoint_id=endpoint.id,
            success=False,
            error=str(exc) or type(exc).__name__,
            response_time=round(elapsed, 2),
        )

    elapsed = (time.perf_counter() - started) * 1000
    success = response.is_success
    return TestResult(
        endpoint_id=endpoint.id,
        success=success,
        status_code=response.status_code,
        data=_decode(response),
        error=None if success else f"HTTP {response.status_code} {response.reason_phrase}".rstrip(),
        response_time=round(elapsed, 2),
    )


async def run_all_endpoint_tests(
    config: ServerConfig,
    values_by_id: dict[str, dict[str, Any]] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    delay: float = TEST_ALL_DELAY,
    timeout: float = TEST_TIMEOUT,
) -> list[TestResult]:
    """Test every enabled endpoint in order, pausing `delay` seconds between them."""
    values_by_id = values_by_id or {}
    results: list[TestResult] = []
    for index, endpoint in enumerate(config.enabled_endpoints()):
        if index:
            await asyncio.sleep(delay)
        result = await run_endpoint_test(
            config, endpoint, values_by_id.get(endpoint.id), client=client, timeout=timeout,
        )
        logger.info(
            "%s %s -> %s (%.0f ms)",
            endpoint.method, endpoint.path, result.status_code or result.error, result.response_time,
        )
        results.append(result)
    return results


class EndpointTester:
    """Keeps the most recent TestResult per endpoint id (last write wins)."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = TEST_TIMEOUT,
        delay: float = TEST_ALL_DELAY,
    ) -> None:
        self.config = config
        self.client = client
        self.timeout = timeout
        self.delay = delay
        self.results: dict[str, TestResult] = {}

    async def test_one(self, endpoint_id: str, values: dict[str, Any] | None = None) -> TestResult:
        endpoint = self.config.endpoint(endpoint_id)
        if endpoint is None:
            raise KeyError(f"unknown endpoint: {endpoint_id}")
        result = await run_endpoint_test(
            self.config, endpoint, values, client=self.client, timeout=self.timeout,
        )
        self.results[endpoint_id] = result
        return result

    async def test_all(self, values_by_id: dict[str, dict[str, Any]] | None = None) -> list[TestResult]:
        results = await run_all_endpoint_tests(
            self.config,
            values_by_id,
            client=self.client,
            delay=self.delay,
            timeout=self.timeout,
        )
        for result in results:
            self.results[result.endpoint_id] = result
        return results
