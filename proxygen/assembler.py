"""Assemble a complete ServerConfig from an OpenAPI document or catalog entry.

Everything the source leaves unsaid is filled with fixed defaults: timeout,
retries, CORS, caching, monitoring, logging, rate limits and environment
variable names. Assembly either returns a full config or raises
ConversionError; it never hands back a partial result.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal

import httpx

from . import __version__
from .auth import (
    authentication_from_document,
    credential_env_names,
    env_prefix,
    map_catalog_auth,
)
from .defaults import synthetic_endpoints
from .errors import ConversionError, FetchError, ParseError, ProxygenError
from .extractor import extract_endpoints, generic_endpoint_id, resolve_base_url
from .loader import FETCH_TIMEOUT, get_paths, ingest_catalog_entry
from .models import (
    Authentication,
    CachingPolicy,
    CatalogEntry,
    CatalogRateLimit,
    CorsPolicy,
    Endpoint,
    EndpointDescriptor,
    GraphQLOptions,
    HealthCheckPolicy,
    LoggingPolicy,
    MetricsPolicy,
    MonitoringPolicy,
    RateLimitPolicy,
    RetryPolicy,
    ServerConfig,
    WebSocketOptions,
    WebSocketPolicy,
    utcnow,
)
from .naming import normalize_path, resolve_tool_name
from .schema_parser import map_request_body, map_response_mapping, parse_parameters, strip_html

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_CACHE_TTL = 300
DEFAULT_CACHE_SIZE = 1000
DEFAULT_WINDOW_MS = 60000

# Checked in order; the first word found in the period wins
_PERIOD_WINDOWS = (
    ("hour", 3_600_000),
    ("day", 86_400_000),
    ("daily", 86_400_000),
    ("minute", 60_000),
)

_ENDPOINT_METHODS = {"GET", "POST", "PUT", "DELETE", "PATCH", "WEBSOCKET", "GRAPHQL"}

MetricsFormat = Literal["json", "prometheus"]


def window_ms_for_period(period: str | None) -> int:
    """Map a human rate-limit period ("per hour", "daily", ...) to milliseconds."""
    text = (period or "").lower()
    for word, window in _PERIOD_WINDOWS:
        if word in text:
            return window
    return DEFAULT_WINDOW_MS


def _unique(name: str, used: set[str], reserved: set[str]) -> str:
    if name not in used:
        return name
    n = 2
    while f"{name}_{n}" in used or f"{name}_{n}" in reserved:
        n += 1
    return f"{name}_{n}"


def dedupe_tool_names(endpoints: list[Endpoint]) -> list[Endpoint]:
    """Give colliding tool names (and ids) stable numeric suffixes.

    The first occurrence keeps its name; later ones become `name_2`,
    `name_3`, ... in order of appearance, skipping names already present.
    """
    reserved_names = {e.tool_name for e in endpoints}
    reserved_ids = {e.id for e in endpoints}
    used_names: set[str] = set()
    used_ids: set[str] = set()
    result: list[Endpoint] = []

    for endpoint in endpoints:
        tool_name = _unique(endpoint.tool_name, used_names, reserved_names)
        endpoint_id = _unique(endpoint.id, used_ids, reserved_ids)
        used_names.add(tool_name)
        used_ids.add(endpoint_id)
        if tool_name != endpoint.tool_name or endpoint_id != endpoint.id:
            logger.debug("Renamed duplicate tool %s -> %s", endpoint.tool_name, tool_name)
            endpoint = endpoint.model_copy(update={"tool_name": tool_name, "id": endpoint_id})
        result.append(endpoint)
    return result


def _endpoint_caching(method: str) -> CachingPolicy:
    if method == "GET":
        return CachingPolicy(enabled=True, ttl=DEFAULT_CACHE_TTL)
    return CachingPolicy(enabled=False)


def _endpoint_from_descriptor(
    document: dict[str, Any],
    descriptor: EndpointDescriptor,
    api_name: str,
) -> Endpoint | None:
    method = descriptor.method.upper()
    if method not in _ENDPOINT_METHODS:
        logger.warning("Skipping %s %s: unsupported method", method, descriptor.path)
        return None

    description = strip_html(descriptor.summary or descriptor.description)
    return Endpoint(
        id=descriptor.id or generic_endpoint_id(method, descriptor.path),
        path=normalize_path(descriptor.path),
        method=method,
        tool_name=resolve_tool_name(descriptor, api_name),
        description=description or f"{method} {descriptor.path}",
        parameters=parse_parameters(document, descriptor.parameters),
        body=map_request_body(descriptor.request_body),
        response_mapping=map_response_mapping(descriptor.responses),
        caching=_endpoint_caching(method),
        websocket=WebSocketOptions() if method == "WEBSOCKET" else None,
        graphql=GraphQLOptions() if method == "GRAPHQL" else None,
    )


def _finalize_endpoint(endpoint: Endpoint, rate_limit: RateLimitPolicy | None) -> Endpoint:
    """Apply the per-endpoint defaults that depend on the final tool name."""
    update: dict[str, Any] = {
        "retries": RetryPolicy(
            count=DEFAULT_RETRIES, delay=DEFAULT_RETRY_DELAY_MS, backoff="exponential",
        ),
        "timeout": endpoint.timeout or DEFAULT_TIMEOUT_MS,
    }
    if endpoint.response_mapping is None:
        update["response_mapping"] = map_response_mapping({})
    if endpoint.caching is None:
        update["caching"] = _endpoint_caching(endpoint.method)
    caching = update.get("caching", endpoint.caching)
    if caching.enabled and not caching.key:
        update["caching"] = caching.model_copy(update={"key": f"{endpoint.tool_name}:{{url}}"})
    if rate_limit is not None:
        update["rate_limit"] = RateLimitPolicy(
            requests=max(1, rate_limit.requests // 10), window_ms=DEFAULT_WINDOW_MS,
        )
    return endpoint.model_copy(update=update)


def environment_for(auth: Authentication, provider: str) -> dict[str, str]:
    """Derived env var names for the auth variant, all with empty values."""
    prefix = env_prefix(provider)
    environment = {name: "" for name in credential_env_names(auth.type, prefix).values()}
    environment[f"{prefix}_BASE_URL"] = ""
    return environment


def _global_headers(category: str) -> dict[str, str]:
    headers = {"User-Agent": f"mcp-proxygen/{__version__}"}
    if "api" in (category or "").lower():
        headers["Accept"] = "application/json"
    return headers


def _assemble(
    *,
    name: str,
    description: str,
    base_url: str,
    endpoints: list[Endpoint],
    authentication: Authentication,
    provider: str,
    category: str,
    api_version: str,
    tags: list[str],
    documentation: str | None,
    rate_limit: CatalogRateLimit | None,
    metrics_format: MetricsFormat | None,
    server_id: str | None,
    now: datetime | None,
) -> ServerConfig:
    global_limit = None
    if rate_limit is not None and rate_limit.requests > 0:
        global_limit = RateLimitPolicy(
            requests=rate_limit.requests, window_ms=window_ms_for_period(rate_limit.period),
        )

    endpoints = [_finalize_endpoint(e, global_limit) for e in dedupe_tool_names(endpoints)]
    has_websocket = any(e.method == "WEBSOCKET" for e in endpoints)
    timestamp = now or utcnow()

    fields: dict[str, Any] = {
        "name": name,
        "description": description,
        "base_url": base_url,
        "endpoints": endpoints,
        "authentication": authentication,
        "global_headers": _global_headers(category),
        "rate_limit": global_limit,
        "caching": CachingPolicy(enabled=True, ttl=DEFAULT_CACHE_TTL, max_size=DEFAULT_CACHE_SIZE),
        "monitoring": MonitoringPolicy(
            enabled=True,
            health_check=HealthCheckPolicy(),
            metrics=MetricsPolicy(
                enabled=metrics_format is not None,
                export_format=metrics_format or "json",
            ),
        ),
        "logging": LoggingPolicy(),
        "timeout": DEFAULT_TIMEOUT_MS,
        "retries": DEFAULT_RETRIES,
        "cors": CorsPolicy(),
        "environment": environment_for(authentication, provider),
        "websocket": WebSocketPolicy(enabled=True) if has_websocket else None,
        "provider": provider,
        "category": category,
        "api_version": api_version,
        "tags": tags,
        "documentation": documentation,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    if server_id:
        fields["id"] = server_id
    return ServerConfig(**fields)


def build_config(
    document: dict[str, Any],
    *,
    fallback_base_url: str | None = None,
    provider: str | None = None,
    category: str = "",
    rate_limit: CatalogRateLimit | None = None,
    metrics_format: MetricsFormat | None = "json",
    server_id: str | None = None,
    now: datetime | None = None,
) -> ServerConfig:
    """Build a ServerConfig from a parsed OpenAPI 2.x/3.x document."""
    try:
        info = document.get("info") or {}
        title = str(info.get("title") or "API")
        provider = provider or info.get("x-providerName") or title

        endpoints = [
            e for e in (
                _endpoint_from_descriptor(document, d, title)
                for d in extract_endpoints(document)
            ) if e is not None
        ]
        if not endpoints:
            logger.info("%s declares no operations; using synthetic endpoints", title)
            endpoints = synthetic_endpoints(category, title)

        return _assemble(
            name=title,
            description=strip_html(str(info.get("description") or "")) or f"MCP server for {title}",
            base_url=resolve_base_url(document, fallback_base_url),
            endpoints=endpoints,
            authentication=authentication_from_document(document),
            provider=provider,
            category=category,
            api_version=str(info.get("version") or ""),
            tags=[t["name"] for t in document.get("tags") or [] if isinstance(t, dict) and t.get("name")],
            documentation=(document.get("externalDocs") or {}).get("url"),
            rate_limit=rate_limit,
            metrics_format=metrics_format,
            server_id=server_id,
            now=now,
        )
    except ProxygenError:
        raise
    except Exception as exc:
        raise ConversionError(str(exc)) from exc


def assemble_catalog_entry(
    entry: CatalogEntry,
    *,
    metrics_format: MetricsFormat | None = "json",
    server_id: str | None = None,
    now: datetime | None = None,
) -> ServerConfig:
    """Build a ServerConfig from a catalog entry, enriched or not.

    Endpoints come from the attached OpenAPI document when it has any
    operations, then from the entry's own list, then from the synthetic
    category defaults.
    """
    try:
        document = entry.open_api_spec if isinstance(entry.open_api_spec, dict) else {}

        descriptors: list[EndpointDescriptor] = []
        if get_paths(document):
            descriptors = extract_endpoints(document)
        if not descriptors:
            descriptors = list(entry.endpoints or [])

        endpoints = [
            e for e in (_endpoint_from_descriptor(document, d, entry.name) for d in descriptors)
            if e is not None
        ]
        if not endpoints:
            endpoints = synthetic_endpoints(entry.category, entry.name)

        if entry.authentication is not None:
            authentication = map_catalog_auth(entry.authentication)
        else:
            authentication = authentication_from_document(document)

        return _assemble(
            name=f"{entry.name} MCP Server",
            description=entry.description or f"MCP server for {entry.name}",
            base_url=entry.base_url or resolve_base_url(document),
            endpoints=endpoints,
            authentication=authentication,
            provider=entry.provider or entry.name,
            category=entry.category,
            api_version=entry.version,
            tags=list(entry.tags),
            documentation=entry.documentation,
            rate_limit=entry.rate_limit,
            metrics_format=metrics_format,
            server_id=server_id,
            now=now,
        )
    except ProxygenError:
        raise
    except Exception as exc:
        raise ConversionError(str(exc)) from exc


async def convert_catalog_entry(
    entry: CatalogEntry,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = FETCH_TIMEOUT,
    metrics_format: MetricsFormat | None = "json",
    server_id: str | None = None,
    now: datetime | None = None,
) -> ServerConfig:
    """Ingest the entry's OpenAPI document, then assemble.

    A failed fetch or parse is not fatal: the entry is assembled from its
    own metadata instead.
    """
    try:
        enriched = await ingest_catalog_entry(entry, client=client, timeout=timeout)
    except (FetchError, ParseError) as exc:
        logger.warning("Using catalog data for %s: %s", entry.name, exc)
        enriched = entry
    return assemble_catalog_entry(
        enriched, metrics_format=metrics_format, server_id=server_id, now=now,
    )
