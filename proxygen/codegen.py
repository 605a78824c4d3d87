"""Render a ServerConfig into the source of a Starlette proxy server.

Each piece is a small render function with a string contract: parameter
validation, inbound auth, upstream auth headers, one handler per endpoint
kind. `generate` composes them into server.py. No flag reaches the output
unless the config turns the feature on.
"""

from __future__ import annotations

import ast
import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import jinja2

from . import __version__
from .auth import credential_env_names, env_prefix
from .errors import ConversionError
from .models import Authentication, Endpoint, ServerConfig
from .naming import python_identifier, route_param_name

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

# Config log level -> Python logging level name
_LOG_LEVELS = {"debug": "DEBUG", "info": "INFO", "warn": "WARNING", "error": "ERROR"}

_ENDPOINT_TEMPLATES = {
    "WEBSOCKET": "websocket_endpoint.py.j2",
    "GRAPHQL": "graphql_endpoint.py.j2",
}

_BODY_METHODS = {"POST", "PUT", "PATCH"}

_LIMIT_UNITS = {"string": " characters", "array": " items", "object": " keys"}


def _oneline(text: str) -> str:
    """Collapse whitespace and escape for use inside a triple-quoted docstring."""
    text = re.sub(r"\s+", " ", str(text or "")).strip()
    return text.replace("\\", "\\\\").replace('"', '\\"')


@lru_cache(maxsize=1)
def _env() -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=jinja2.StrictUndefined,
    )
    env.filters["pyrepr"] = repr
    env.filters["oneline"] = _oneline
    return env


def _render(template: str, **context: Any) -> str:
    return _env().get_template(template).render(**context).rstrip() + "\n"


def _handler_names(endpoints: list[Endpoint]) -> dict[str, str]:
    """Endpoint id -> unique snake_case suffix for generated functions."""
    names: dict[str, str] = {}
    used: set[str] = set()
    for endpoint in endpoints:
        base = python_identifier(endpoint.tool_name)
        name, n = base, 2
        while name in used:
            name = f"{base}_{n}"
            n += 1
        used.add(name)
        names[endpoint.id] = name
    return names


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _limit_text(value: float, kind: str) -> str:
    number = int(value) if float(value).is_integer() else value
    return f"{number}{_LIMIT_UNITS.get(kind, '')}"


def _validation_rules(endpoint: Endpoint) -> list[dict[str, Any]]:
    rules = []
    for param in endpoint.parameters:
        validation = param.validation
        minimum = validation.min if validation else None
        maximum = validation.max if validation else None
        pattern = validation.pattern if validation else None
        fmt = validation.format if validation else None
        if not (param.required or minimum is not None or maximum is not None or pattern or fmt):
            continue
        rules.append({
            "name": param.name,
            "kind": param.type,
            "required": param.required,
            "min": minimum,
            "max": maximum,
            "min_text": _limit_text(minimum, param.type) if minimum is not None else "",
            "max_text": _limit_text(maximum, param.type) if maximum is not None else "",
            "pattern": pattern,
            "format": fmt,
        })
    return rules


def render_parameter_validation(endpoint: Endpoint, fn: str | None = None) -> str:
    """`validate_<tool>(values)` with one clause per declared rule, or ""."""
    rules = _validation_rules(endpoint)
    if not rules:
        return ""
    fn = fn or f"validate_{python_identifier(endpoint.tool_name)}"
    return _render("validation.py.j2", fn=fn, rules=rules)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def generate_auth_header_code(auth: Authentication, prefix: str = "API") -> str:
    """Upstream credential injection for one variant, guarded by AUTH_TYPE.

    The block runs inside `apply_upstream_auth` with `request_kwargs`,
    `headers` and `credentials` in scope. `none` yields only a comment.
    """
    jwt_claims = []
    if auth.type == "jwt":
        jwt_claims = [
            (claim, value)
            for claim, value in (("iss", auth.issuer), ("aud", auth.audience), ("sub", auth.subject))
            if value
        ]
    before_request = auth.before_request.strip() if auth.type == "custom" else ""
    return _render(
        "auth_headers.py.j2",
        auth=auth,
        env=credential_env_names(auth.type, prefix),
        jwt_claims=jwt_claims,
        before_request=before_request,
    )


def render_auth_middleware(auth: Authentication, prefix: str = "API") -> str:
    """The single inbound `authenticate()` function for the server."""
    context: dict[str, Any] = {
        "auth": auth,
        "env": credential_env_names(auth.type, prefix),
        "missing_key_message": "",
        "digest_challenge": "",
    }
    if auth.type == "apikey":
        context["missing_key_message"] = f"Missing API key: send the {auth.header_name} header"
    elif auth.type == "digest":
        context["digest_challenge"] = f'Digest realm="{auth.realm}", qop="{auth.qop}"'
    return _render("auth_check.py.j2", **context)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

def _rate_limited(config: ServerConfig) -> bool:
    return config.rate_limit is not None or any(
        e.rate_limit is not None for e in config.enabled_endpoints()
    )


def render_endpoint(endpoint: Endpoint, config: ServerConfig, fn: str | None = None) -> str:
    """Handler source for one REST, WebSocket or GraphQL endpoint."""
    suffix = fn or python_identifier(endpoint.tool_name)
    limiter = f"LIMITER_{suffix.upper()}" if endpoint.rate_limit is not None else None
    context: dict[str, Any] = {
        "endpoint": endpoint,
        "fn": f"handle_{suffix}",
        "limiter": limiter,
        "rate_limited": _rate_limited(config),
        "timeout": (endpoint.timeout or config.timeout) / 1000,
    }

    if endpoint.method == "WEBSOCKET":
        options = endpoint.websocket
        if options is not None:
            heartbeat = options.heartbeat
        else:
            heartbeat = config.websocket.ping_interval if config.websocket else 30000
        context.update({
            "heartbeat": heartbeat / 1000,
            "message_handler": (options.message_handler or "").strip() if options else "",
            "close_handler": (options.connection_handler or "").strip() if options else "",
        })
        return _render(_ENDPOINT_TEMPLATES["WEBSOCKET"], **context)

    if endpoint.method == "GRAPHQL":
        context["operation_type"] = endpoint.graphql.operation_type if endpoint.graphql else "query"
        return _render(_ENDPOINT_TEMPLATES["GRAPHQL"], **context)

    validate_fn = f"validate_{suffix}"
    mapping = endpoint.response_mapping
    caching = endpoint.caching
    cache_enabled = bool(caching and caching.enabled and config.caching and config.caching.enabled)
    context.update({
        "validation": render_parameter_validation(endpoint, validate_fn).rstrip(),
        "validate_fn": validate_fn,
        "sends_body": endpoint.method in _BODY_METHODS,
        "path_params": [
            (p.name, route_param_name(p.name))
            for p in endpoint.parameters if p.location == "path"
        ],
        "header_params": [p.name for p in endpoint.parameters if p.location == "header"],
        "cookie_params": [p.name for p in endpoint.parameters if p.location == "cookie"],
        "cache_key": (caching.key or f"{endpoint.tool_name}:{{url}}") if cache_enabled else None,
        "status_codes": mapping.status_codes if mapping else [200],
        "success_path": mapping.success_path if mapping else None,
        "error_path": mapping.error_path if mapping else None,
    })
    return _render("rest_endpoint.py.j2", **context)


def _route(endpoint: Endpoint, fn: str) -> str:
    if endpoint.method == "WEBSOCKET":
        return f"WebSocketRoute({endpoint.path!r}, handle_{fn})"
    method = "POST" if endpoint.method == "GRAPHQL" else endpoint.method
    return f"Route({endpoint.path!r}, handle_{fn}, methods=[{method!r}])"


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

def _config_document(config: ServerConfig) -> str:
    """Config JSON embedded in the server, without stored credentials."""
    document = config.to_document()
    document["authentication"].pop("credentials", None)
    return json.dumps(document, sort_keys=True)


def generate(config: ServerConfig) -> str:
    """Render the complete server module for a config."""
    auth = config.authentication
    prefix = env_prefix(config.provider or config.name)
    endpoints = config.enabled_endpoints()
    names = _handler_names(endpoints)

    handlers = [render_endpoint(e, config, names[e.id]).rstrip() for e in endpoints]
    monitoring = config.monitoring
    metrics = None
    if monitoring is not None and monitoring.enabled and monitoring.metrics.enabled:
        metrics = monitoring.metrics
    health_path = monitoring.health_check.endpoint if monitoring is not None else "/health"

    code = _render(
        "server.py.j2",
        config=config,
        auth=auth,
        version=__version__,
        service_version=config.api_version or "1.0.0",
        config_json=_config_document(config),
        base_url_env=f"{prefix}_BASE_URL",
        env=credential_env_names(auth.type, prefix),
        env_names=list(credential_env_names(auth.type, prefix).values()),
        log_level=_LOG_LEVELS[config.logging.level],
        logger_name=python_identifier(config.name) or "proxy",
        endpoint_count=len(endpoints),
        mtls=auth.type == "mutual-tls",
        cors=config.cors if config.cors.enabled else None,
        metrics=metrics,
        track_requests=metrics is not None or config.logging.requests,
        log_requests=config.logging.requests,
        rate_limited=_rate_limited(config),
        global_limit=config.rate_limit,
        use_cache=any(
            e.caching and e.caching.enabled for e in endpoints
            if e.method not in _ENDPOINT_TEMPLATES
        ) and bool(config.caching and config.caching.enabled),
        cache_size=(config.caching.max_size if config.caching else None) or 1000,
        has_websocket=any(e.method == "WEBSOCKET" for e in endpoints),
        validation_helpers=any(
            _validation_rules(e) for e in endpoints if e.method not in _ENDPOINT_TEMPLATES
        ),
        auth_check=render_auth_middleware(auth, prefix).rstrip(),
        auth_headers=generate_auth_header_code(auth, prefix).rstrip(),
        handlers=handlers,
        routes=[_route(e, names[e.id]) for e in endpoints],
        health_path=health_path,
    )
    logger.debug("Rendered %s (%d tools, auth=%s)", config.name, len(endpoints), auth.type)
    return code


def validate_source(code: str, filename: str = "server.py") -> None:
    """Syntax-check generated code; raises ConversionError on failure."""
    try:
        ast.parse(code, filename=filename)
    except SyntaxError as exc:
        raise ConversionError(f"generated {filename} is not valid Python: {exc.msg} (line {exc.lineno})") from exc


def write_server(config: ServerConfig, output_dir: Path) -> Path:
    """Render, syntax-check and write server.py into output_dir."""
    code = generate(config)
    validate_source(code)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / "server.py"
    output_path.write_text(code, encoding="utf-8")
    logger.info("Generated %s (%d tools)", output_path, len(config.enabled_endpoints()))
    return output_path
