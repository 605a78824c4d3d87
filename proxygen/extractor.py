"""Walk an OpenAPI 2.x/3.x document into flat endpoint descriptors.

Also resolves the upstream base URL from either dialect.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from .errors import ConversionError
from .loader import get_paths, resolve_ref
from .models import EndpointDescriptor, normalize_base_url

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "post", "put", "delete", "patch")

# Preferred request body media types, in order
_BODY_TYPES = (
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
    "text/plain",
)

_VARIABLE_RE = re.compile(r"\{([^}]+)\}")


def generic_endpoint_id(method: str, path: str) -> str:
    """The `{method}-{path}` id assigned when an operation has no identifier."""
    return f"{method.lower()}-{re.sub(r'[^a-zA-Z0-9]', '-', path)}"


def _expand_server_url(server: dict[str, Any]) -> str:
    """Substitute server variables with their declared defaults."""
    variables = server.get("variables") or {}

    def _default(match: re.Match) -> str:
        spec = variables.get(match.group(1)) or {}
        return str(spec.get("default", match.group(0)))

    return _VARIABLE_RE.sub(_default, str(server["url"]).strip())


def resolve_base_url(document: dict[str, Any], fallback: str | None = None) -> str:
    """Resolve the upstream base URL.

    Preference: servers[0].url > schemes[0]://host+basePath > fallback.
    Raises ConversionError when none of them yields a URL.
    """
    servers = document.get("servers")
    if isinstance(servers, list) and servers:
        first = servers[0]
        if isinstance(first, dict) and first.get("url"):
            url = _expand_server_url(first)
            if url.startswith("/"):
                base = normalize_base_url(fallback or "")
                if not base:
                    raise ConversionError(
                        f"server URL {url!r} is relative and no fallback base URL was given"
                    )
                return normalize_base_url(base + url)
            return normalize_base_url(url)

    host = document.get("host")
    if isinstance(host, str) and host.strip():
        schemes = document.get("schemes") or ["https"]
        base_path = document.get("basePath") or ""
        return normalize_base_url(f"{schemes[0]}://{host.strip()}{base_path}")

    base = normalize_base_url(fallback or "")
    if base:
        return base
    raise ConversionError(
        "no base URL: the document declares neither servers nor host and no fallback was given"
    )


def _resolve_parameters(document: dict[str, Any], raw: Any) -> list[dict[str, Any]]:
    params: list[dict[str, Any]] = []
    for param in raw or []:
        if not isinstance(param, dict):
            continue
        if "$ref" in param:
            try:
                param = resolve_ref(document, param["$ref"])
            except (KeyError, TypeError, IndexError):
                logger.warning("Skipping unresolvable parameter reference %s", param["$ref"])
                continue
        if isinstance(param, dict) and param.get("name"):
            params.append(dict(param))
    return params


def _merge_parameters(
    shared: list[dict[str, Any]], own: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Combine path-level and operation-level parameters; operation wins."""
    merged = {p["name"]: p for p in shared}
    for param in own:
        merged[param["name"]] = param
    return list(merged.values())


def _pick_media(content: dict[str, Any]) -> tuple[str, dict[str, Any]] | None:
    for media_type in _BODY_TYPES:
        if media_type in content:
            return media_type, content[media_type] or {}
    for media_type, media in content.items():
        return media_type, media or {}
    return None


def _split_body(
    document: dict[str, Any],
    operation: dict[str, Any],
    params: list[dict[str, Any]],
) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
    """Pull the request body out of an operation (3.x requestBody or 2.x body/formData)."""
    request_body = operation.get("requestBody")
    if isinstance(request_body, dict) and "$ref" in request_body:
        try:
            request_body = resolve_ref(document, request_body["$ref"])
        except (KeyError, TypeError, IndexError):
            logger.warning("Skipping unresolvable requestBody reference %s", request_body["$ref"])
            request_body = None

    if isinstance(request_body, dict):
        picked = _pick_media(request_body.get("content") or {})
        if picked:
            media_type, media = picked
            return {
                "required": bool(request_body.get("required", False)),
                "content_type": media_type,
                "schema": media.get("schema"),
            }, params

    consumes = operation.get("consumes") or document.get("consumes") or []
    body_params = [p for p in params if p.get("in") == "body"]
    if body_params:
        body = body_params[0]
        remaining = [p for p in params if p.get("in") != "body"]
        return {
            "required": bool(body.get("required", False)),
            "content_type": consumes[0] if consumes else "application/json",
            "schema": body.get("schema"),
        }, remaining

    form_params = [p for p in params if p.get("in") == "formData"]
    if form_params:
        content_type = (
            "multipart/form-data"
            if "multipart/form-data" in consumes
            else "application/x-www-form-urlencoded"
        )
        return {
            "required": any(p.get("required") for p in form_params),
            "content_type": content_type,
            "schema": None,
        }, params

    return None, params


def _extract_responses(document: dict[str, Any], operation: dict[str, Any]) -> dict[str, dict[str, Any]]:
    responses: dict[str, dict[str, Any]] = {}
    for status_code, response in (operation.get("responses") or {}).items():
        if isinstance(response, dict) and "$ref" in response:
            try:
                response = resolve_ref(document, response["$ref"])
            except (KeyError, TypeError, IndexError):
                response = {}
        if not isinstance(response, dict):
            continue
        schema = response.get("schema")
        picked = _pick_media(response.get("content") or {})
        if picked:
            schema = picked[1].get("schema")
        responses[str(status_code)] = {
            "description": response.get("description", ""),
            "schema": schema,
        }
    return responses


def extract_endpoints(document: dict[str, Any]) -> list[EndpointDescriptor]:
    """One descriptor per (path, verb) for get/post/put/delete/patch.

    Other keys of a path item (head, options, trace, parameters, ...) are
    ignored. A document without paths yields an empty list.
    """
    endpoints: list[EndpointDescriptor] = []
    global_security = document.get("security")

    for path, path_item in get_paths(document).items():
        if not isinstance(path_item, dict):
            continue
        shared = _resolve_parameters(document, path_item.get("parameters"))
        seen: set[str] = set()

        for key, operation in path_item.items():
            method = str(key).lower()
            if method not in HTTP_METHODS or method in seen or not isinstance(operation, dict):
                continue
            seen.add(method)

            own = _resolve_parameters(document, operation.get("parameters"))
            body, params = _split_body(document, operation, _merge_parameters(shared, own))

            endpoints.append(EndpointDescriptor(
                id=generic_endpoint_id(method, path),
                path=path,
                method=method.upper(),
                operation_id=operation.get("operationId"),
                summary=operation.get("summary") or "",
                description=operation.get("description") or "",
                parameters=params,
                request_body=body,
                responses=_extract_responses(document, operation),
                tags=operation.get("tags") or [],
                security=operation.get("security", global_security),
            ))

    logger.debug("Extracted %d endpoints", len(endpoints))
    return endpoints
