"""Derive tool names for endpoints.

Priority:
  1. explicit identifier (operationId, else catalog id) unless it is the
     generic `{method}-{path}` form            -> getUserById
  2. summary, else description                -> "List all pets" -> listAllPets
  3. method + last non-empty path segment      -> GET /weather -> getWeather
  4. method + sanitized API name               -> GET / on "Acme API" -> getAcmeAPI

Names are camel case: the first token starts lowercase, every later token
starts uppercase, separators are dropped. The resolver is deterministic
but does not guarantee uniqueness; the assembler does that.
"""

from __future__ import annotations

import re

from .extractor import generic_endpoint_id
from .models import EndpointDescriptor

_TOKEN_RE = re.compile(r"[A-Za-z0-9]+")
_PLACEHOLDER_RE = re.compile(r"\{([^}]*)\}|(?<=/):([A-Za-z_][A-Za-z0-9_]*)")


def to_camel_case(text: str) -> str:
    """Camel-case free text, keeping capitals inside tokens."""
    tokens = _TOKEN_RE.findall(text)
    if not tokens:
        return ""
    first, rest = tokens[0], tokens[1:]
    return first[0].lower() + first[1:] + "".join(t[0].upper() + t[1:] for t in rest)


def _is_generic_id(identifier: str, method: str, path: str) -> bool:
    return identifier in (
        generic_endpoint_id(method, path),
        f"{method.upper()}-{path}",
        f"{method.lower()}-{path}",
    )


def resolve_tool_name(descriptor: EndpointDescriptor, api_name: str = "") -> str:
    """Build a tool name for one endpoint."""
    method = descriptor.method.lower()

    for identifier in (descriptor.operation_id, descriptor.id):
        if identifier and not _is_generic_id(identifier, method, descriptor.path):
            name = to_camel_case(identifier)
            if name:
                return name

    summary = descriptor.summary or descriptor.description
    if summary:
        name = to_camel_case(re.sub(r"[^a-zA-Z0-9\s]", "", summary))
        if name:
            return name

    segments = [s for s in descriptor.path.split("/") if re.sub(r"[^a-zA-Z0-9]", "", s)]
    if segments:
        resource = re.sub(r"[^a-zA-Z0-9]", "", segments[-1])
        return to_camel_case(f"{method} {resource}")

    return to_camel_case(f"{method} {re.sub(r'[^a-zA-Z0-9 ]', '', api_name)}")


def route_param_name(name: str) -> str:
    """Sanitize a path parameter name into a valid route placeholder."""
    cleaned = re.sub(r"[^A-Za-z0-9_]", "_", name.strip())
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"p_{cleaned}"
    return cleaned


def normalize_path(path: str) -> str:
    """Rewrite a path into route syntax: leading slash, `{name}` placeholders.

    OpenAPI `{pet-id}` becomes `{pet_id}`; Express-style `:id` becomes `{id}`.
    """
    if not path.startswith("/"):
        path = "/" + path

    def _placeholder(match: re.Match) -> str:
        name = match.group(1) if match.group(1) is not None else match.group(2)
        return "{" + route_param_name(name) + "}"

    return _PLACEHOLDER_RE.sub(_placeholder, path)


def python_identifier(tool_name: str) -> str:
    """Snake-case identifier used for generated handler function names."""
    s1 = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", tool_name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", s1).lower()
    name = re.sub(r"[^a-z0-9_]", "_", name)
    name = re.sub(r"_+", "_", name).strip("_")
    if not name or name[0].isdigit():
        name = f"tool_{name}"
    return name
