"""Load OpenAPI/Swagger documents and server configurations.

Documents come from a URL (fetched with httpx), a file on disk or literal
JSON text. Catalog entries are resolved to a document through their inline
spec, a spec URL, or the APIs.guru lookup convention.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from .errors import FetchError, ParseError
from .models import CatalogEntry, ServerConfig

FETCH_TIMEOUT = 30.0

CATALOG_SPEC_URL = "https://api.apis.guru/v2/specs/{path}/openapi.json"


def parse_spec(text: str, source: str = "document") -> dict[str, Any]:
    """Parse literal JSON text into a document dict."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(source, f"invalid JSON ({exc.msg} at line {exc.lineno})") from exc
    if not isinstance(document, dict):
        raise ParseError(source, "expected a JSON object at the top level")
    return document


async def fetch_spec(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = FETCH_TIMEOUT,
) -> dict[str, Any]:
    """GET a document over HTTP(S) and parse it as JSON."""
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own:
                response = await own.get(url)
        else:
            response = await client.get(url, timeout=timeout)
    except httpx.TimeoutException as exc:
        raise FetchError(url, f"timed out after {timeout}s") from exc
    except httpx.HTTPError as exc:
        raise FetchError(url, str(exc) or type(exc).__name__) from exc

    if not response.is_success:
        raise FetchError(url, f"HTTP {response.status_code}", status=response.status_code)
    return parse_spec(response.text, source=url)


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


async def load_source(
    source: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = FETCH_TIMEOUT,
) -> dict[str, Any]:
    """Load a document from a URL, a file path or literal JSON text."""
    if _is_url(source):
        return await fetch_spec(source, client=client, timeout=timeout)
    stripped = source.lstrip()
    if not stripped.startswith(("{", "[")):
        path = Path(source)
        if path.is_file():
            return parse_spec(path.read_text(encoding="utf-8"), source=str(path))
    return parse_spec(source)


def get_paths(document: dict[str, Any]) -> dict[str, Any]:
    """Extract paths from the document."""
    paths = document.get("paths") or {}
    return paths if isinstance(paths, dict) else {}


def get_security_schemes(document: dict[str, Any]) -> dict[str, Any]:
    """Security schemes from OpenAPI 3 components or Swagger 2 definitions."""
    schemes = document.get("components", {}).get("securitySchemes")
    if schemes is None:
        schemes = document.get("securityDefinitions")
    return schemes or {}


def resolve_ref(document: dict[str, Any], ref: str) -> dict[str, Any]:
    """Resolve a local $ref pointer in the document."""
    if not ref.startswith("#/"):
        raise KeyError(f"unsupported non-local $ref: {ref}")
    node: Any = document
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        node = node[part]
    return node


# ---------------------------------------------------------------------------
# Catalog entries
# ---------------------------------------------------------------------------

def catalog_spec_url(entry: CatalogEntry) -> str | None:
    """Build the conventional spec URL from a colon-delimited catalog id.

    ``domain:service:version`` and ``domain:version`` are recognized;
    anything without a colon has no conventional URL.
    """
    parts = [p for p in entry.id.split(":") if p]
    if len(parts) >= 3:
        domain, service, version = parts[0], parts[1], parts[2]
        return CATALOG_SPEC_URL.format(path=f"{domain}/{service}/{version}")
    if len(parts) == 2:
        return CATALOG_SPEC_URL.format(path=f"{parts[0]}/{parts[1]}")
    return None


async def ingest_catalog_entry(
    entry: CatalogEntry,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = FETCH_TIMEOUT,
) -> CatalogEntry:
    """Attach the parsed OpenAPI document to a catalog entry.

    Returns the entry unchanged when it has neither an inline spec nor an
    identifier to build a spec URL from.
    """
    spec = entry.open_api_spec
    if isinstance(spec, dict):
        return entry

    if isinstance(spec, str) and spec.strip():
        if _is_url(spec.strip()):
            document = await fetch_spec(spec.strip(), client=client, timeout=timeout)
        else:
            document = parse_spec(spec, source=f"inline spec of {entry.name}")
    else:
        url = catalog_spec_url(entry)
        if url is None:
            return entry
        document = await fetch_spec(url, client=client, timeout=timeout)

    return entry.model_copy(update={"open_api_spec": document})


# ---------------------------------------------------------------------------
# Server config persistence
# ---------------------------------------------------------------------------

def load_config(path: Path) -> ServerConfig:
    """Reload a persisted ServerConfig document."""
    text = path.read_text(encoding="utf-8")
    try:
        return ServerConfig.model_validate_json(text)
    except ValidationError as exc:
        raise ParseError(str(path), f"not a server configuration ({exc.error_count()} errors)") from exc


def save_config(config: ServerConfig, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_document(), indent=2) + "\n", encoding="utf-8")
    return path


def load_catalog_entry(path: Path) -> CatalogEntry:
    document = parse_spec(path.read_text(encoding="utf-8"), source=str(path))
    try:
        return CatalogEntry.model_validate(document)
    except ValidationError as exc:
        raise ParseError(str(path), f"not a catalog entry ({exc.error_count()} errors)") from exc
