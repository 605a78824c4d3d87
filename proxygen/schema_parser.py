"""Map raw parameter and schema fragments onto the normalized model.

Handles:
- OpenAPI 3 parameters (constraints under `schema`)
- Swagger 2 and catalog parameters (constraints inline)
- $ref resolution and allOf/oneOf/anyOf composition
- min/max/pattern/format validation extraction
- Enum value extraction into descriptions
- Large integer default sanitization (>= 2^53)
- Request body content types and response status mapping
"""

from __future__ import annotations

import re
from typing import Any

from .loader import resolve_ref
from .models import Parameter, ParameterValidation, RequestBody, ResponseMapping

# Sentinel: integers >= 2^53 are unsafe for JSON serialization
MAX_SAFE_INT = 2**53

_FORMATS: dict[str, str] = {
    "email": "email",
    "uri": "uri",
    "url": "uri",
    "date": "date",
    "date-time": "date-time",
    "uuid": "uuid",
}

_SCALAR_TYPES: dict[str, str] = {
    "string": "string",
    "integer": "number",
    "number": "number",
    "boolean": "boolean",
    "array": "array",
    "object": "object",
}


def strip_html(text: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def _sanitize_default(value: Any) -> Any:
    """Replace unsafe large integer defaults with None."""
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) >= MAX_SAFE_INT:
        return None
    return value


def _deref(document: dict[str, Any], schema: Any) -> dict[str, Any]:
    if isinstance(schema, dict) and "$ref" in schema:
        try:
            return _deref(document, resolve_ref(document, schema["$ref"]))
        except (KeyError, TypeError, IndexError):
            return {}
    return schema if isinstance(schema, dict) else {}


def resolve_schema_type(document: dict[str, Any], schema: dict[str, Any]) -> str:
    """Resolve a schema fragment to one of string/number/boolean/array/object."""
    schema = _deref(document, schema)
    if not schema:
        return "string"

    if "allOf" in schema:
        for sub in schema["allOf"]:
            resolved = _deref(document, sub)
            if resolved.get("type") == "object" or "properties" in resolved:
                return "object"
            if "enum" in resolved:
                return "string"
        return "object"

    for key in ("oneOf", "anyOf"):
        if key in schema:
            for sub in schema[key]:
                if _deref(document, sub).get("type"):
                    return resolve_schema_type(document, sub)
            return "string"

    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        schema_type = next((t for t in schema_type if t != "null"), None)
    if schema_type in _SCALAR_TYPES:
        return _SCALAR_TYPES[schema_type]
    if "properties" in schema:
        return "object"
    return "string"


def _get_enum_values(document: dict[str, Any], schema: dict[str, Any]) -> list[Any] | None:
    """Extract enum values from a schema, resolving $ref if needed."""
    schema = _deref(document, schema)
    if "enum" in schema:
        return list(schema["enum"])
    for sub in schema.get("allOf", []):
        values = _get_enum_values(document, sub)
        if values:
            return values
    return None


def _lookup(raw: dict[str, Any], schema: dict[str, Any], *keys: str) -> Any:
    """First value found for any key, inline on the parameter then in its schema."""
    for source in (raw, schema):
        for key in keys:
            if source.get(key) is not None:
                return source[key]
    return None


def map_validation(raw: dict[str, Any], schema: dict[str, Any]) -> ParameterValidation | None:
    minimum = _lookup(raw, schema, "minimum", "minLength", "minItems")
    maximum = _lookup(raw, schema, "maximum", "maxLength", "maxItems")
    pattern = _lookup(raw, schema, "pattern")
    fmt = _FORMATS.get(str(_lookup(raw, schema, "format") or ""))

    if minimum is None and maximum is None and not pattern and fmt is None:
        return None
    return ParameterValidation(min=minimum, max=maximum, pattern=pattern or None, format=fmt)


def map_parameter(document: dict[str, Any], raw: dict[str, Any]) -> Parameter:
    """Normalize one raw parameter (OpenAPI 3, Swagger 2 or catalog shape)."""
    schema = _deref(document, raw.get("schema") or {})
    if schema:
        param_type = resolve_schema_type(document, schema)
    else:
        param_type = _SCALAR_TYPES.get(str(raw.get("type", "string")).lower(), "string")

    description = strip_html(raw.get("description") or "")
    enum_values = raw.get("enum") or _get_enum_values(document, schema)
    if enum_values:
        enum_str = ", ".join(str(v) for v in enum_values)
        if description:
            description = f"{description} (values: {enum_str})"
        else:
            description = f"Values: {enum_str}"

    location = raw.get("in", "query")
    return Parameter(
        name=raw["name"],
        type=param_type,
        required=bool(raw.get("required", False)) or location == "path",
        description=description,
        location=location,
        default=_sanitize_default(_lookup(raw, schema, "default")),
        enum=list(enum_values) if enum_values else None,
        example=_lookup(raw, schema, "example"),
        validation=map_validation(raw, schema),
    )


def parse_parameters(document: dict[str, Any], raw_params: list[dict[str, Any]]) -> list[Parameter]:
    """Normalize all parameters of an operation, preserving order."""
    return [map_parameter(document, raw) for raw in raw_params if raw.get("name")]


def map_content_type(content_type: str | None) -> str:
    if not content_type:
        return "json"
    if "json" in content_type:
        return "json"
    if "form-data" in content_type:
        return "multipart"
    if "form-urlencoded" in content_type:
        return "form"
    if "text" in content_type:
        return "text"
    return "json"


def map_request_body(raw: dict[str, Any] | None) -> RequestBody | None:
    if not raw:
        return None
    return RequestBody(
        type=map_content_type(raw.get("content_type") or raw.get("contentType")),
        schema=raw.get("schema"),
        required=bool(raw.get("required", False)),
    )


def map_response_mapping(responses: dict[str, Any]) -> ResponseMapping:
    """Success/error paths plus the 2xx codes the document declares."""
    codes = sorted(
        int(code) for code in responses
        if str(code).isdigit() and 200 <= int(code) < 300
    )
    return ResponseMapping(
        success_path="data",
        error_path="error",
        status_codes=codes or [200],
    )
