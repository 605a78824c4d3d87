"""Map upstream security schemes onto the closed set of auth variants.

Unknown or unsupported scheme tags map to `custom` with an empty header
map and a placeholder comment, so conversion never aborts because of an
exotic auth type.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any

import httpx

from .loader import get_paths, get_security_schemes, resolve_ref
from .models import (
    ApiKeyAuth,
    Authentication,
    AwsSignatureAuth,
    BasicAuth,
    BearerAuth,
    CatalogAuth,
    CustomAuth,
    DigestAuth,
    JwtAuth,
    MutualTlsAuth,
    NoAuth,
    OAuth2Auth,
)

logger = logging.getLogger(__name__)

# OpenAPI 2.x / 3.x flow names -> normalized flow kind
_OAUTH2_FLOWS: dict[str, str] = {
    "authorizationcode": "authorization_code",
    "authorization_code": "authorization_code",
    "accesscode": "authorization_code",
    "clientcredentials": "client_credentials",
    "client_credentials": "client_credentials",
    "application": "client_credentials",
    "password": "password",
    "implicit": "implicit",
    "pkce": "pkce",
}

# Credential kinds per variant; env names are {PREFIX}_{KIND}
_CREDENTIAL_KINDS: dict[str, tuple[str, ...]] = {
    "apikey": ("API_KEY",),
    "bearer": ("BEARER_TOKEN",),
    "oauth2": ("CLIENT_ID", "CLIENT_SECRET"),
    "basic": ("USERNAME", "PASSWORD"),
    "digest": ("USERNAME", "PASSWORD"),
    "jwt": ("JWT_SECRET",),
    "aws-signature": ("ACCESS_KEY_ID", "SECRET_ACCESS_KEY"),
    "mutual-tls": ("CLIENT_CERT", "CLIENT_KEY"),
}


def _oauth2_flow(flow: str | None) -> str:
    key = re.sub(r"[\s\-]", "", (flow or "")).lower()
    return _OAUTH2_FLOWS.get(key, "authorization_code")


def map_auth_tag(tag: str | None, **details: Any) -> Authentication:
    """Map a catalog or scheme tag to exactly one auth variant."""
    key = (tag or "none").strip().lower().replace("_", "-")

    if key in ("", "none"):
        return NoAuth()
    if key in ("apikey", "api-key"):
        key_name = details.get("key_name")
        if details.get("key_location") == "query":
            return ApiKeyAuth(query_param=key_name or "api_key")
        return ApiKeyAuth(header_name=key_name or "X-API-Key")
    if key == "bearer":
        return BearerAuth()
    if key == "basic":
        return BasicAuth()
    if key == "jwt":
        return JwtAuth()
    if key == "oauth2":
        return OAuth2Auth(
            auth_url=details.get("auth_url") or "",
            token_url=details.get("token_url") or "",
            scopes=list(details.get("scopes") or []),
            flow=_oauth2_flow(details.get("flow")),
        )
    if key == "digest":
        return DigestAuth(realm=details.get("realm") or "", qop=details.get("qop") or "auth")
    if key in ("aws-signature", "awssigv4", "aws4-hmac-sha256"):
        return AwsSignatureAuth(
            region=details.get("region") or "us-east-1",
            service=details.get("service") or "execute-api",
        )
    if key in ("mutual-tls", "mutualtls"):
        return MutualTlsAuth()
    if key != "custom":
        logger.warning("Unsupported authentication type %r; falling back to custom", tag)
    return CustomAuth(headers=dict(details.get("headers") or {}))


def map_security_scheme(scheme: dict[str, Any]) -> Authentication:
    """Map one OpenAPI securitySchemes / securityDefinitions entry."""
    scheme_type = str(scheme.get("type", "")).lower()

    if str(scheme.get("x-amazon-apigateway-authtype", "")).lower() == "awssigv4":
        return map_auth_tag("aws-signature")

    if scheme_type == "apikey":
        return map_auth_tag("apiKey", key_name=scheme.get("name"), key_location=scheme.get("in"))

    if scheme_type == "http":
        http_scheme = str(scheme.get("scheme", "")).lower()
        if http_scheme in ("bearer", "basic", "digest", "aws4-hmac-sha256"):
            return map_auth_tag(http_scheme)
        return map_auth_tag(f"http-{http_scheme}")

    if scheme_type == "oauth2":
        flows = scheme.get("flows")
        if isinstance(flows, dict) and flows:
            flow_name, flow = next(iter(flows.items()))
        else:
            flow_name, flow = scheme.get("flow"), scheme
        flow = flow or {}
        return map_auth_tag(
            "oauth2",
            flow=flow_name,
            auth_url=flow.get("authorizationUrl"),
            token_url=flow.get("tokenUrl"),
            scopes=list(flow.get("scopes") or {}),
        )

    return map_auth_tag(scheme_type)


def _referenced_schemes(requirements: Any) -> list[str]:
    names: list[str] = []
    for requirement in requirements or []:
        if isinstance(requirement, dict):
            names.extend(requirement.keys())
    return names


def authentication_from_document(document: dict[str, Any]) -> Authentication:
    """Pick the scheme the document actually requires.

    Global `security` first, then any operation's, then the first
    declared scheme. No schemes at all means `none`.
    """
    schemes = get_security_schemes(document)
    if not schemes:
        return NoAuth()

    names = _referenced_schemes(document.get("security"))
    if not names and "security" not in document:
        for path_item in get_paths(document).values():
            if not isinstance(path_item, dict):
                continue
            for operation in path_item.values():
                if isinstance(operation, dict):
                    names.extend(_referenced_schemes(operation.get("security")))
        names = names or list(schemes)

    for name in names:
        scheme = schemes.get(name)
        if isinstance(scheme, dict) and "$ref" in scheme:
            try:
                scheme = resolve_ref(document, scheme["$ref"])
            except (KeyError, TypeError, IndexError):
                scheme = None
        if isinstance(scheme, dict):
            return map_security_scheme(scheme)
    return NoAuth()


def map_catalog_auth(auth: CatalogAuth | None) -> Authentication:
    if auth is None:
        return NoAuth()
    return map_auth_tag(
        auth.type,
        key_name=auth.key_name,
        key_location=auth.key_location,
        scopes=auth.scopes,
        flow=auth.flow,
    )


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def env_prefix(provider: str) -> str:
    """Upper-cased provider key used for environment variable names."""
    prefix = re.sub(r"[^A-Z0-9]", "_", (provider or "").upper()).strip("_")
    return prefix or "API"


def credential_env_names(auth_type: str, prefix: str) -> dict[str, str]:
    """Credential kind -> environment variable name for an auth variant."""
    return {kind: f"{prefix}_{kind}" for kind in _CREDENTIAL_KINDS.get(auth_type, ())}


def apply_credentials(
    auth: Authentication,
    headers: dict[str, str],
    params: dict[str, Any],
) -> httpx.Auth | None:
    """Attach stored credentials the way the generated server does.

    Mutates headers/params in place; digest credentials are returned as an
    httpx auth flow because they need the upstream challenge.
    """
    creds = auth.credentials

    if isinstance(auth, ApiKeyAuth):
        key = creds.get("apikey") or creds.get("apiKey") or creds.get("api_key")
        if key:
            if auth.query_param:
                params[auth.query_param] = key
            else:
                headers[auth.header_name or "X-API-Key"] = key
    elif isinstance(auth, (BearerAuth, JwtAuth)):
        if creds.get("token"):
            headers["Authorization"] = f"Bearer {creds['token']}"
    elif isinstance(auth, OAuth2Auth):
        token = creds.get("accessToken") or creds.get("access_token") or creds.get("token")
        if token:
            headers["Authorization"] = f"Bearer {token}"
    elif isinstance(auth, BasicAuth):
        if creds.get("username"):
            raw = f"{creds['username']}:{creds.get('password', '')}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")
    elif isinstance(auth, DigestAuth):
        if creds.get("username"):
            return httpx.DigestAuth(creds["username"], creds.get("password", ""))
    elif isinstance(auth, CustomAuth):
        headers.update(auth.headers)
    elif not isinstance(auth, NoAuth):
        logger.debug("Credentials for %s are not applied outside the generated server", auth.type)
    return None
