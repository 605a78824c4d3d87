"""Data model for normalized server configurations.

ServerConfig is the root artifact produced by the assembler. Every model
serializes with camelCase aliases so the persisted JSON document keeps the
external shape (baseUrl, toolName, windowMs, ...), and accepts snake_case
names when built from Python.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH", "WEBSOCKET", "GRAPHQL"]
ParamType = Literal["string", "number", "boolean", "array", "object"]


def normalize_base_url(url: str) -> str:
    """Add a missing scheme (https) and strip trailing slashes. Idempotent."""
    normalized = (url or "").strip().rstrip("/")
    if not normalized:
        return ""
    if not _SCHEME_RE.match(normalized):
        normalized = f"https://{normalized}"
    return normalized


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProxyModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-serializable document form."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Parameters and endpoints
# ---------------------------------------------------------------------------

class ParameterValidation(ProxyModel):
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    format: Literal["email", "uri", "date", "date-time", "uuid"] | None = None


class Parameter(ProxyModel):
    """A single tool parameter."""

    name: str
    type: ParamType = "string"
    required: bool = False
    description: str = ""
    location: str = "query"
    default: Any = None
    enum: list[Any] | None = None
    example: Any = None
    validation: ParameterValidation | None = None


class RequestBody(ProxyModel):
    type: Literal["json", "form", "text", "multipart", "graphql", "binary"] = "json"
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")
    required: bool = False


class ResponseMapping(ProxyModel):
    success_path: str | None = None
    error_path: str | None = None
    status_codes: list[int] = Field(default_factory=lambda: [200])


class CachingPolicy(ProxyModel):
    enabled: bool = False
    ttl: int | None = None
    key: str | None = None
    max_size: int | None = None


class RateLimitPolicy(ProxyModel):
    requests: int
    window_ms: int = 60000
    strategy: Literal["sliding", "fixed"] = "sliding"


class RetryPolicy(ProxyModel):
    count: int = 3
    delay: int = 1000
    backoff: Literal["fixed", "exponential"] = "exponential"


class WebSocketOptions(ProxyModel):
    heartbeat: int = 30000
    message_handler: str | None = None
    connection_handler: str | None = None


class GraphQLOptions(ProxyModel):
    operation_type: Literal["query", "mutation", "subscription"] = "query"


class Endpoint(ProxyModel):
    """One API operation exposed as a tool."""

    id: str
    path: str
    method: HttpMethod
    tool_name: str
    description: str = ""
    parameters: list[Parameter] = Field(default_factory=list)
    body: RequestBody | None = None
    response_mapping: ResponseMapping | None = None
    caching: CachingPolicy | None = None
    rate_limit: RateLimitPolicy | None = None
    retries: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout: int | None = None
    websocket: WebSocketOptions | None = None
    graphql: GraphQLOptions | None = None
    enabled: bool = True


# ---------------------------------------------------------------------------
# Authentication variants
# ---------------------------------------------------------------------------

class _AuthBase(ProxyModel):
    credentials: dict[str, str] = Field(default_factory=dict)


class NoAuth(_AuthBase):
    type: Literal["none"] = "none"


class ApiKeyAuth(_AuthBase):
    type: Literal["apikey"] = "apikey"
    header_name: str = "X-API-Key"
    query_param: str | None = None


class BearerAuth(_AuthBase):
    type: Literal["bearer"] = "bearer"


class BasicAuth(_AuthBase):
    type: Literal["basic"] = "basic"


class OAuth2Auth(_AuthBase):
    type: Literal["oauth2"] = "oauth2"
    auth_url: str = ""
    token_url: str = ""
    scopes: list[str] = Field(default_factory=list)
    flow: Literal[
        "authorization_code", "client_credentials", "password", "implicit", "pkce"
    ] = "authorization_code"


class JwtAuth(_AuthBase):
    type: Literal["jwt"] = "jwt"
    algorithm: str = "HS256"
    issuer: str | None = None
    audience: str | None = None
    subject: str | None = None
    expires_in: int = 3600


class DigestAuth(_AuthBase):
    type: Literal["digest"] = "digest"
    realm: str = ""
    qop: str = "auth"


class AwsSignatureAuth(_AuthBase):
    type: Literal["aws-signature"] = "aws-signature"
    region: str = "us-east-1"
    service: str = "execute-api"


class MutualTlsAuth(_AuthBase):
    type: Literal["mutual-tls"] = "mutual-tls"


class CustomAuth(_AuthBase):
    type: Literal["custom"] = "custom"
    headers: dict[str, str] = Field(default_factory=dict)
    before_request: str = "# Custom authentication logic"


Authentication = Annotated[
    Union[
        NoAuth,
        ApiKeyAuth,
        BearerAuth,
        BasicAuth,
        OAuth2Auth,
        JwtAuth,
        DigestAuth,
        AwsSignatureAuth,
        MutualTlsAuth,
        CustomAuth,
    ],
    Field(discriminator="type"),
]

AUTH_VARIANTS: dict[str, type[_AuthBase]] = {
    "none": NoAuth,
    "apikey": ApiKeyAuth,
    "bearer": BearerAuth,
    "basic": BasicAuth,
    "oauth2": OAuth2Auth,
    "jwt": JwtAuth,
    "digest": DigestAuth,
    "aws-signature": AwsSignatureAuth,
    "mutual-tls": MutualTlsAuth,
    "custom": CustomAuth,
}


# ---------------------------------------------------------------------------
# Server-wide policies
# ---------------------------------------------------------------------------

class HealthCheckPolicy(ProxyModel):
    enabled: bool = True
    endpoint: str = "/health"
    interval: int = 300000


class MetricsPolicy(ProxyModel):
    enabled: bool = False
    endpoint: str = "/metrics"
    export_format: Literal["json", "prometheus"] = "json"


class MonitoringPolicy(ProxyModel):
    enabled: bool = True
    health_check: HealthCheckPolicy = Field(default_factory=HealthCheckPolicy)
    metrics: MetricsPolicy = Field(default_factory=MetricsPolicy)


class LoggingPolicy(ProxyModel):
    level: Literal["debug", "info", "warn", "error"] = "info"
    requests: bool = True
    responses: bool = True
    errors: bool = True


class CorsPolicy(ProxyModel):
    enabled: bool = True
    origins: list[str] = Field(default_factory=lambda: ["*"])
    methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "PATCH"]
    )
    headers: list[str] = Field(
        default_factory=lambda: ["Content-Type", "Authorization", "X-API-Key"]
    )
    credentials: bool = True
    max_age: int | None = None


class WebSocketPolicy(ProxyModel):
    enabled: bool = False
    ping_interval: int = 30000


class ServerConfig(ProxyModel):
    """The normalized, executable server configuration."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), frozen=True)
    name: str
    description: str = ""
    base_url: str
    endpoints: list[Endpoint] = Field(default_factory=list)
    authentication: Authentication = Field(default_factory=NoAuth)
    global_headers: dict[str, str] = Field(default_factory=dict)
    rate_limit: RateLimitPolicy | None = None
    caching: CachingPolicy | None = None
    monitoring: MonitoringPolicy | None = None
    logging: LoggingPolicy = Field(default_factory=LoggingPolicy)
    timeout: int = 30000
    retries: int = 3
    cors: CorsPolicy = Field(default_factory=CorsPolicy)
    environment: dict[str, str] = Field(default_factory=dict)
    websocket: WebSocketPolicy | None = None
    provider: str = ""
    category: str = ""
    api_version: str = ""
    tags: list[str] = Field(default_factory=list)
    documentation: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        normalized = normalize_base_url(value)
        if not normalized:
            raise ValueError("base URL is empty")
        return normalized

    def enabled_endpoints(self) -> list[Endpoint]:
        return [e for e in self.endpoints if e.enabled]

    def endpoint(self, endpoint_id: str) -> Endpoint | None:
        for endpoint in self.endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        return None


def switch_authentication(config: ServerConfig, auth_type: str, **fields: Any) -> ServerConfig:
    """Return a copy of config using a fresh auth variant.

    Fields of the previous variant (credentials included) are discarded;
    the config id is kept.
    """
    if auth_type not in AUTH_VARIANTS:
        raise ValueError(f"unknown authentication type: {auth_type}")
    auth = AUTH_VARIANTS[auth_type](**fields)
    return config.model_copy(update={"authentication": auth, "updated_at": utcnow()})


# ---------------------------------------------------------------------------
# Ingestion-side shapes
# ---------------------------------------------------------------------------

class EndpointDescriptor(ProxyModel):
    """Flat description of one upstream operation, before normalization."""

    id: str = ""
    path: str
    method: str
    operation_id: str | None = None
    summary: str = ""
    description: str = ""
    parameters: list[dict[str, Any]] = Field(default_factory=list)
    request_body: dict[str, Any] | None = None
    responses: dict[str, dict[str, Any]] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    security: list[dict[str, Any]] | None = None


class CatalogAuth(ProxyModel):
    type: str = "none"
    description: str = ""
    key_name: str | None = None
    key_location: str | None = None
    scopes: list[str] = Field(default_factory=list)
    flow: str | None = None


class CatalogRateLimit(ProxyModel):
    requests: int
    period: str | None = None
    burst: int | None = None


class CatalogEntry(ProxyModel):
    """A curated public-API record, optionally pointing at an OpenAPI document."""

    id: str = ""
    name: str
    description: str = ""
    base_url: str = ""
    version: str = ""
    category: str = ""
    provider: str = ""
    tags: list[str] = Field(default_factory=list)
    documentation: str | None = None
    authentication: CatalogAuth | None = None
    rate_limit: CatalogRateLimit | None = None
    endpoints: list[EndpointDescriptor] | None = None
    open_api_spec: dict[str, Any] | str | None = None


class TestResult(ProxyModel):
    """Outcome of one live endpoint test. Never persisted with the config."""

    __test__ = False

    endpoint_id: str
    success: bool
    status_code: int | None = None
    data: Any = None
    error: str | None = None
    response_time: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)
