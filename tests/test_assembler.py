"""Tests for config assembly from documents and catalog entries."""

import httpx
import pytest

from conftest import FIXED_NOW
from proxygen.assembler import (
    assemble_catalog_entry,
    build_config,
    convert_catalog_entry,
    dedupe_tool_names,
    environment_for,
    window_ms_for_period,
)
from proxygen.errors import ConversionError
from proxygen.models import (
    ApiKeyAuth,
    BearerAuth,
    CatalogEntry,
    CatalogRateLimit,
    Endpoint,
    EndpointDescriptor,
    NoAuth,
    ServerConfig,
    switch_authentication,
)


class TestBuildConfig:
    """OpenAPI document -> ServerConfig."""

    def test_weather_document(self, weather_doc):
        config = build_config(weather_doc, now=FIXED_NOW)
        assert config.name == "Weather API"
        assert config.base_url == "https://api.example.com"
        assert config.description == "Current conditions and forecasts."
        assert config.api_version == "2.1.0"
        assert config.authentication == ApiKeyAuth(header_name="X-API-Key")

        weather = next(e for e in config.endpoints if e.path == "/weather")
        assert weather.method == "GET"
        assert weather.tool_name == "currentWeather"
        q = weather.parameters[0]
        assert q.name == "q" and q.required is True

    def test_tool_names(self, weather_doc):
        config = build_config(weather_doc, now=FIXED_NOW)
        assert [e.tool_name for e in config.endpoints] == [
            "currentWeather", "getForecast", "subscribeToAlerts",
        ]

    def test_paths_normalized(self, weather_doc):
        config = build_config(weather_doc, now=FIXED_NOW)
        forecast = next(e for e in config.endpoints if e.tool_name == "getForecast")
        assert forecast.path == "/forecast/{city_id}"
        assert forecast.response_mapping.status_codes == [200, 206]

    def test_endpoint_defaults(self, weather_doc):
        config = build_config(weather_doc, now=FIXED_NOW)
        for endpoint in config.endpoints:
            assert endpoint.timeout == 30000
            assert endpoint.retries.count == 3
            assert endpoint.retries.delay == 1000
            assert endpoint.retries.backoff == "exponential"
            assert endpoint.rate_limit is None

        get, post = config.endpoints[0], config.endpoints[2]
        assert get.caching.enabled and get.caching.ttl == 300
        assert get.caching.key == "currentWeather:{url}"
        assert post.caching.enabled is False
        assert post.body.type == "json" and post.body.required is True

    def test_server_defaults(self, weather_doc):
        config = build_config(weather_doc, now=FIXED_NOW)
        assert config.timeout == 30000
        assert config.retries == 3
        assert config.cors.origins == ["*"]
        assert config.caching.max_size == 1000
        assert config.monitoring.health_check.endpoint == "/health"
        assert config.monitoring.metrics.enabled is True
        assert config.logging.level == "info"
        assert config.global_headers == {"User-Agent": "mcp-proxygen/0.4.0"}
        assert config.websocket is None
        assert config.created_at == config.updated_at == FIXED_NOW

    def test_environment(self, weather_doc):
        config = build_config(weather_doc, provider="open-weather")
        assert config.environment == {
            "OPEN_WEATHER_API_KEY": "",
            "OPEN_WEATHER_BASE_URL": "",
        }

    def test_metrics_off_and_prometheus(self, weather_doc):
        assert build_config(weather_doc, metrics_format=None).monitoring.metrics.enabled is False
        metrics = build_config(weather_doc, metrics_format="prometheus").monitoring.metrics
        assert metrics.export_format == "prometheus"

    def test_api_category_adds_accept(self, weather_doc):
        config = build_config(weather_doc, category="Open API")
        assert config.global_headers["Accept"] == "application/json"

    def test_swagger2(self, petstore_doc):
        config = build_config(petstore_doc)
        assert config.base_url == "http://petstore.example.io/v2"
        assert config.authentication.type == "oauth2"
        assert config.environment == {
            "SWAGGER_PETSTORE_CLIENT_ID": "",
            "SWAGGER_PETSTORE_CLIENT_SECRET": "",
            "SWAGGER_PETSTORE_BASE_URL": "",
        }
        names = [e.tool_name for e in config.endpoints]
        assert names == ["addPet", "updatePet", "getPetById", "deletesAPet", "findsPetsByStatus"]

    def test_rate_limit(self, weather_doc):
        config = build_config(weather_doc, rate_limit=CatalogRateLimit(requests=1000, period="per hour"))
        assert config.rate_limit.requests == 1000
        assert config.rate_limit.window_ms == 3_600_000
        assert all(e.rate_limit.requests == 100 for e in config.endpoints)
        assert all(e.rate_limit.window_ms == 60000 for e in config.endpoints)

    def test_small_rate_limit_floor(self, weather_doc):
        config = build_config(weather_doc, rate_limit=CatalogRateLimit(requests=5))
        assert config.endpoints[0].rate_limit.requests == 1

    def test_no_operations_uses_synthetic(self):
        doc = {"info": {"title": "Quotes"}, "servers": [{"url": "https://q.test"}], "paths": {}}
        config = build_config(doc, category="finance")
        assert [e.tool_name for e in config.endpoints] == ["getStockPrice", "getExchangeRates"]

    def test_server_id(self, weather_doc):
        assert build_config(weather_doc, server_id="fixed").id == "fixed"

    def test_unresolvable_base_url(self):
        with pytest.raises(ConversionError):
            build_config({"info": {"title": "X"}, "paths": {}})

    def test_unexpected_failure_wrapped(self):
        with pytest.raises(ConversionError, match="could not convert"):
            build_config({"info": "not an object", "servers": [{"url": "https://x.test"}]})

    def test_fallback_base_url(self, weather_doc):
        del weather_doc["servers"]
        config = build_config(weather_doc, fallback_base_url="weather.test/")
        assert config.base_url == "https://weather.test"


class TestCatalogEntries:
    """Catalog entry -> ServerConfig, with and without a document."""

    def test_finance_without_endpoints(self, finance_entry):
        config = assemble_catalog_entry(finance_entry, now=FIXED_NOW)
        assert config.name == "Stocks MCP Server"
        assert config.base_url == "https://api.stocks.example"
        assert [e.tool_name for e in config.endpoints] == ["getStockPrice", "getExchangeRates"]
        assert all(e.method == "GET" and e.caching.enabled for e in config.endpoints)

    def test_catalog_auth_and_env(self, finance_entry):
        config = assemble_catalog_entry(finance_entry)
        assert config.authentication == ApiKeyAuth(query_param="apikey")
        assert config.environment == {
            "STOCKS_EXAMPLE_API_KEY": "",
            "STOCKS_EXAMPLE_BASE_URL": "",
        }

    def test_catalog_rate_limit(self, finance_entry):
        config = assemble_catalog_entry(finance_entry)
        assert config.rate_limit.window_ms == 86_400_000
        assert config.endpoints[0].rate_limit.requests == 50

    def test_synthetic_ttl_kept(self, finance_entry):
        quote = assemble_catalog_entry(finance_entry).endpoints[0]
        assert quote.caching.ttl == 60
        assert quote.caching.key == "getStockPrice:{url}"

    def test_entry_endpoints(self):
        entry = CatalogEntry(
            name="Users",
            base_url="https://users.test",
            endpoints=[
                EndpointDescriptor(id="search-users", path="/users/:id", method="get"),
                EndpointDescriptor(path="/users", method="OPTIONS"),
            ],
        )
        (endpoint,) = assemble_catalog_entry(entry).endpoints
        assert endpoint.tool_name == "searchUsers"
        assert endpoint.path == "/users/{id}"
        assert endpoint.method == "GET"

    def test_document_endpoints_win(self, weather_doc):
        entry = CatalogEntry(
            name="Weather",
            open_api_spec=weather_doc,
            endpoints=[EndpointDescriptor(id="ignored", path="/x", method="GET")],
        )
        config = assemble_catalog_entry(entry)
        assert config.base_url == "https://api.example.com"
        assert len(config.endpoints) == 3
        assert config.authentication.type == "apikey"

    def test_missing_base_url(self):
        with pytest.raises(ConversionError):
            assemble_catalog_entry(CatalogEntry(name="Nowhere"))

    async def test_fetch_failure_falls_back(self):
        entry = CatalogEntry(
            id="example.com:v1", name="Example", base_url="https://example.com", category="Weather",
        )
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            config = await convert_catalog_entry(entry, client=client)
        assert [e.tool_name for e in config.endpoints] == ["getCurrentWeather"]

    async def test_fetched_document_used(self, weather_doc):
        entry = CatalogEntry(id="example.com:v1", name="Example")
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=weather_doc))
        async with httpx.AsyncClient(transport=transport) as client:
            config = await convert_catalog_entry(entry, client=client)
        assert config.base_url == "https://api.example.com"
        assert config.endpoints[0].tool_name == "currentWeather"


class TestDedupe:
    def _endpoint(self, endpoint_id, tool_name):
        return Endpoint(id=endpoint_id, path="/x", method="GET", tool_name=tool_name)

    def test_suffixes_in_order(self):
        endpoints = dedupe_tool_names([
            self._endpoint("a", "getX"),
            self._endpoint("b", "getX"),
            self._endpoint("c", "getX"),
        ])
        assert [e.tool_name for e in endpoints] == ["getX", "getX_2", "getX_3"]
        assert [e.id for e in endpoints] == ["a", "b", "c"]

    def test_existing_suffix_skipped(self):
        endpoints = dedupe_tool_names([
            self._endpoint("a", "getX"),
            self._endpoint("b", "getX"),
            self._endpoint("c", "getX_2"),
        ])
        assert [e.tool_name for e in endpoints] == ["getX", "getX_3", "getX_2"]

    def test_duplicate_ids(self):
        endpoints = dedupe_tool_names([self._endpoint("a", "one"), self._endpoint("a", "two")])
        assert [e.id for e in endpoints] == ["a", "a_2"]

    def test_assembled_names_unique(self):
        doc = {
            "servers": [{"url": "https://x.test"}],
            "paths": {
                "/a": {"get": {"summary": "Fetch"}},
                "/b": {"get": {"summary": "Fetch"}},
            },
        }
        names = [e.tool_name for e in build_config(doc).endpoints]
        assert names == ["fetch", "fetch_2"]


class TestHelpers:
    @pytest.mark.parametrize("period,window", [
        ("per hour", 3_600_000),
        ("Per Day", 86_400_000),
        ("daily", 86_400_000),
        ("per minute", 60_000),
        (None, 60_000),
        ("fortnightly", 60_000),
    ])
    def test_window_for_period(self, period, window):
        assert window_ms_for_period(period) == window

    def test_environment_for_none(self):
        assert environment_for(NoAuth(), "acme") == {"ACME_BASE_URL": ""}

    def test_base_url_normalization_idempotent(self, weather_config):
        again = ServerConfig(**weather_config.model_dump())
        assert again.base_url == weather_config.base_url == "https://api.example.com"

    def test_switch_authentication(self, weather_config):
        with_key = weather_config.model_copy(update={
            "authentication": ApiKeyAuth(credentials={"apikey": "secret"}),
        })
        switched = switch_authentication(with_key, "bearer")
        assert isinstance(switched.authentication, BearerAuth)
        assert switched.authentication.credentials == {}
        assert switched.id == weather_config.id

    def test_switch_unknown(self, weather_config):
        with pytest.raises(ValueError):
            switch_authentication(weather_config, "kerberos")
