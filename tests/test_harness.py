"""Tests for the live endpoint test harness."""

import json

import httpx
import pytest

from conftest import make_config
from proxygen.harness import (
    EndpointTester,
    prepare_request,
    run_all_endpoint_tests,
    run_endpoint_test,
)
from proxygen.models import (
    ApiKeyAuth,
    BasicAuth,
    DigestAuth,
    Endpoint,
    NoAuth,
    Parameter,
)


def _post_endpoint() -> Endpoint:
    return Endpoint(
        id="post--alerts",
        path="/alerts",
        method="POST",
        tool_name="subscribeToAlerts",
        parameters=[Parameter(name="email", required=True)],
    )


def _two_endpoint_config(**overrides):
    get = make_config().endpoints[0]
    return make_config(endpoints=[get, _post_endpoint()], **overrides)


class TestPrepareRequest:
    def test_get_uses_query(self, weather_config):
        request = prepare_request(weather_config, weather_config.endpoints[0], {"q": "London"})
        assert request["method"] == "GET"
        assert request["url"] == "https://api.example.com/weather"
        assert request["params"] == {"q": "London"}
        assert "json" not in request

    def test_post_uses_body(self):
        config = make_config(endpoints=[_post_endpoint()], authentication=NoAuth())
        request = prepare_request(config, config.endpoints[0], {"email": "a@b.co"})
        assert request["json"] == {"email": "a@b.co"}
        assert "params" not in request
        assert request["headers"]["Content-Type"] == "application/json"

    def test_path_values_substituted(self):
        endpoint = Endpoint(id="pet", path="/pets/{pet_id}", method="DELETE", tool_name="deletePet")
        config = make_config(endpoints=[endpoint], authentication=NoAuth())
        request = prepare_request(config, endpoint, {"pet-id": "a b", "force": "yes", "empty": ""})
        assert request["url"] == "https://api.example.com/pets/a%20b"
        assert request["json"] == {"force": "yes"}

    def test_delete_uses_body(self):
        endpoint = Endpoint(id="del", path="/items", method="DELETE", tool_name="deleteItem")
        config = make_config(endpoints=[endpoint], authentication=NoAuth())
        request = prepare_request(config, endpoint, {"id": "5"})
        assert request["method"] == "DELETE"
        assert request["json"] == {"id": "5"}
        assert "params" not in request

    def test_global_headers_and_credentials(self):
        config = make_config(
            global_headers={"User-Agent": "mcp-proxygen/test"},
            authentication=ApiKeyAuth(credentials={"apikey": "k"}),
        )
        headers = prepare_request(config, config.endpoints[0], {"q": "x"})["headers"]
        assert headers["User-Agent"] == "mcp-proxygen/test"
        assert headers["X-API-Key"] == "k"

    def test_query_api_key_on_post(self):
        config = make_config(
            endpoints=[_post_endpoint()],
            authentication=ApiKeyAuth(query_param="appid", credentials={"apikey": "k"}),
        )
        request = prepare_request(config, config.endpoints[0], {"email": "a@b.co"})
        assert request["params"] == {"appid": "k"}
        assert request["json"] == {"email": "a@b.co"}

    def test_graphql_is_post(self):
        endpoint = Endpoint(id="gql", path="/graphql", method="GRAPHQL", tool_name="runQuery")
        config = make_config(endpoints=[endpoint], authentication=NoAuth())
        request = prepare_request(config, endpoint, {"query": "{ me }"})
        assert request["method"] == "POST"
        assert request["json"] == {"query": "{ me }"}

    def test_digest_auth_flow(self):
        config = make_config(authentication=DigestAuth(credentials={"username": "u", "password": "p"}))
        request = prepare_request(config, config.endpoints[0])
        assert isinstance(request["auth"], httpx.DigestAuth)


class TestRunEndpointTest:
    async def test_get_request_on_the_wire(self, weather_config, mock_client, recorder):
        result = await run_endpoint_test(
            weather_config, weather_config.endpoints[0], {"q": "London"}, client=mock_client,
        )
        assert result.success is True
        assert result.status_code == 200
        assert result.data == {"ok": True}
        assert result.error is None
        assert result.response_time >= 0

        sent = recorder.last
        assert sent.method == "GET"
        assert sent.url.params["q"] == "London"
        assert sent.content == b""

    async def test_post_request_on_the_wire(self, mock_client, recorder):
        config = make_config(endpoints=[_post_endpoint()], authentication=BasicAuth(
            credentials={"username": "u", "password": "p"},
        ))
        await run_endpoint_test(config, config.endpoints[0], {"email": "a@b.co"}, client=mock_client)
        sent = recorder.last
        assert sent.method == "POST"
        assert sent.url.query == b""
        assert json.loads(sent.content) == {"email": "a@b.co"}
        assert sent.headers["Authorization"].startswith("Basic ")

    async def test_delete_request_on_the_wire(self, mock_client, recorder):
        endpoint = Endpoint(id="del", path="/items", method="DELETE", tool_name="deleteItem")
        config = make_config(endpoints=[endpoint], authentication=NoAuth())
        await run_endpoint_test(config, endpoint, {"id": "5"}, client=mock_client)
        sent = recorder.last
        assert sent.method == "DELETE"
        assert sent.url.query == b""
        assert json.loads(sent.content) == {"id": "5"}

    async def test_http_error_status(self, weather_config, mock_client, recorder):
        recorder.reply = lambda request: httpx.Response(500, text="boom")
        result = await run_endpoint_test(weather_config, weather_config.endpoints[0], client=mock_client)
        assert result.success is False
        assert result.status_code == 500
        assert result.error == "HTTP 500 Internal Server Error"
        assert result.data == "boom"

    async def test_timeout_is_failed_result(self, weather_config, mock_client, recorder):
        def slow(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        recorder.reply = slow
        result = await run_endpoint_test(
            weather_config, weather_config.endpoints[0], client=mock_client, timeout=2.0,
        )
        assert result.success is False
        assert result.status_code is None
        assert result.error == "timed out after 2.0s"

    async def test_network_error_is_failed_result(self, weather_config, mock_client, recorder):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        recorder.reply = refuse
        result = await run_endpoint_test(weather_config, weather_config.endpoints[0], client=mock_client)
        assert result.success is False
        assert "connection refused" in result.error

    async def test_websocket_not_testable(self, mock_client, recorder):
        endpoint = Endpoint(id="ws", path="/stream", method="WEBSOCKET", tool_name="stream")
        config = make_config(endpoints=[endpoint])
        result = await run_endpoint_test(config, endpoint, client=mock_client)
        assert result.success is False
        assert recorder.requests == []


class TestRunAll:
    async def test_sequential_with_delay(self, mock_client, recorder, monkeypatch):
        pauses = []

        async def fake_sleep(seconds):
            pauses.append((seconds, len(recorder.requests)))

        monkeypatch.setattr("proxygen.harness.asyncio.sleep", fake_sleep)
        config = _two_endpoint_config()
        results = await run_all_endpoint_tests(
            config,
            {"get--weather": {"q": "x"}, "post--alerts": {"email": "a@b.co"}},
            client=mock_client,
            delay=0.25,
        )
        assert [r.endpoint_id for r in results] == ["get--weather", "post--alerts"]
        assert [r.method for r in recorder.requests] == ["GET", "POST"]
        assert pauses == [(0.25, 1)]

    async def test_disabled_endpoints_skipped(self, mock_client, recorder):
        config = _two_endpoint_config()
        disabled = config.endpoints[1].model_copy(update={"enabled": False})
        config = config.model_copy(update={"endpoints": [config.endpoints[0], disabled]})
        results = await run_all_endpoint_tests(config, client=mock_client, delay=0)
        assert len(results) == 1


class TestEndpointTester:
    async def test_results_kept_per_endpoint(self, mock_client, recorder):
        tester = EndpointTester(_two_endpoint_config(), client=mock_client, delay=0)
        await tester.test_all()
        assert set(tester.results) == {"get--weather", "post--alerts"}

        recorder.reply = lambda request: httpx.Response(503)
        latest = await tester.test_one("get--weather", {"q": "x"})
        assert tester.results["get--weather"] is latest
        assert latest.success is False
        assert tester.results["post--alerts"].success is True

    async def test_unknown_endpoint(self, weather_config, mock_client):
        with pytest.raises(KeyError):
            await EndpointTester(weather_config, client=mock_client).test_one("nope")
