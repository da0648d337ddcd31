import json

import httpx
import pytest

from executor_client import (
    ExecutorClient,
    ExecutorConfig,
    get_executor_description,
    parse_executor_config,
    resolve_executor_config,
)


def make_client(handler, **kwargs):
    return ExecutorClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kwargs)


def test_resolve_executor_config_cascade():
    agent = ExecutorConfig(type="custom_url", url="https://agent.test")
    collection = ExecutorConfig(type="custom_url", url="https://collection.test")
    default = ExecutorConfig()
    assert resolve_executor_config(agent, collection) is agent
    assert resolve_executor_config(default, collection) is collection
    assert resolve_executor_config(None, None).type == "default"
    assert resolve_executor_config(default, default).type == "default"


def test_parse_executor_config():
    assert parse_executor_config(None, None) is None
    assert parse_executor_config("default", None).type == "default"
    parsed = parse_executor_config("custom_url", {"url": "https://x.test", "apiKey": "k"})
    assert parsed.url == "https://x.test"
    assert parsed.api_key == "k"
    assert parse_executor_config("custom_url", {"apiKey": "k"}) is None
    assert parse_executor_config("custom_url", {"url": "https://x.test", "apiKey": 5}).api_key is None
    assert parse_executor_config("other", {"url": "https://x.test"}) is None


def test_get_executor_description():
    assert get_executor_description(None) == "Default Executor"
    assert get_executor_description(ExecutorConfig(type="custom_url", url="https://exec.example.com/run")) == \
        "Custom: exec.example.com"
    assert get_executor_description(ExecutorConfig(type="custom_url", url="not a url")) == "Custom Executor"
    assert get_executor_description(ExecutorConfig(type="other")) == "Unknown Executor"


@pytest.mark.asyncio
async def test_execute_tool_posts_with_bearer_key():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "output": {"ok": 1}, "executionTimeMs": 42})

    client = make_client(handler)
    result = await client.execute_tool("https://exec.test/", {"packageName": "p", "name": "t", "params": {}},
                                       api_key="secret")
    assert result.success
    assert result.output == {"ok": 1}
    assert result.execution_time_ms == 42
    assert seen["url"] == "https://exec.test/execute-tool"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["packageName"] == "p"


@pytest.mark.asyncio
async def test_execute_tool_non_2xx_is_failure():
    client = make_client(lambda request: httpx.Response(404, json={"success": False, "error": "Tool not found"}))
    result = await client.execute_tool("https://exec.test", {})
    assert not result.success
    assert result.error == "Tool not found"


@pytest.mark.asyncio
async def test_execute_tool_non_json_error_body():
    client = make_client(lambda request: httpx.Response(502, text="Bad Gateway"))
    result = await client.execute_tool("https://exec.test", {})
    assert result.error == "Executor error: 502"


@pytest.mark.asyncio
async def test_execute_tool_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    result = await make_client(handler).execute_tool("https://exec.test", {})
    assert not result.success
    assert result.error == "Execution timeout"


@pytest.mark.asyncio
async def test_execute_with_executor_routes_by_config():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        return httpx.Response(200, json={"success": True, "output": None, "executionTimeMs": 1})

    client = make_client(handler, default_url="https://default.test")
    await client.execute_with_executor(None, {})
    await client.execute_with_executor(ExecutorConfig(type="custom_url", url="https://custom.test"), {})
    assert hosts == ["default.test", "custom.test"]


@pytest.mark.asyncio
async def test_check_executor_health():
    statuses = iter([
        httpx.Response(200, json={"status": "ok"}),
        httpx.Response(200, json={"status": "degraded"}),
        httpx.Response(200, json={"status": "down"}),
        httpx.Response(500),
    ])
    client = make_client(lambda request: next(statuses))
    assert (await client.check_executor_health("https://exec.test")).healthy
    assert (await client.check_executor_health("https://exec.test")).healthy
    assert not (await client.check_executor_health("https://exec.test")).healthy
    failed = await client.check_executor_health("https://exec.test")
    assert not failed.healthy
    assert failed.error == "Health check failed: 500"


@pytest.mark.asyncio
async def test_verify_executor_runs_health_then_test_tool():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        body = json.loads(request.content)
        assert body["packageName"] == "@tpmjs/hello"
        assert body["name"] == "helloWorldTool"
        assert body["params"] == {"includeTimestamp": True}
        return httpx.Response(200, json={"success": True, "output": {"message": "Hello, World!"}, "executionTimeMs": 5})

    result = await make_client(handler).verify_executor("https://exec.test")
    assert result.valid
    assert result.errors == []
    assert calls == ["/health", "/execute-tool"]


@pytest.mark.asyncio
async def test_verify_executor_rejects_bad_urls():
    client = make_client(lambda request: httpx.Response(200, json={"status": "ok"}))
    invalid = await client.verify_executor("not a url")
    assert not invalid.valid
    assert invalid.errors == ["Invalid URL format"]


@pytest.mark.asyncio
async def test_verify_executor_requires_https_in_production():
    def handler(request):
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(200, json={"success": True, "executionTimeMs": 1})

    result = await make_client(handler, production=True).verify_executor("http://exec.test")
    assert not result.valid
    assert "Custom executor URL must use HTTPS in production" in result.errors


@pytest.mark.asyncio
async def test_verify_executor_skips_test_when_unhealthy():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(503)

    result = await make_client(handler).verify_executor("https://exec.test")
    assert not result.valid
    assert result.test_execution is None
    assert calls == ["/health"]
