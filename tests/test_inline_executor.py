import asyncio
import os
import time

import pytest

from executors.inline import InlineExecutor
from tool_models import CachedHandle, ExecRequest, FailureKind, ToolReference


def make_handle(value, export_name="tool"):
    return CachedHandle(key=f"pkg::{export_name}", handle=value, export_name=export_name,
                        import_url="mem://pkg", source="")


def make_request(params=None, env=None, timeout_ms=5000):
    return ExecRequest(ref=ToolReference(package_name="pkg", export_name="tool"),
                       params=params or {}, env=env, timeout_ms=timeout_ms)


class AddTool:
    description = "adds"

    def execute(self, params):
        return {"sum": params["a"] + params["b"]}


class AsyncEchoTool:
    description = "echo"

    async def execute(self, params):
        await asyncio.sleep(0)
        return {"echo": params["msg"]}


class SlowTool:
    description = "slow"

    async def execute(self, params):
        await asyncio.sleep(2)
        return "late"


class FailingTool:
    description = "fails"

    def execute(self, params):
        raise ValueError("city is required")


@pytest.mark.asyncio
async def test_successful_execution():
    result = await InlineExecutor().execute(make_handle(AddTool()), make_request({"a": 2, "b": 3}))
    assert result.success
    assert result.output == {"sum": 5}
    assert result.duration_ms >= 0


@pytest.mark.asyncio
async def test_async_execute_is_awaited():
    result = await InlineExecutor().execute(make_handle(AsyncEchoTool()), make_request({"msg": "hi"}))
    assert result.success
    assert result.output == {"echo": "hi"}


@pytest.mark.asyncio
async def test_exception_becomes_failure():
    result = await InlineExecutor().execute(make_handle(FailingTool()), make_request())
    assert not result.success
    assert result.kind == FailureKind.RUNTIME_THROW
    assert result.error == "city is required"


@pytest.mark.asyncio
async def test_timeout_is_enforced():
    start = time.monotonic()
    result = await InlineExecutor().execute(make_handle(SlowTool()), make_request(timeout_ms=100))
    elapsed = time.monotonic() - start
    assert not result.success
    assert result.kind == FailureKind.TIMEOUT
    assert "timeout" in result.error.lower()
    assert elapsed < 1.5


@pytest.mark.asyncio
async def test_env_is_injected_into_process():
    class EnvTool:
        description = "env"

        def execute(self, params):
            return os.environ.get("INLINE_TEST_TOKEN")

    try:
        result = await InlineExecutor().execute(make_handle(EnvTool()), make_request(env={"INLINE_TEST_TOKEN": "t0k"}))
        assert result.output == "t0k"
    finally:
        os.environ.pop("INLINE_TEST_TOKEN", None)


@pytest.mark.asyncio
async def test_factory_is_normalized_with_env():
    def make_tool(config):
        if "apiKey" not in config:
            raise ValueError("apiKey missing")

        class Configured:
            description = "configured"

            def execute(self, params):
                return config["apiKey"]
        return Configured()

    try:
        result = await InlineExecutor().execute(make_handle(make_tool), make_request(env={"WEATHER_API_KEY": "k1"}))
        assert result.success
        assert result.output == "k1"
    finally:
        os.environ.pop("WEATHER_API_KEY", None)


@pytest.mark.asyncio
async def test_non_executable_export():
    result = await InlineExecutor().execute(make_handle({"description": "no execute"}), make_request())
    assert not result.success
    assert result.kind == FailureKind.NOT_EXECUTABLE


@pytest.mark.asyncio
async def test_validate_and_type():
    executor = InlineExecutor()
    assert await executor.validate()
    assert executor.executor_type == "inline"
