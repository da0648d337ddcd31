import pytest

from conftest import HELLO_URL, SourceServer
from executor_manager import ExecutorManager
from executors.base import Executor
from executors.inline import InlineExecutor
from module_cache import ModuleCache
from module_resolver import ModuleResolver
from tool_loader import HandleShape
from tool_models import ExecRequest, ExecResult, ToolReference
from utils.exceptions import ExecutorUnavailableError, ExportNotFoundError, InvalidToolShapeError


class DummyExecutor(Executor):
    def __init__(self, result=None):
        self._result = result or ExecResult.ok({"ok": True}, 1)
        self.executed = False
        self.handles = []

    async def execute(self, handle, request):
        self.executed = True
        self.handles.append(handle)
        return self._result

    async def validate(self):
        return True

    async def cleanup(self):
        self.executed = False

    @property
    def executor_type(self):
        return "dummy"


def make_manager(sources=None, default_mode="inline"):
    server = SourceServer(sources)
    resolver = ModuleResolver(ModuleCache(), client=server.client())
    return ExecutorManager(resolver, default_mode=default_mode), server


def hello_request(mode=None, **kwargs):
    ref = ToolReference(package_name="@tpmjs/hello", export_name="helloWorldTool", import_url=HELLO_URL)
    return ExecRequest(ref=ref, mode=mode, **kwargs)


@pytest.mark.asyncio
async def test_routing_to_correct_executor(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()))
    dummy = DummyExecutor()
    mgr.register_executor("dummy", dummy)
    result = await mgr.execute(hello_request(mode="dummy"))
    assert dummy.executed
    assert result.output["ok"] is True
    assert dummy.handles[0].key == "@tpmjs/hello::helloWorldTool"


@pytest.mark.asyncio
async def test_default_mode_is_used(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()), default_mode="dummy")
    dummy = DummyExecutor()
    mgr.register_executor("dummy", dummy)
    await mgr.execute(hello_request())
    assert dummy.executed


@pytest.mark.asyncio
async def test_error_missing_executor(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()))
    with pytest.raises(ExecutorUnavailableError) as exc_info:
        await mgr.execute(hello_request(mode="notexist"))
    assert exc_info.value.status_code == 503
    assert source_server.fetches == {}


@pytest.mark.asyncio
async def test_resolution_error_propagates(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()))
    mgr.register_executor("inline", InlineExecutor())
    ref = ToolReference(package_name="@tpmjs/hello", export_name="missing", import_url=HELLO_URL)
    with pytest.raises(ExportNotFoundError):
        await mgr.execute(ExecRequest(ref=ref))


@pytest.mark.asyncio
async def test_hello_world_end_to_end(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()))
    mgr.register_executor("inline", InlineExecutor())
    result = await mgr.execute(hello_request(params={"includeTimestamp": True}))
    assert result.success
    assert result.output["message"] == "Hello, World!"
    assert "timestamp" in result.output
    assert mgr.cache_stats().keys == ["@tpmjs/hello::helloWorldTool"]


@pytest.mark.asyncio
async def test_describe_returns_sanitized_schema(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()))
    ref = ToolReference(package_name="@tpmjs/hello", export_name="helloWorldTool", import_url=HELLO_URL)
    description = await mgr.describe(ref)
    assert description.description == "Returns a friendly greeting"
    assert description.input_schema["type"] == "object"
    assert "includeTimestamp" in description.input_schema["properties"]
    assert description.shape == HandleShape.DIRECT


@pytest.mark.asyncio
async def test_describe_pydantic_schema_through_factory():
    url = "https://tools.test/weather/tool.py"
    source = '''
from pydantic import BaseModel


class WeatherParams(BaseModel):
    city: str
    days: int = 1


class WeatherTool:
    description = "Forecast"
    input_schema = WeatherParams

    def __init__(self, config):
        self.api_key = config["apiKey"]

    def execute(self, params):
        return {"city": params["city"]}


def createWeatherTool(config):
    return WeatherTool(config)
'''
    mgr, _ = make_manager({url: source})
    ref = ToolReference(package_name="weather", export_name="createWeatherTool", import_url=url)
    description = await mgr.describe(ref, {"WEATHER_API_KEY": "k"})
    assert description.shape == HandleShape.CONFIG_FACTORY
    assert description.input_schema["required"] == ["city"]
    assert description.input_schema["properties"]["days"]["type"] == "integer"


@pytest.mark.asyncio
async def test_describe_rejects_missing_description():
    url = "https://tools.test/nodesc/tool.py"
    source = "class T:\n    def execute(self, p):\n        return p\n\ntool = T()\n"
    mgr, _ = make_manager({url: source})
    with pytest.raises(InvalidToolShapeError) as exc_info:
        await mgr.describe(ToolReference(package_name="nodesc", export_name="tool", import_url=url))
    assert exc_info.value.status_code == 400
    assert "execute" in exc_info.value.to_dict()["toolKeys"]


@pytest.mark.asyncio
async def test_describe_rejects_missing_schema():
    url = "https://tools.test/noschema/tool.py"
    source = "class T:\n    description = 'd'\n    def execute(self, p):\n        return p\n\ntool = T()\n"
    mgr, _ = make_manager({url: source})
    with pytest.raises(InvalidToolShapeError) as exc_info:
        await mgr.describe(ToolReference(package_name="noschema", export_name="tool", import_url=url))
    assert exc_info.value.to_dict()["debug"]["hasInputSchema"] is False


@pytest.mark.asyncio
async def test_register_executor_and_environments(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()))
    mgr.register_executor("dummy", DummyExecutor())
    assert "dummy" in mgr.get_available_environments()


@pytest.mark.asyncio
async def test_cleanup_all_executors(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()))
    dummy = DummyExecutor()
    mgr.register_executor("dummy", dummy)
    dummy.executed = True
    await mgr.cleanup()
    assert not dummy.executed


@pytest.mark.asyncio
async def test_clear_cache(source_server):
    mgr = ExecutorManager(ModuleResolver(ModuleCache(), client=source_server.client()))
    mgr.register_executor("inline", InlineExecutor())
    await mgr.execute(hello_request())
    assert mgr.clear_cache() == 1
    assert mgr.cache_stats().size == 0
