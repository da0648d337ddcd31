from factory_normalizer import config_variations, find_api_key, normalize
from tool_loader import HandleShape


class Tool:
    description = "test tool"

    def __init__(self, config=None):
        self.config = config

    def execute(self, params):
        return {"config": self.config, "params": params}


def test_direct_tool_is_returned_as_is():
    tool = Tool()
    normalized = normalize(tool, {"API_KEY": "x"})
    assert normalized.tool is tool
    assert normalized.shape == HandleShape.DIRECT
    assert normalized.executable


def test_zero_arg_factory():
    def make_tool():
        return Tool()

    normalized = normalize(make_tool)
    assert isinstance(normalized.tool, Tool)
    assert normalized.shape == HandleShape.ZERO_ARG_FACTORY


def test_zero_arg_tried_before_env():
    calls = []

    def make_tool(config=None):
        calls.append(config)
        return Tool(config)

    normalized = normalize(make_tool, {"SERVICE_API_KEY": "secret"})
    assert calls == [None]
    assert normalized.shape == HandleShape.ZERO_ARG_FACTORY


def test_config_factory_with_api_key_variation():
    calls = []

    def make_tool(config):
        calls.append(config)
        if config.get("apiKey") != "secret":
            raise ValueError("apiKey is required")
        return Tool(config)

    normalized = normalize(make_tool, {"SERVICE_API_KEY": "secret"})
    assert normalized.shape == HandleShape.CONFIG_FACTORY
    assert normalized.tool.config == {"apiKey": "secret"}
    assert calls == [{"SERVICE_API_KEY": "secret"}, {"apiKey": "secret"}]


def test_config_factory_with_full_env():
    def make_tool(config):
        return Tool(config)

    normalized = normalize(make_tool, {"REGION": "eu"})
    assert normalized.shape == HandleShape.CONFIG_FACTORY
    assert normalized.tool.config == {"REGION": "eu"}


def test_single_value_factory():
    def make_tool(token):
        if not isinstance(token, str):
            raise TypeError("token must be a string")
        return Tool(token)

    normalized = normalize(make_tool, {"TOKEN": "abc"})
    assert normalized.shape == HandleShape.CONFIG_FACTORY
    assert normalized.tool.config == "abc"


def test_unresolved_factory_returns_raw():
    def make_tool(a, b):
        return Tool()

    normalized = normalize(make_tool, {"TOKEN": "abc"})
    assert normalized.tool is make_tool
    assert normalized.shape == HandleShape.UNRESOLVED
    assert not normalized.executable


def test_factory_returning_non_tool_is_unresolved():
    def make_tool():
        return {"not": "a tool"}

    normalized = normalize(make_tool)
    assert normalized.shape == HandleShape.UNRESOLVED


def test_async_factory_is_skipped():
    async def make_tool():
        return Tool()

    normalized = normalize(make_tool)
    assert normalized.shape == HandleShape.UNRESOLVED


def test_non_callable_value_is_unresolved():
    normalized = normalize({"description": "dict"})
    assert normalized.shape == HandleShape.UNRESOLVED


def test_declared_config_factory_skips_probing():
    calls = []

    def make_tool(config=None):
        calls.append(config)
        return Tool(config)

    make_tool.__tool_shape__ = "config_factory"
    normalized = normalize(make_tool, {"REGION": "eu"})
    assert calls == [{"REGION": "eu"}]
    assert normalized.shape == HandleShape.CONFIG_FACTORY


def test_declared_zero_arg_factory_failure_is_unresolved():
    def make_tool():
        raise RuntimeError("nope")

    make_tool.__tool_shape__ = "zero_arg_factory"
    normalized = normalize(make_tool, {"REGION": "eu"})
    assert normalized.shape == HandleShape.UNRESOLVED


def test_find_api_key_and_variations():
    env = {"REGION": "eu", "MY_API_KEY": "k"}
    assert find_api_key(env) == "k"
    labels = [label for label, _ in config_variations(env)]
    assert labels == ["env", "apiKey", "key", "first-value"]
    assert find_api_key({"REGION": "eu"}) is None
