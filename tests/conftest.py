import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import tempfile

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.rest import create_app
from core.config import Settings
from core.db import Base, get_db
from executor_manager import ExecutorManager
from executors.inline import InlineExecutor
from module_cache import ModuleCache
from module_resolver import ModuleResolver
from rate_limiter import RateLimiter
# 테이블 등록
import models.health_record  # noqa: F401
import models.call_record  # noqa: F401

HELLO_TOOL_SOURCE = '''
from datetime import datetime, timezone


class HelloWorldTool:
    description = "Returns a friendly greeting"
    input_schema = {
        "type": "object",
        "properties": {"includeTimestamp": {"type": "boolean"}},
    }

    def execute(self, params):
        result = {"message": "Hello, World!"}
        if params.get("includeTimestamp"):
            result["timestamp"] = datetime.now(timezone.utc).isoformat()
        return result


helloWorldTool = HelloWorldTool()
'''

HELLO_URL = "https://tools.test/hello/tool.py"


@pytest.fixture
def temp_db_url():
    db_fd, db_path = tempfile.mkstemp(suffix=".sqlite3")
    url = f"sqlite+aiosqlite:///{db_path}"
    yield url
    os.close(db_fd)
    os.remove(db_path)


@pytest_asyncio.fixture
async def session_factory(temp_db_url):
    engine = create_async_engine(temp_db_url, future=True, connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


class SourceServer:
    """httpx MockTransport serving tool source by URL, counting fetches."""

    def __init__(self, sources=None):
        self.sources = dict(sources or {})
        self.fetches = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.fetches[url] = self.fetches.get(url, 0) + 1
        if url not in self.sources:
            return httpx.Response(404, text="Not Found")
        return httpx.Response(200, text=self.sources[url])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def source_server():
    return SourceServer({HELLO_URL: HELLO_TOOL_SOURCE})


SLOW_URL = "https://tools.test/slow/tool.py"
SLOW_TOOL_SOURCE = '''
import asyncio


class SlowTool:
    description = "Sleeps for a long time"
    input_schema = {"type": "object", "properties": {}}

    async def execute(self, params):
        await asyncio.sleep(5)
        return {"done": True}


slowTool = SlowTool()
'''

FAILING_URL = "https://tools.test/failing/tool.py"
FAILING_TOOL_SOURCE = '''
class FailingTool:
    description = "Always fails"
    input_schema = {"type": "object", "properties": {}}

    def execute(self, params):
        raise RuntimeError("boom")


failingTool = FailingTool()
'''


def build_app(session_factory, temp_db_url, max_calls=10, **settings_kwargs):
    server = SourceServer({
        HELLO_URL: HELLO_TOOL_SOURCE,
        SLOW_URL: SLOW_TOOL_SOURCE,
        FAILING_URL: FAILING_TOOL_SOURCE,
    })
    settings = Settings(database_url=temp_db_url, **settings_kwargs)
    manager = ExecutorManager(ModuleResolver(ModuleCache(), client=server.client()))
    manager.register_executor("inline", InlineExecutor())
    app = create_app(settings, executor_manager=manager,
                     rate_limiter=RateLimiter(max_calls=max_calls, window_seconds=3600))

    # DI 오버라이드
    async def _get_db():
        async with session_factory() as session:
            yield session
    app.dependency_overrides[get_db] = _get_db
    return app
