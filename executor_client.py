"""Client-side access to tool executors.

Agents and collections may point at their own executor deployment
(``custom_url``); everything else goes to the default executor URL.
"""
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_EXECUTE_TIMEOUT = 300.0
DESCRIBE_TIMEOUT = 30.0
HEALTH_TIMEOUT = 10.0
TEST_TIMEOUT = 30.0

TEST_TOOL_REQUEST = {
    "packageName": "@tpmjs/hello",
    "name": "helloWorldTool",
    "version": "0.0.2",
    "params": {"includeTimestamp": True},
}


class ExecutorConfig(BaseModel):
    type: str = "default"  # 'default' | 'custom_url'
    url: Optional[str] = None
    api_key: Optional[str] = Field(default=None, alias="apiKey")

    class Config:
        populate_by_name = True


class ExecutionResponse(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None
    execution_time_ms: int = Field(default=0, alias="executionTimeMs")
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    code: Optional[str] = None

    class Config:
        populate_by_name = True


class ExecutorHealth(BaseModel):
    healthy: bool
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ExecutorVerification(BaseModel):
    valid: bool
    health_check: Optional[ExecutorHealth] = None
    test_execution: Optional[ExecutionResponse] = None
    errors: List[str] = []


def resolve_executor_config(agent_config: Optional[ExecutorConfig],
                            collection_config: Optional[ExecutorConfig]) -> ExecutorConfig:
    """Agent overrides collection, collection overrides the default executor."""
    if agent_config is not None and agent_config.type != "default":
        return agent_config
    if collection_config is not None and collection_config.type != "default":
        return collection_config
    return ExecutorConfig()


def parse_executor_config(executor_type: Optional[str], raw: Any) -> Optional[ExecutorConfig]:
    if not executor_type:
        return None
    if executor_type == "default":
        return ExecutorConfig()
    if executor_type == "custom_url" and isinstance(raw, dict):
        url = raw.get("url")
        if isinstance(url, str) and url:
            api_key = raw.get("apiKey")
            return ExecutorConfig(type="custom_url", url=url,
                                  api_key=api_key if isinstance(api_key, str) else None)
    return None


def get_executor_description(config: Optional[ExecutorConfig]) -> str:
    if config is None or config.type == "default":
        return "Default Executor"
    if config.type == "custom_url":
        hostname = urlparse(config.url or "").hostname
        return f"Custom: {hostname}" if hostname else "Custom Executor"
    return "Unknown Executor"


def _auth_headers(api_key: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_from_response(response: httpx.Response) -> str:
    data = _error_body(response)
    if data.get("error"):
        return str(data["error"])
    return f"Executor error: {response.status_code}"


class ExecutorClient:
    def __init__(self, default_url: str = "http://localhost:8000", default_api_key: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None, production: bool = False):
        self.default_url = default_url.rstrip("/")
        self.default_api_key = default_api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()
        self.production = production

    async def execute_tool(self, url: str, request: Dict[str, Any], api_key: Optional[str] = None,
                           timeout: float = DEFAULT_EXECUTE_TIMEOUT) -> ExecutionResponse:
        start = time.monotonic()
        try:
            response = await self.client.post(
                f"{url.rstrip('/')}/execute-tool",
                json=request,
                headers=_auth_headers(api_key),
                timeout=timeout,
            )
        except httpx.TimeoutException:
            return ExecutionResponse(success=False, error="Execution timeout",
                                     execution_time_ms=self._elapsed(start))
        except httpx.HTTPError as e:
            return ExecutionResponse(success=False, error=str(e) or type(e).__name__,
                                     execution_time_ms=self._elapsed(start))

        elapsed = self._elapsed(start)
        if not response.is_success:
            return ExecutionResponse(
                success=False,
                error=_error_from_response(response),
                execution_time_ms=elapsed,
                status_code=response.status_code,
                code=_error_body(response).get("code"),
            )
        data = response.json()
        return ExecutionResponse(
            success=bool(data.get("success")),
            output=data.get("output"),
            error=data.get("error"),
            execution_time_ms=data.get("executionTimeMs") or elapsed,
        )

    async def execute_with_executor(self, config: Optional[ExecutorConfig],
                                    request: Dict[str, Any]) -> ExecutionResponse:
        config = config or ExecutorConfig()
        if config.type == "custom_url" and config.url:
            return await self.execute_tool(config.url, request, config.api_key)
        return await self.execute_tool(self.default_url, request, self.default_api_key)

    async def load_and_describe(self, url: str, request: Dict[str, Any],
                                api_key: Optional[str] = None) -> Dict[str, Any]:
        try:
            response = await self.client.post(
                f"{url.rstrip('/')}/load-and-describe",
                json=request,
                headers=_auth_headers(api_key),
                timeout=DESCRIBE_TIMEOUT,
            )
        except httpx.TimeoutException:
            return {"success": False, "error": "Load timeout"}
        except httpx.HTTPError as e:
            return {"success": False, "error": str(e) or type(e).__name__}
        if not response.is_success:
            return {"success": False, "error": _error_from_response(response)}
        return response.json()

    async def check_executor_health(self, url: str, api_key: Optional[str] = None) -> ExecutorHealth:
        try:
            response = await self.client.get(
                f"{url.rstrip('/')}/health",
                headers=_auth_headers(api_key),
                timeout=HEALTH_TIMEOUT,
            )
        except httpx.TimeoutException:
            return ExecutorHealth(healthy=False, error="Health check timeout")
        except httpx.HTTPError as e:
            return ExecutorHealth(healthy=False, error=str(e) or "Unknown error")
        if not response.is_success:
            return ExecutorHealth(healthy=False, error=f"Health check failed: {response.status_code}")
        data = response.json()
        return ExecutorHealth(healthy=data.get("status") in ("ok", "degraded"), response=data)

    async def test_executor(self, url: str, api_key: Optional[str] = None) -> ExecutionResponse:
        return await self.execute_tool(url, TEST_TOOL_REQUEST, api_key, timeout=TEST_TIMEOUT)

    async def verify_executor(self, url: str, api_key: Optional[str] = None) -> ExecutorVerification:
        errors: List[str] = []
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return ExecutorVerification(valid=False, errors=["Invalid URL format"])
        if parsed.scheme != "https" and self.production:
            errors.append("Custom executor URL must use HTTPS in production")

        health = await self.check_executor_health(url, api_key)
        if not health.healthy:
            errors.append(health.error or "Health check failed")

        test_result = None
        if health.healthy:
            test_result = await self.test_executor(url, api_key)
            if not test_result.success:
                errors.append(test_result.error or "Test execution failed")

        logger.info(f"Verified executor {url}: valid={not errors}")
        return ExecutorVerification(valid=not errors, health_check=health, test_execution=test_result, errors=errors)

    def _elapsed(self, start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
