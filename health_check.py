import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from executor_client import ExecutorClient
from health_classifier import classify_outcome
from health_registry import HealthRegistry
from models.health_record import tool_id_for
from tool_models import FailureKind, HealthStatus

logger = logging.getLogger(__name__)

SKIPPED_ERROR = "Skipped due to import failure"
RATE_LIMITED_STATUS = 429
TEST_VALUES = {
    "string": "test",
    "number": 1,
    "integer": 1,
    "boolean": True,
    "object": {},
    "array": [],
}


class ToolParameter(BaseModel):
    name: str
    type: str = "string"
    required: bool = False


class ToolCheckTarget(BaseModel):
    package_name: str = Field(alias="packageName")
    export_name: str = Field(alias="exportName")
    version: str = "latest"
    import_url: Optional[str] = Field(default=None, alias="importUrl")
    env: Dict[str, str] = Field(default_factory=dict)
    parameters: List[ToolParameter] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    @property
    def tool_id(self) -> str:
        return tool_id_for(self.package_name, self.export_name)


class CheckOutcome(BaseModel):
    status: HealthStatus
    error: Optional[str] = None
    time_ms: int = 0


class HealthCheckResult(BaseModel):
    tool_id: str
    import_status: HealthStatus
    import_error: Optional[str] = None
    import_time_ms: int = 0
    execution_status: HealthStatus
    execution_error: Optional[str] = None
    execution_time_ms: int = 0
    test_params: Dict[str, Any] = Field(default_factory=dict)
    overall_status: HealthStatus


def generate_test_parameters(parameters: List[ToolParameter]) -> Dict[str, Any]:
    """Placeholder values for required parameters only."""
    return {
        p.name: TEST_VALUES.get(p.type, "test")
        for p in parameters if p.required
    }


def overall_status(import_status: HealthStatus, execution_status: HealthStatus) -> HealthStatus:
    if HealthStatus.BROKEN in (import_status, execution_status):
        return HealthStatus.BROKEN
    if import_status == HealthStatus.HEALTHY and execution_status == HealthStatus.HEALTHY:
        return HealthStatus.HEALTHY
    return HealthStatus.UNKNOWN


class HealthCheckService:
    """Import + execution checks against an executor, stored via HealthRegistry."""

    def __init__(self, client: ExecutorClient, session_factory, executor_url: Optional[str] = None,
                 api_key: Optional[str] = None, batch_pause_seconds: float = 1.0):
        self.client = client
        self.session_factory = session_factory
        self.executor_url = executor_url or client.default_url
        self.api_key = api_key if api_key is not None else client.default_api_key
        self.batch_pause_seconds = batch_pause_seconds

    def _request(self, target: ToolCheckTarget) -> Dict[str, Any]:
        request = {
            "packageName": target.package_name,
            "exportName": target.export_name,
            "version": target.version,
            "env": target.env,
        }
        if target.import_url:
            request["importUrl"] = target.import_url
        return request

    async def check_import(self, target: ToolCheckTarget) -> CheckOutcome:
        start = time.monotonic()
        data = await self.client.load_and_describe(self.executor_url, self._request(target), self.api_key)
        elapsed = int((time.monotonic() - start) * 1000)
        if not data.get("success"):
            status, error = classify_outcome(False, data.get("error") or "Unknown error")
            return CheckOutcome(status=status, error=error, time_ms=elapsed)
        tool = data.get("tool") or {}
        if not tool.get("description") or not tool.get("inputSchema"):
            return CheckOutcome(status=HealthStatus.BROKEN,
                                error="Missing required tool fields (description or inputSchema)",
                                time_ms=elapsed)
        return CheckOutcome(status=HealthStatus.HEALTHY, time_ms=elapsed)

    async def check_execution(self, target: ToolCheckTarget, test_params: Dict[str, Any]) -> CheckOutcome:
        request = self._request(target)
        request["name"] = target.export_name
        request["params"] = test_params
        result = await self.client.execute_tool(self.executor_url, request, self.api_key, timeout=30.0)
        if result.status_code == RATE_LIMITED_STATUS or result.code == FailureKind.RATE_LIMITED.value:
            # 호출자 쪽 제한이므로 도구 상태는 판단 불가
            logger.warning(f"Execution check for {target.tool_id} was rate limited")
            return CheckOutcome(status=HealthStatus.UNKNOWN, error=result.error, time_ms=result.execution_time_ms)
        status, error = classify_outcome(result.success, result.error)
        return CheckOutcome(status=status, error=error, time_ms=result.execution_time_ms)

    async def check_tool(self, target: ToolCheckTarget) -> HealthCheckResult:
        logger.info(f"Health check starting for {target.package_name}/{target.export_name}")
        import_result = await self.check_import(target)
        logger.info(f"  Import: {import_result.status.value} {import_result.error or ''}")

        test_params: Dict[str, Any] = {}
        if import_result.status == HealthStatus.HEALTHY:
            test_params = generate_test_parameters(target.parameters)
            execution_result = await self.check_execution(target, test_params)
        else:
            execution_result = CheckOutcome(status=HealthStatus.UNKNOWN, error=SKIPPED_ERROR)
        logger.info(f"  Execution: {execution_result.status.value} {execution_result.error or ''}")

        overall = overall_status(import_result.status, execution_result.status)
        logger.info(f"  Overall: {overall.value}")

        async with self.session_factory() as db:
            await HealthRegistry(db).record_check(
                target.package_name,
                target.export_name,
                import_health=import_result.status,
                execution_health=execution_result.status,
                error=import_result.error or execution_result.error,
            )

        return HealthCheckResult(
            tool_id=target.tool_id,
            import_status=import_result.status,
            import_error=import_result.error,
            import_time_ms=import_result.time_ms,
            execution_status=execution_result.status,
            execution_error=execution_result.error,
            execution_time_ms=execution_result.time_ms,
            test_params=test_params,
            overall_status=overall,
        )

    async def check_batch(self, targets: List[ToolCheckTarget], batch_size: int = 5) -> Dict[str, int]:
        counts = {"total": len(targets), "healthy": 0, "broken": 0, "unknown": 0, "errors": 0}
        batches = [targets[i:i + batch_size] for i in range(0, len(targets), batch_size)]
        logger.info(f"Batch health check starting for {len(targets)} tools (batch size: {batch_size})")
        for index, batch in enumerate(batches):
            logger.info(f"  Processing batch {index + 1}/{len(batches)}")
            results = await asyncio.gather(*(self.check_tool(t) for t in batch), return_exceptions=True)
            for target, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.error(f"  Health check failed for {target.tool_id}: {result}")
                    counts["errors"] += 1
                elif result.overall_status == HealthStatus.HEALTHY:
                    counts["healthy"] += 1
                elif result.overall_status == HealthStatus.BROKEN:
                    counts["broken"] += 1
                else:
                    counts["unknown"] += 1
            if index < len(batches) - 1 and self.batch_pause_seconds:
                await asyncio.sleep(self.batch_pause_seconds)
        logger.info(f"Batch health check complete: {counts}")
        return counts
