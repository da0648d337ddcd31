import logging
import time
from typing import Dict, List, Optional

from executors.base import Executor, elapsed_ms
from factory_normalizer import normalize
from module_resolver import ModuleResolver
from schema_extractor import extract_json_schema, public_attributes, sanitize_json_schema, schema_diagnostics
from tool_models import CacheStats, ExecRequest, ExecResult, ToolDescription, ToolReference
from utils.exceptions import ExecutorUnavailableError, InvalidToolShapeError

logger = logging.getLogger(__name__)


class ExecutorManager:
    """Resolve tools through the cache and dispatch them to an executor by mode."""

    def __init__(self, resolver: ModuleResolver, default_mode: str = "inline", default_timeout_ms: int = 300_000):
        self.resolver = resolver
        self.default_mode = default_mode
        self.default_timeout_ms = default_timeout_ms
        self.executors: Dict[str, Executor] = {}

    @property
    def cache(self):
        return self.resolver.cache

    def register_executor(self, mode: str, executor: Executor) -> None:
        self.executors[mode] = executor

    def get_available_environments(self) -> List[str]:
        return list(self.executors.keys())

    def get_executor(self, mode: Optional[str] = None) -> Executor:
        mode = mode or self.default_mode
        executor = self.executors.get(mode)
        if executor is None:
            raise ExecutorUnavailableError(
                f"No executor available for mode '{mode}'",
                dev_message=f"registered: {self.get_available_environments()}",
            )
        return executor

    async def execute(self, request: ExecRequest) -> ExecResult:
        """Resolution errors raise ToolRunnerError; execution failures come back as results."""
        executor = self.get_executor(request.mode)
        start = time.monotonic()
        handle = await self.resolver.resolve(request.ref)
        result = await executor.execute(handle, request)
        # include resolution time
        result.duration_ms = max(result.duration_ms, elapsed_ms(start))
        if result.success:
            logger.info(f"[{request.ref.cache_key}] success in {result.duration_ms}ms via {executor.executor_type}")
        else:
            logger.info(f"[{request.ref.cache_key}] {result.kind.value}: {result.error}")
        return result

    async def describe(self, ref: ToolReference, env: Optional[Dict[str, str]] = None) -> ToolDescription:
        handle = await self.resolver.resolve(ref)
        normalized = normalize(handle.handle, env or {})
        tool = normalized.tool
        description = getattr(tool, "description", None)
        if not description or not normalized.executable:
            logger.error(f"Invalid tool structure for {handle.key}: description={bool(description)}, "
                         f"execute={normalized.executable}")
            raise InvalidToolShapeError(
                "Invalid tool structure (missing description or execute)",
                extra={"toolKeys": public_attributes(tool)},
            )

        raw_schema = extract_json_schema(tool, handle.key)
        if raw_schema is None:
            raise InvalidToolShapeError(
                f'Tool "{ref.export_name}" has no valid input_schema. Tools must provide a JSON-schema dict '
                f'or a pydantic model.',
                extra={"debug": schema_diagnostics(tool)},
            )
        logger.info(f"Extracted schema for {handle.key}")
        return ToolDescription(
            export_name=ref.export_name,
            description=str(description),
            input_schema=sanitize_json_schema(raw_schema),
            shape=normalized.shape,
        )

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> int:
        return self.cache.clear()

    async def cleanup(self) -> None:
        for executor in self.executors.values():
            await executor.cleanup()
        await self.resolver.aclose()