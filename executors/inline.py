import asyncio
import inspect
import logging
import os
import time
from typing import Any, Dict

from executors.base import Executor, elapsed_ms, not_executable_message, timeout_message
from factory_normalizer import normalize
from tool_models import CachedHandle, ExecRequest, ExecResult, FailureKind

logger = logging.getLogger(__name__)


class InlineExecutor(Executor):
    """Runs tools inside the service process.

    Env values are written to ``os.environ`` and stay visible to every
    concurrent request. A timed-out synchronous ``execute`` keeps running in
    its worker thread; only the caller stops waiting.
    """

    @property
    def executor_type(self) -> str:
        return "inline"

    async def validate(self) -> bool:
        return True

    async def execute(self, handle: CachedHandle, request: ExecRequest) -> ExecResult:
        start = time.monotonic()
        env = request.env or {}
        if env:
            logger.info(f"Injecting {len(env)} environment variables: {sorted(env)}")
            os.environ.update({key: str(value) for key, value in env.items()})

        normalized = normalize(handle.handle, env)
        if not normalized.executable:
            return ExecResult.fail(not_executable_message(handle.export_name), elapsed_ms(start),
                                   kind=FailureKind.NOT_EXECUTABLE)

        logger.info(f"Executing {handle.key} ({normalized.shape.value})")
        try:
            output = await asyncio.wait_for(
                self._invoke(normalized.tool, request.params),
                timeout=request.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning(f"{handle.key} timed out after {request.timeout_ms}ms")
            return ExecResult.fail(timeout_message(request.timeout_ms), elapsed_ms(start),
                                   kind=FailureKind.TIMEOUT)
        except Exception as e:
            logger.info(f"{handle.key} raised {type(e).__name__}: {e}")
            return ExecResult.fail(str(e) or type(e).__name__, elapsed_ms(start))

        duration = elapsed_ms(start)
        logger.info(f"Execution of {handle.key} complete in {duration}ms")
        return ExecResult.ok(output, duration)

    async def _invoke(self, tool: Any, params: Dict[str, Any]) -> Any:
        execute = tool.execute
        if inspect.iscoroutinefunction(execute):
            return await execute(params)
        result = await asyncio.to_thread(execute, params)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def cleanup(self) -> None:
        pass
