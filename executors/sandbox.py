import asyncio
import json
import logging
import os
import sys
import time
from typing import Dict, List, Optional

from executors.base import Executor, elapsed_ms, timeout_message
from tool_loader import module_name_for
from tool_models import CachedHandle, ExecRequest, ExecResult, FailureKind

try:
    import resource
except ImportError:  # Windows
    resource = None

logger = logging.getLogger(__name__)

RUNNER_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "runner.py")
INHERITED_ENV = ("PATH", "LANG", "LC_ALL", "SYSTEMROOT", "TMPDIR")
MAX_LOG_LINES = 50


def build_payload(handle: CachedHandle, request: ExecRequest) -> Dict:
    return {
        "source": handle.source,
        "module_name": module_name_for(request.ref.package_name),
        "origin": handle.import_url,
        "export_name": handle.export_name,
        "params": request.params,
        "env": request.env or {},
    }


def tail_lines(text: str, limit: int = MAX_LOG_LINES) -> List[str]:
    return [line for line in text.splitlines() if line.strip()][-limit:]


def result_from_child(stdout: str, stderr: str, exit_code: Optional[int], duration_ms: int,
                      out_of_memory: bool = False) -> ExecResult:
    """Build an ExecResult from the runner's last stdout line."""
    logs = tail_lines(stderr)
    if out_of_memory:
        return ExecResult.fail("Memory limit exceeded", duration_ms, kind=FailureKind.MEMORY_LIMIT, logs=logs)

    lines = [line for line in stdout.splitlines() if line.strip()]
    if lines:
        try:
            data = json.loads(lines[-1])
        except ValueError:
            data = None
        if isinstance(data, dict) and "success" in data:
            if data["success"]:
                return ExecResult.ok(data.get("output"), duration_ms, logs=logs)
            try:
                kind = FailureKind(data.get("kind") or FailureKind.RUNTIME_THROW.value)
            except ValueError:
                kind = FailureKind.RUNTIME_THROW
            return ExecResult.fail(data.get("error") or "Tool execution failed", duration_ms, kind=kind, logs=logs)

    if "MemoryError" in stderr:
        return ExecResult.fail("Memory limit exceeded", duration_ms, kind=FailureKind.MEMORY_LIMIT, logs=logs)
    return ExecResult.fail(f"Tool process exited with code {exit_code} without a result", duration_ms, logs=logs)


def _memory_limiter(limit_bytes: int):
    def apply():
        resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, limit_bytes))
    return apply


class SandboxExecutor(Executor):
    """Runs each call in a fresh child interpreter.

    The child gets only the request env, an address-space ceiling and is
    killed when the timeout expires.
    """

    def __init__(self, memory_limit_mb: int = 128, python_bin: Optional[str] = None):
        self.memory_limit_mb = memory_limit_mb
        self.python_bin = python_bin or sys.executable
        self._running = set()

    @property
    def executor_type(self) -> str:
        return "sandbox"

    async def validate(self) -> bool:
        return os.path.exists(self.python_bin) and os.path.exists(RUNNER_PATH)

    def child_env(self, env: Optional[Dict[str, str]]) -> Dict[str, str]:
        child = {key: os.environ[key] for key in INHERITED_ENV if key in os.environ}
        child["PYTHONIOENCODING"] = "utf-8"
        child.update({key: str(value) for key, value in (env or {}).items()})
        return child

    async def execute(self, handle: CachedHandle, request: ExecRequest) -> ExecResult:
        start = time.monotonic()
        payload = json.dumps(build_payload(handle, request), default=str).encode("utf-8")
        preexec = None
        if resource is not None and self.memory_limit_mb:
            preexec = _memory_limiter(self.memory_limit_mb * 1024 * 1024)

        if request.env:
            logger.info(f"Passing {len(request.env)} environment variables to sandbox: {sorted(request.env)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.python_bin, "-I", RUNNER_PATH,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.child_env(request.env),
                preexec_fn=preexec,
            )
        except OSError as e:
            return ExecResult.fail(f"Failed to start sandbox process: {e}", elapsed_ms(start))

        self._running.add(proc)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(payload), timeout=request.timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(f"{handle.key} timed out after {request.timeout_ms}ms, killing pid {proc.pid}")
            await self._kill(proc)
            return ExecResult.fail(timeout_message(request.timeout_ms), elapsed_ms(start), kind=FailureKind.TIMEOUT)
        finally:
            self._running.discard(proc)

        duration = elapsed_ms(start)
        result = result_from_child(
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            proc.returncode,
            duration,
        )
        logger.info(f"Sandbox run of {handle.key} finished in {duration}ms (exit {proc.returncode}, success={result.success})")
        return result

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()

    async def cleanup(self) -> None:
        for proc in list(self._running):
            await self._kill(proc)
        self._running.clear()
