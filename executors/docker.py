import asyncio
import json
import logging
import os
import shutil
import tempfile
import time
from typing import Optional

import docker

from executors.base import Executor, elapsed_ms, timeout_message
from executors.sandbox import RUNNER_PATH, build_payload, result_from_child
from tool_models import CachedHandle, ExecRequest, ExecResult, FailureKind

logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
# runner.py와 그 의존 모듈만 컨테이너에 마운트
RUNNER_FILES = ("tool_loader.py", "factory_normalizer.py")
CONTAINER_LABEL = "tool-runner"
OOM_EXIT_CODE = 137


class DockerExecutor(Executor):
    def __init__(self, base_image: str = "python:3.12-slim", memory_limit_mb: int = 128,
                 cpu_quota: int = 50000, network_mode: str = "none", client=None, work_dir: Optional[str] = None):
        self._client = client
        self.work_dir = work_dir
        self.base_image = base_image
        self.memory_limit_mb = memory_limit_mb
        self.cpu_quota = cpu_quota
        self.network_mode = network_mode

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    @property
    def executor_type(self) -> str:
        return "docker"

    async def validate(self) -> bool:
        try:
            await asyncio.to_thread(self.client.ping)
            return True
        except Exception as e:
            logger.warning(f"Docker daemon unavailable: {e}")
            return False

    def _prepare_workdir(self, handle: CachedHandle, request: ExecRequest) -> str:
        if self.work_dir:
            os.makedirs(self.work_dir, exist_ok=True)
        temp_dir = tempfile.mkdtemp(prefix="tool-runner-", dir=self.work_dir)
        lib_dir = os.path.join(temp_dir, "lib")
        os.makedirs(os.path.join(lib_dir, "executors"))
        shutil.copy(RUNNER_PATH, os.path.join(lib_dir, "executors", "runner.py"))
        for name in RUNNER_FILES:
            shutil.copy(os.path.join(PROJECT_ROOT, name), os.path.join(lib_dir, name))
        with open(os.path.join(temp_dir, "payload.json"), "w", encoding="utf-8") as f:
            json.dump(build_payload(handle, request), f, default=str)
        return temp_dir

    async def execute(self, handle: CachedHandle, request: ExecRequest) -> ExecResult:
        start = time.monotonic()
        temp_dir = self._prepare_workdir(handle, request)
        container = None
        try:
            container = await asyncio.to_thread(
                self.client.containers.run,
                self.base_image,
                command=["python", "-I", "/data/lib/executors/runner.py", "/data/payload.json"],
                volumes={temp_dir: {"bind": "/data", "mode": "ro"}},
                environment={key: str(value) for key, value in (request.env or {}).items()},
                detach=True,
                mem_limit=f"{self.memory_limit_mb}m",
                memswap_limit=f"{self.memory_limit_mb}m",
                cpu_period=100000,
                cpu_quota=self.cpu_quota,
                network_mode=self.network_mode,
                labels={CONTAINER_LABEL: handle.key},
            )
            try:
                status = await asyncio.wait_for(asyncio.to_thread(container.wait), timeout=request.timeout_ms / 1000)
            except asyncio.TimeoutError:
                logger.warning(f"{handle.key} timed out after {request.timeout_ms}ms, killing container")
                try:
                    await asyncio.to_thread(container.kill)
                except docker.errors.DockerException as e:
                    logger.warning(f"Failed to kill container for {handle.key}: {e}")
                return ExecResult.fail(timeout_message(request.timeout_ms), elapsed_ms(start), kind=FailureKind.TIMEOUT)

            exit_code = status.get("StatusCode", 1)
            stdout = (await asyncio.to_thread(container.logs, stdout=True, stderr=False)).decode("utf-8", errors="replace")
            stderr = (await asyncio.to_thread(container.logs, stdout=False, stderr=True)).decode("utf-8", errors="replace")
            await asyncio.to_thread(container.reload)
            oom = bool(container.attrs.get("State", {}).get("OOMKilled")) or exit_code == OOM_EXIT_CODE
            return result_from_child(stdout, stderr, exit_code, elapsed_ms(start), out_of_memory=oom)
        except docker.errors.DockerException as e:
            logger.error(f"Docker execution of {handle.key} failed: {e}")
            return ExecResult.fail(f"Docker execution failed: {e}", elapsed_ms(start))
        finally:
            if container is not None:
                try:
                    await asyncio.to_thread(container.remove, force=True)
                except docker.errors.DockerException as e:
                    logger.warning(f"Failed to remove container: {e}")
            shutil.rmtree(temp_dir, ignore_errors=True)

    async def cleanup(self) -> None:
        if self._client is None:
            return
        try:
            containers = await asyncio.to_thread(
                self.client.containers.list, all=True, filters={"label": CONTAINER_LABEL})
            for container in containers:
                await asyncio.to_thread(container.remove, force=True)
        except docker.errors.DockerException as e:
            logger.warning(f"Docker cleanup failed: {e}")
