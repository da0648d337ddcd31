import time
from abc import ABC, abstractmethod

from tool_models import CachedHandle, ExecRequest, ExecResult


def elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def timeout_message(timeout_ms: int) -> str:
    return f"Execution timeout after {timeout_ms}ms"


def not_executable_message(export_name: str) -> str:
    return f'Tool "{export_name}" could not be resolved to an object with a callable execute()'


class Executor(ABC):
    @abstractmethod
    async def execute(self, handle: CachedHandle, request: ExecRequest) -> ExecResult:
        """캐시된 핸들을 request.params로 실행. 실패도 ExecResult로 반환하고 예외를 던지지 않음"""
        pass

    @abstractmethod
    async def validate(self) -> bool:
        """이 executor를 현재 호스트에서 사용할 수 있는지 검증"""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """executor가 사용한 리소스 정리"""
        pass

    @property
    @abstractmethod
    def executor_type(self) -> str:
        """executor의 타입(inline, sandbox, docker) 반환"""
        pass
