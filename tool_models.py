from pydantic import BaseModel, Field, StrictStr
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List

from tool_loader import HandleShape


def utcnow() -> datetime:
    # naive UTC, the form SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    BROKEN = "BROKEN"
    UNKNOWN = "UNKNOWN"


class FailureKind(str, Enum):
    FETCH_FAILED = "FetchFailed"
    EXPORT_NOT_FOUND = "ExportNotFound"
    INVALID_TOOL_SHAPE = "InvalidToolShape"
    INVALID_REFERENCE = "InvalidReference"
    MODULE_LOAD_FAILED = "ModuleLoadFailed"
    NOT_EXECUTABLE = "NotExecutable"
    TIMEOUT = "Timeout"
    MEMORY_LIMIT = "MemoryLimit"
    RUNTIME_THROW = "RuntimeThrow"
    RATE_LIMITED = "RateLimited"
    EXECUTOR_UNAVAILABLE = "ExecutorUnavailable"


class ToolReference(BaseModel):
    package_name: StrictStr
    export_name: StrictStr
    version: str = "latest"
    import_url: Optional[str] = None

    class Config:
        frozen = True

    @property
    def cache_key(self) -> str:
        return f"{self.package_name}::{self.export_name}"

    def __str__(self) -> str:
        return f"ToolReference({self.package_name}@{self.version}, {self.export_name})"


class CachedHandle(BaseModel):
    key: str
    handle: Any
    export_name: str
    import_url: str
    source: str
    cached_at: datetime = Field(default_factory=utcnow)

    class Config:
        arbitrary_types_allowed = True


class ExecRequest(BaseModel):
    ref: ToolReference
    params: Dict[str, Any] = Field(default_factory=dict)
    env: Optional[Dict[str, str]] = None
    timeout_ms: int = 300_000
    mode: Optional[str] = None  # 'inline', 'sandbox', 'docker'


class ExecResult(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None
    kind: Optional[FailureKind] = None
    duration_ms: int
    logs: List[str] = []

    @classmethod
    def ok(cls, output: Any, duration_ms: int, logs: Optional[List[str]] = None) -> "ExecResult":
        return cls(success=True, output=output, duration_ms=duration_ms, logs=logs or [])

    @classmethod
    def fail(cls, message: str, duration_ms: int, kind: FailureKind = FailureKind.RUNTIME_THROW,
             logs: Optional[List[str]] = None) -> "ExecResult":
        return cls(success=False, error=message, kind=kind, duration_ms=duration_ms, logs=logs or [])


class ToolDescription(BaseModel):
    export_name: str
    description: str
    input_schema: Dict[str, Any]
    shape: HandleShape = HandleShape.DIRECT


class CacheStats(BaseModel):
    size: int
    keys: List[str]
