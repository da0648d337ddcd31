from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from tool_models import FailureKind


class ToolRunnerError(HTTPException):
    """Request-fatal engine error rendered by the app exception handler."""

    kind: FailureKind = FailureKind.RUNTIME_THROW
    default_status = 500

    def __init__(self, message: str, dev_message: str = "", status_code: Optional[int] = None,
                 extra: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=status_code or self.default_status, detail=message, headers=headers)
        self.code = self.kind.value
        self.message = message
        self.dev_message = dev_message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        body.update(self.extra)
        return body

    def __str__(self) -> str:
        return self.message


class InvalidReferenceError(ToolRunnerError):
    kind = FailureKind.INVALID_REFERENCE
    default_status = 400


class FetchFailedError(ToolRunnerError):
    kind = FailureKind.FETCH_FAILED
    default_status = 502


class ModuleLoadError(ToolRunnerError):
    kind = FailureKind.MODULE_LOAD_FAILED
    default_status = 422


class ExportNotFoundError(ToolRunnerError):
    kind = FailureKind.EXPORT_NOT_FOUND
    default_status = 404

    def __init__(self, export_name: str, available_exports: List[str], **kwargs):
        super().__init__(
            f'Export "{export_name}" not found in module',
            extra={"availableExports": available_exports},
            **kwargs,
        )
        self.available_exports = available_exports


class InvalidToolShapeError(ToolRunnerError):
    kind = FailureKind.INVALID_TOOL_SHAPE
    default_status = 400


class ExecutorUnavailableError(ToolRunnerError):
    kind = FailureKind.EXECUTOR_UNAVAILABLE
    default_status = 503


class RateLimitedError(ToolRunnerError):
    kind = FailureKind.RATE_LIMITED
    default_status = 429
