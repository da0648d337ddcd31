import logging
import platform
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, Security
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import require_api_key, security, verify_api_key
from core.config import Settings, get_settings
from core.db import get_db, init_engine, init_models
from executor_manager import ExecutorManager
from executors.docker import DockerExecutor
from executors.inline import InlineExecutor
from executors.sandbox import SandboxExecutor
from health_registry import HealthRegistry
from module_cache import ModuleCache
from module_resolver import ModuleResolver
from rate_limiter import MemoryCallLog, RateLimitDecision, RateLimiter, SqlCallLog, client_identity
from schemas.health_record import HealthRecordRead, HealthReportData, ReportHealthRequest, ReportHealthResponse
from schemas.tool import (
    CacheClearResponse,
    CacheStatsResponse,
    DescribeToolRequest,
    DescribeToolResponse,
    ExecuteToolRequest,
    ExecuteToolResponse,
    ToolDescriptionRead,
)
from tool_models import ExecRequest, ExecResult, FailureKind, ToolReference
from utils.exceptions import RateLimitedError, ToolRunnerError

logger = logging.getLogger(__name__)

# 실행 실패 종류별 HTTP 상태 코드 (그 외는 500)
EXECUTION_FAILURE_STATUS = {
    FailureKind.TIMEOUT: 504,
    FailureKind.MEMORY_LIMIT: 507,
}


def build_executor_manager(settings: Settings) -> ExecutorManager:
    resolver = ModuleResolver(
        ModuleCache(),
        url_template=settings.import_url_template,
        fetch_timeout=settings.fetch_timeout_seconds,
        load_timeout=settings.module_load_timeout_seconds,
    )
    manager = ExecutorManager(
        resolver,
        default_mode=settings.executor_mode,
        default_timeout_ms=settings.execution_timeout_ms,
    )
    manager.register_executor("inline", InlineExecutor())
    manager.register_executor("sandbox", SandboxExecutor(memory_limit_mb=settings.sandbox_memory_mb))
    manager.register_executor("docker", DockerExecutor(
        base_image=settings.docker_image,
        memory_limit_mb=settings.sandbox_memory_mb,
        network_mode=settings.docker_network,
        work_dir=settings.package_cache_dir,
    ))
    return manager


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.rate_limit_store == "database":
        store = SqlCallLog(init_engine(settings.database_url))
    else:
        store = MemoryCallLog(max_identities=settings.rate_limit_max_identities)
    return RateLimiter(
        store,
        max_calls=settings.rate_limit_max_calls,
        window_seconds=settings.rate_limit_window_seconds,
    )


def _elapsed_ms(request: Request) -> int:
    started_at = getattr(request.state, "started_at", None)
    if started_at is None:
        return 0
    return int((time.monotonic() - started_at) * 1000)


def _validation_message(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(messages) or "Invalid request"


def create_app(settings: Optional[Settings] = None, executor_manager: Optional[ExecutorManager] = None,
               rate_limiter: Optional[RateLimiter] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_engine(settings.database_url)
        await init_models()
        logger.info(f"Tool runner started (mode={settings.executor_mode}, "
                    f"timeout={settings.execution_timeout_ms}ms, memory={settings.sandbox_memory_mb}MB)")
        yield
        await app.state.executor_manager.cleanup()

    app = FastAPI(title="Tool Runner", description="Dynamic tool resolution and execution engine",
                  lifespan=lifespan)
    app.state.settings = settings
    app.state.executor_manager = executor_manager or build_executor_manager(settings)
    app.state.rate_limiter = rate_limiter or build_rate_limiter(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def track_request_start(request: Request, call_next):
        request.state.started_at = time.monotonic()
        return await call_next(request)

    # DI
    def get_executor_manager(request: Request) -> ExecutorManager:
        return request.app.state.executor_manager

    async def get_health_registry(db: AsyncSession = Depends(get_db)) -> HealthRegistry:
        return HealthRegistry(db)

    async def enforce_rate_limit(request: Request,
                                 credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
                                 ) -> Optional[RateLimitDecision]:
        # EXECUTOR_API_KEY 보유자(내부 호출자, 헬스체크)는 제한하지 않음
        expected = settings.executor_api_key
        if expected and credentials and verify_api_key(credentials.credentials, expected):
            return None
        identity = client_identity(request.headers)
        decision = await request.app.state.rate_limiter.check(identity)
        if not decision.allowed:
            raise RateLimitedError(
                "Rate limit exceeded. Please try again later.",
                dev_message=f"identity={identity}",
                extra={
                    "limit": decision.limit,
                    "remaining": 0,
                    "resetAt": decision.reset_at.isoformat() + "Z",
                },
                headers=decision.headers(),
            )
        return decision

    async def record_health(registry: HealthRegistry, ref: ToolReference, result: ExecResult) -> None:
        try:
            await registry.report(ref.package_name, ref.export_name, result.success, result.error)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record health for {ref.cache_key}: {e}")

    # 라우트
    @app.get("/health")
    async def health(manager: ExecutorManager = Depends(get_executor_manager)):
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "cacheSize": len(manager.cache),
            "executorMode": manager.default_mode,
            "pythonVersion": platform.python_version(),
            "memoryLimitMb": settings.sandbox_memory_mb,
            "timeoutMs": settings.execution_timeout_ms,
        }

    @app.post("/execute-tool", response_model=ExecuteToolResponse, dependencies=[Depends(require_api_key)])
    async def execute_tool(body: ExecuteToolRequest, response: Response,
                           decision: Optional[RateLimitDecision] = Depends(enforce_rate_limit),
                           manager: ExecutorManager = Depends(get_executor_manager),
                           registry: HealthRegistry = Depends(get_health_registry)):
        ref = body.to_ref()
        env_keys = sorted(body.env) if body.env else []
        logger.info(f"Execute request: {ref.package_name}@{ref.version} {ref.export_name} envKeys={env_keys}")
        exec_request = ExecRequest(
            ref=ref,
            params=body.params,
            env=body.env,
            timeout_ms=body.timeout_ms or manager.default_timeout_ms,
            mode=body.mode,
        )
        result = await manager.execute(exec_request)
        if settings.record_health_on_execute:
            await record_health(registry, ref, result)

        rate_headers = decision.headers() if decision else {}
        payload = ExecuteToolResponse(
            success=result.success,
            output=jsonable_encoder(result.output),
            error=result.error,
            execution_time_ms=result.duration_ms,
        )
        if not result.success:
            return JSONResponse(
                status_code=EXECUTION_FAILURE_STATUS.get(result.kind, 500),
                content=payload.model_dump(by_alias=True),
                headers=rate_headers,
            )
        response.headers.update(rate_headers)
        return payload

    @app.post("/load-and-describe", response_model=DescribeToolResponse, dependencies=[Depends(require_api_key)])
    async def load_and_describe(body: DescribeToolRequest, manager: ExecutorManager = Depends(get_executor_manager)):
        description = await manager.describe(body.to_ref(), body.env)
        return DescribeToolResponse(tool=ToolDescriptionRead(
            export_name=description.export_name,
            description=description.description,
            input_schema=description.input_schema,
        ))

    @app.post("/cache/clear", response_model=CacheClearResponse, dependencies=[Depends(require_api_key)])
    async def clear_cache(manager: ExecutorManager = Depends(get_executor_manager)):
        cleared = manager.clear_cache()
        return CacheClearResponse(cleared=cleared, message=f"Cleared {cleared} cached modules")

    @app.get("/cache/stats", response_model=CacheStatsResponse, dependencies=[Depends(require_api_key)])
    async def cache_stats(manager: ExecutorManager = Depends(get_executor_manager)):
        stats = manager.cache_stats()
        return CacheStatsResponse(cache_size=stats.size, cached_tools=stats.keys)

    @app.post("/report-health", response_model=ReportHealthResponse, dependencies=[Depends(require_api_key)])
    async def report_health(body: ReportHealthRequest, registry: HealthRegistry = Depends(get_health_registry)):
        record = await registry.report(body.package_name, body.export_name, body.success, body.error, body.error_kind)
        return ReportHealthResponse(data=HealthReportData(
            tool_id=record.tool_id,
            health_status=record.execution_health,
            health_error=record.last_error,
        ))

    @app.get("/health-records", response_model=List[HealthRecordRead], dependencies=[Depends(require_api_key)])
    async def list_health_records(package_name: Optional[str] = Query(default=None, alias="packageName"),
                                  export_name: Optional[str] = Query(default=None, alias="exportName"),
                                  registry: HealthRegistry = Depends(get_health_registry)):
        if package_name and export_name:
            record = await registry.get_record(package_name, export_name)
            if record is None:
                return JSONResponse(status_code=404, content={
                    "success": False,
                    "error": f"No health record for {package_name}::{export_name}",
                })
            return [record]
        return await registry.list_records(package_name)

    @app.exception_handler(ToolRunnerError)
    async def tool_runner_exception_handler(request: Request, exc: ToolRunnerError):
        logger.error(f"[{exc.code}] {exc.message} {exc.dev_message} | {request.url}")
        content = exc.to_dict()
        content["executionTimeMs"] = _elapsed_ms(request)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content), headers=exc.headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={
            "success": False,
            "error": exc.detail,
        }, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={
            "success": False,
            "error": _validation_message(exc),
            "details": jsonable_encoder(exc.errors()),
        })

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url}: {exc}")
        return JSONResponse(status_code=500, content={
            "success": False,
            "error": str(exc) or "Internal server error",
            "executionTimeMs": _elapsed_ms(request),
        })

    return app


app = create_app()
