import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# .env 파일에서 환경변수 로드
load_dotenv()

DEFAULT_IMPORT_URL_TEMPLATE = "https://unpkg.com/{package}@{version}/tool.py"


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings. Every field maps to one environment variable."""

    database_url: str = "sqlite+aiosqlite:///./tool_runner.db"   # DATABASE_URL
    executor_mode: str = "inline"                               # EXECUTOR_MODE: inline | sandbox | docker
    execution_timeout_ms: int = 300_000                          # EXECUTION_TIMEOUT_MS
    sandbox_memory_mb: int = 128                                 # SANDBOX_MEMORY_MB
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])  # ALLOWED_ORIGINS
    package_cache_dir: str = "/tmp/.tool-runner-cache"          # PACKAGE_CACHE_DIR
    import_url_template: str = DEFAULT_IMPORT_URL_TEMPLATE       # TOOL_IMPORT_URL_TEMPLATE
    fetch_timeout_seconds: int = 30                              # FETCH_TIMEOUT_SECONDS
    module_load_timeout_seconds: int = 30                        # MODULE_LOAD_TIMEOUT_SECONDS
    rate_limit_max_calls: int = 10                               # RATE_LIMIT_MAX_CALLS
    rate_limit_window_seconds: int = 3600                        # RATE_LIMIT_WINDOW_SECONDS
    rate_limit_store: str = "memory"                             # RATE_LIMIT_STORE: memory | database
    rate_limit_max_identities: int = 10000                       # RATE_LIMIT_MAX_IDENTITIES
    record_health_on_execute: bool = True                        # RECORD_HEALTH_ON_EXECUTE
    executor_api_key: Optional[str] = None                       # EXECUTOR_API_KEY
    default_executor_url: str = "http://localhost:8000"          # DEFAULT_EXECUTOR_URL
    docker_image: str = "python:3.12-slim"                       # DOCKER_IMAGE
    docker_network: str = "none"                                 # DOCKER_NETWORK
    environment: str = "development"                             # ENVIRONMENT
    log_level: str = "INFO"                                      # LOG_LEVEL

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            executor_mode=os.getenv("EXECUTOR_MODE", defaults.executor_mode),
            execution_timeout_ms=_int("EXECUTION_TIMEOUT_MS", defaults.execution_timeout_ms),
            sandbox_memory_mb=_int("SANDBOX_MEMORY_MB", defaults.sandbox_memory_mb),
            allowed_origins=_list("ALLOWED_ORIGINS", defaults.allowed_origins),
            package_cache_dir=os.getenv("PACKAGE_CACHE_DIR", defaults.package_cache_dir),
            import_url_template=os.getenv("TOOL_IMPORT_URL_TEMPLATE", defaults.import_url_template),
            fetch_timeout_seconds=_int("FETCH_TIMEOUT_SECONDS", defaults.fetch_timeout_seconds),
            module_load_timeout_seconds=_int("MODULE_LOAD_TIMEOUT_SECONDS", defaults.module_load_timeout_seconds),
            rate_limit_max_calls=_int("RATE_LIMIT_MAX_CALLS", defaults.rate_limit_max_calls),
            rate_limit_window_seconds=_int("RATE_LIMIT_WINDOW_SECONDS", defaults.rate_limit_window_seconds),
            rate_limit_store=os.getenv("RATE_LIMIT_STORE", defaults.rate_limit_store),
            rate_limit_max_identities=_int("RATE_LIMIT_MAX_IDENTITIES", defaults.rate_limit_max_identities),
            record_health_on_execute=_bool("RECORD_HEALTH_ON_EXECUTE", defaults.record_health_on_execute),
            executor_api_key=os.getenv("EXECUTOR_API_KEY") or None,
            default_executor_url=os.getenv("DEFAULT_EXECUTOR_URL", defaults.default_executor_url),
            docker_image=os.getenv("DOCKER_IMAGE", defaults.docker_image),
            docker_network=os.getenv("DOCKER_NETWORK", defaults.docker_network),
            environment=os.getenv("ENVIRONMENT", defaults.environment),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def get_settings() -> Settings:
    return Settings.from_env()
