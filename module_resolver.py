import asyncio
import logging
from typing import Optional

import httpx

from core.config import DEFAULT_IMPORT_URL_TEMPLATE
from module_cache import ModuleCache
from tool_loader import list_exports, load_module_from_source, module_name_for, select_export
from tool_models import CachedHandle, ToolReference
from utils.exceptions import ExportNotFoundError, FetchFailedError, InvalidReferenceError, ModuleLoadError

logger = logging.getLogger(__name__)


class ModuleResolver:
    """Resolve a ToolReference to a cached export, fetching at most once per key."""

    def __init__(self, cache: ModuleCache, url_template: str = DEFAULT_IMPORT_URL_TEMPLATE,
                 client: Optional[httpx.AsyncClient] = None, fetch_timeout: float = 30.0,
                 load_timeout: float = 30.0):
        self.cache = cache
        self.load_timeout = load_timeout
        self.url_template = url_template
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=fetch_timeout, follow_redirects=True)

    def import_url_for(self, ref: ToolReference) -> str:
        if ref.import_url:
            return ref.import_url
        return self.url_template.format(package=ref.package_name, version=ref.version)

    async def resolve(self, ref: ToolReference) -> CachedHandle:
        if not ref.package_name.strip():
            raise InvalidReferenceError("packageName must be a non-empty string")
        if not ref.export_name.strip():
            raise InvalidReferenceError("exportName must be a non-empty string")
        return await self.cache.get_or_load(ref.cache_key, lambda: self._load(ref))

    async def _load(self, ref: ToolReference) -> CachedHandle:
        import_url = self.import_url_for(ref)
        logger.info(f"Loading {ref.package_name}@{ref.version} from {import_url}")
        source = await self._fetch(import_url)

        try:
            # 모듈 최상위 코드는 워커 스레드에서 실행; 시간 초과 시 스레드는 계속 돌 수 있음
            module = await asyncio.wait_for(
                asyncio.to_thread(load_module_from_source, source, module_name_for(ref.package_name), import_url),
                timeout=self.load_timeout,
            )
        except asyncio.TimeoutError:
            raise ModuleLoadError(
                f"Failed to import module {ref.package_name}: import timed out after {self.load_timeout}s",
                dev_message=import_url,
            )
        except SyntaxError as e:
            raise ModuleLoadError(
                f"Failed to parse module {ref.package_name}: {e.msg} (line {e.lineno})",
                dev_message=import_url,
            )
        except Exception as e:
            raise ModuleLoadError(
                f"Failed to import module {ref.package_name}: {e}",
                dev_message=f"{type(e).__name__} while evaluating {import_url}",
            )

        value = select_export(module, ref.export_name)
        if not value:
            available = list_exports(module)
            logger.warning(f"Export {ref.export_name} not found in {ref.package_name}, available: {available}")
            raise ExportNotFoundError(ref.export_name, available)

        return CachedHandle(
            key=ref.cache_key,
            handle=value,
            export_name=ref.export_name,
            import_url=import_url,
            source=source,
        )

    async def _fetch(self, url: str) -> str:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise FetchFailedError(f"Failed to fetch module from {url}: {e}", dev_message=type(e).__name__)
        if response.status_code < 200 or response.status_code >= 300:
            raise FetchFailedError(
                f"Failed to fetch module from {url}: HTTP {response.status_code}",
                dev_message=response.text[:200],
            )
        return response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
