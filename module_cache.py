import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from tool_models import CachedHandle, CacheStats

logger = logging.getLogger(__name__)


class ModuleCache:
    """Process-lifetime ``packageName::exportName`` -> handle store.

    No eviction: every key stays until ``clear``. Concurrent misses for the
    same key share one in-flight load task.
    """

    def __init__(self):
        self._entries: Dict[str, CachedHandle] = {}
        self._inflight: Dict[str, "asyncio.Task[CachedHandle]"] = {}

    def get(self, key: str) -> Optional[CachedHandle]:
        return self._entries.get(key)

    def put(self, key: str, handle: CachedHandle) -> None:
        self._entries[key] = handle

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Cleared module cache ({count} entries)")
        return count

    def stats(self) -> CacheStats:
        return CacheStats(size=len(self._entries), keys=sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[CachedHandle]]) -> CachedHandle:
        cached = self._entries.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return cached
        # no await between lookup and insert, so only one task per key
        task = self._inflight.get(key)
        if task is None:
            logger.debug(f"Cache miss: {key}")
            task = asyncio.ensure_future(self._load(key, loader))
            self._inflight[key] = task
        else:
            logger.debug(f"Joining in-flight load: {key}")
        # cancelled callers leave the shared load running
        return await asyncio.shield(task)

    async def _load(self, key: str, loader: Callable[[], Awaitable[CachedHandle]]) -> CachedHandle:
        try:
            handle = await loader()
            self.put(key, handle)
            logger.info(f"Cached: {key}")
            return handle
        finally:
            self._inflight.pop(key, None)
