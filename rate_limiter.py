import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import delete, func
from sqlalchemy.future import select

from models.call_record import CallRecord
from tool_models import utcnow

logger = logging.getLogger(__name__)

IDENTITY_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def client_identity(headers: Mapping[str, str]) -> str:
    """First hop of x-forwarded-for, then x-real-ip, then cf-connecting-ip."""
    for name in IDENTITY_HEADERS:
        value = headers.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return "unknown"


class RateLimitDecision(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after_seconds: int = 0

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat() + "Z",
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class MemoryCallLog:
    """Per-identity timestamps kept in process memory.

    Every ``sweep_interval_seconds`` all identities are pruned, and the store
    never holds more than ``max_identities`` of them: when it is full, the
    identities with the oldest latest call are evicted first.
    """

    def __init__(self, max_identities: int = 10000, sweep_interval_seconds: int = 300):
        self._calls: Dict[str, Deque[datetime]] = {}
        self.max_identities = max_identities
        self.sweep_interval = timedelta(seconds=sweep_interval_seconds)
        self._last_sweep: Optional[datetime] = None
        self._since: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self._calls)

    async def window(self, identity: str, since: datetime) -> Tuple[int, Optional[datetime]]:
        self._since = since
        if self._last_sweep is None or since - self._last_sweep >= self.sweep_interval:
            self.sweep(since)
        calls = self._calls.get(identity)
        if not calls:
            return 0, None
        while calls and calls[0] < since:
            calls.popleft()
        if not calls:
            del self._calls[identity]
            return 0, None
        return len(calls), calls[0]

    async def record(self, identity: str, at: datetime) -> None:
        if identity not in self._calls and len(self._calls) >= self.max_identities:
            self.sweep(self._since or at)
        self._calls.setdefault(identity, deque()).append(at)

    def sweep(self, since: datetime) -> int:
        """Drop calls older than ``since``, then evict down below the cap."""
        removed = 0
        for identity in list(self._calls):
            calls = self._calls[identity]
            while calls and calls[0] < since:
                calls.popleft()
            if not calls:
                del self._calls[identity]
                removed += 1

        if len(self._calls) >= self.max_identities:
            by_latest = sorted(self._calls, key=lambda key: self._calls[key][-1])
            excess = len(self._calls) - self.max_identities + max(1, self.max_identities // 5)
            for identity in by_latest[:excess]:
                del self._calls[identity]
                removed += 1

        self._last_sweep = since
        if removed:
            logger.info(f"Rate limit store cleaned up {removed} identities ({len(self._calls)} remaining)")
        return removed

    async def reset(self) -> None:
        self._calls.clear()
        self._last_sweep = None


class SqlCallLog:
    """Call records in the ``call_records`` table, counted with a range query."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def window(self, identity: str, since: datetime) -> Tuple[int, Optional[datetime]]:
        async with self.session_factory() as db:
            await db.execute(
                delete(CallRecord).where(CallRecord.called_at < since)
            )
            await db.commit()
            result = await db.execute(
                select(func.count(CallRecord.id), func.min(CallRecord.called_at))
                .where(CallRecord.identity == identity, CallRecord.called_at >= since)
            )
            count, oldest = result.one()
            return count or 0, oldest

    async def record(self, identity: str, at: datetime) -> None:
        async with self.session_factory() as db:
            db.add(CallRecord(identity=identity, called_at=at))
            await db.commit()

    async def reset(self) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(CallRecord))
            await db.commit()


class RateLimiter:
    """Fixed number of calls per rolling window per identity.

    Denied checks are not recorded, so a client that keeps retrying does not
    push its own reset time forward.
    """

    def __init__(self, store=None, max_calls: int = 10, window_seconds: int = 3600,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store or MemoryCallLog()
        self.max_calls = max_calls
        self.window = timedelta(seconds=window_seconds)
        self.clock = clock
        self._lock = asyncio.Lock()

    async def check(self, identity: str) -> RateLimitDecision:
        async with self._lock:
            now = self.clock()
            count, oldest = await self.store.window(identity, now - self.window)
            if count >= self.max_calls:
                reset_at = (oldest or now) + self.window
                logger.warning(f"Rate limit exceeded for {identity}: {count}/{self.max_calls}")
                retry_after = max(1, int((reset_at - now).total_seconds()))
                return RateLimitDecision(allowed=False, limit=self.max_calls, remaining=0, reset_at=reset_at,
                                         retry_after_seconds=retry_after)
            await self.store.record(identity, now)
            reset_at = (oldest or now) + self.window
            return RateLimitDecision(
                allowed=True,
                limit=self.max_calls,
                remaining=self.max_calls - (count + 1),
                reset_at=reset_at,
            )

    async def status(self, identity: str) -> RateLimitDecision:
        """Current occupancy without recording a call."""
        async with self._lock:
            now = self.clock()
            count, oldest = await self.store.window(identity, now - self.window)
            return RateLimitDecision(
                allowed=count < self.max_calls,
                limit=self.max_calls,
                remaining=max(0, self.max_calls - count),
                reset_at=(oldest or now) + self.window,
            )

    async def reset(self) -> None:
        async with self._lock:
            await self.store.reset()
