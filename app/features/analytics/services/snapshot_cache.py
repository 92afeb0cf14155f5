"""
In-process snapshot cache with single-flight refresh.

Entries expire after ``ttl_s``. Only one refresh per key runs at a time;
concurrent callers wait for it. If a refresh fails or overruns
``refresh_wait_s`` the previous (stale) snapshot is served instead. A
refresh replaces the whole entry, so readers never see a partial snapshot.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from app.config import settings
from app.features.analytics.errors import UpstreamUnavailable
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class _Entry(Generic[T]):
    value: T
    expires_at: float


class SnapshotCache(Generic[T]):
    def __init__(
        self,
        ttl_s: float | None = None,
        refresh_wait_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_s = ttl_s if ttl_s is not None else settings.ANALYTICS_CACHE_TTL_S
        self.refresh_wait_s = (
            refresh_wait_s if refresh_wait_s is not None else settings.ANALYTICS_CACHE_REFRESH_WAIT_S
        )
        self._clock = clock
        self._entries: dict[str, _Entry[T]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _fresh(self, key: str) -> _Entry[T] | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            return entry
        return None

    async def get(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        entry = self._fresh(key)
        if entry is not None:
            return entry.value

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited.
            entry = self._fresh(key)
            if entry is not None:
                return entry.value

            stale = self._entries.get(key)
            try:
                value = await asyncio.wait_for(loader(), timeout=self.refresh_wait_s)
            except (UpstreamUnavailable, TimeoutError) as e:
                if stale is None:
                    logger.error("Snapshot refresh failed with nothing cached", key=key, error=str(e))
                    if isinstance(e, UpstreamUnavailable):
                        raise
                    raise UpstreamUnavailable(
                        f"snapshot refresh exceeded {self.refresh_wait_s}s",
                        source="snapshot_cache",
                        operation=key,
                    ) from e
                logger.warning(
                    "Serving stale snapshot after failed refresh",
                    key=key,
                    error=str(e) or type(e).__name__,
                    stale_for_s=round(self._clock() - stale.expires_at, 1),
                )
                return stale.value

            self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_s)
            logger.debug("Snapshot refreshed", key=key, ttl_s=self.ttl_s)
            return value

