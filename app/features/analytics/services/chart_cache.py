"""
Redis-backed cache for computed chart series.

Each series is written twice in one transaction: a fresh copy that expires
after ``ANALYTICS_CACHE_TTL_S`` and a stale copy kept for
``ANALYTICS_CACHE_STALE_TTL_S``. On a miss the series is recomputed in a
background task. Callers with a stale copy wait at most
``ANALYTICS_CACHE_REFRESH_WAIT_S`` for it and are served the stale copy
after that while the refresh finishes and stores its result; callers
without one wait for the computation itself. Redis errors degrade to a
cache miss.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable

from app.config import settings
from app.features.analytics.domain.models import ChartSeries, Metric, Period
from app.features.analytics.errors import UpstreamUnavailable
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

KEY_PREFIX = "analytics:chart"


def chart_cache_key(metric: Metric, period: Period, exclude_test: bool) -> str:
    period_slug = period.value.lower().replace(" ", "-")
    return f"{KEY_PREFIX}:{metric.value}:{period_slug}:{int(exclude_test)}"


class ChartCache:
    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        ttl_s: int | None = None,
        stale_ttl_s: int | None = None,
        refresh_wait_s: float | None = None,
    ):
        self.redis = redis_client or fast_redis
        self.ttl_s = ttl_s or settings.ANALYTICS_CACHE_TTL_S
        self.stale_ttl_s = stale_ttl_s or settings.ANALYTICS_CACHE_STALE_TTL_S
        self.refresh_wait_s = refresh_wait_s or settings.ANALYTICS_CACHE_REFRESH_WAIT_S
        # key -> refresh in flight in this process
        self._refreshing: dict[str, asyncio.Task[ChartSeries]] = {}

    async def _read(self, key: str) -> ChartSeries | None:
        raw = await self.redis.get(key)
        if not raw:
            return None
        try:
            return ChartSeries.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cached chart", key=key, error=str(e))
            return None

    async def _write(self, key: str, series: ChartSeries) -> None:
        payload = json.dumps(series.as_dict())
        stored = await self.redis.set_many_with_ttl(
            [
                (key, payload, self.ttl_s),
                (f"{key}:stale", payload, self.stale_ttl_s),
            ]
        )
        if not stored:
            logger.warning("Chart series not cached", key=key)

    async def _compute_and_store(
        self, key: str, compute: Callable[[], Awaitable[ChartSeries]]
    ) -> ChartSeries:
        series = await compute()
        if series.failed_points:
            logger.warning(
                "Partially failed chart series not cached",
                key=key,
                failed_points=series.failed_points,
            )
        else:
            await self._write(key, series)
        return series

    def _refresh(
        self, key: str, compute: Callable[[], Awaitable[ChartSeries]]
    ) -> asyncio.Task[ChartSeries]:
        task = self._refreshing.get(key)
        if task is not None:
            return task

        task = asyncio.create_task(self._compute_and_store(key, compute))
        self._refreshing[key] = task

        def _done(finished: asyncio.Task[ChartSeries]) -> None:
            if self._refreshing.get(key) is finished:
                del self._refreshing[key]
            if not finished.cancelled() and finished.exception() is not None:
                logger.warning("Chart refresh failed", key=key, error=str(finished.exception()))

        task.add_done_callback(_done)
        return task

    async def get_or_compute(
        self,
        metric: Metric,
        period: Period,
        exclude_test: bool,
        compute: Callable[[], Awaitable[ChartSeries]],
    ) -> ChartSeries:
        """
        Return a cached series or compute and cache a new one.

        Series with zero-filled points are returned but not cached; a stale
        complete series is preferred over them when one exists.
        """
        key = chart_cache_key(metric, period, exclude_test)

        cached = await self._read(key)
        if cached is not None:
            logger.debug("Chart cache hit", key=key)
            return cached

        task = self._refresh(key, compute)

        stale = await self._read(f"{key}:stale")
        if stale is None:
            return await asyncio.shield(task)

        try:
            series = await asyncio.wait_for(asyncio.shield(task), timeout=self.refresh_wait_s)
        except TimeoutError:
            logger.warning(
                "Serving stale chart while refresh continues",
                key=key,
                refresh_wait_s=self.refresh_wait_s,
            )
            return stale
        except UpstreamUnavailable as e:
            logger.warning(
                "Serving stale chart after failed refresh",
                key=key,
                error=str(e) or type(e).__name__,
            )
            return stale

        if series.failed_points:
            logger.warning(
                "Serving stale chart over partially failed refresh",
                key=key,
                failed_points=series.failed_points,
            )
            return stale
        return series
