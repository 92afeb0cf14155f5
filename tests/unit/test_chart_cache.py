import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from app.features.analytics.domain.models import ChartSeries, Metric, Period
from app.features.analytics.errors import UpstreamUnavailable
from app.features.analytics.services.chart_cache import ChartCache, chart_cache_key


def _series(data, failed_points=0):
    return ChartSeries(
        metric=Metric.ACTIVE_USERS.value,
        period=Period.LAST_7_DAYS,
        exclude_test=True,
        labels=[f"Jun {d}" for d in range(1, len(data) + 1)],
        data=data,
        failed_points=failed_points,
    )


def _cache(fake_redis):
    return ChartCache(redis_client=fake_redis, ttl_s=300, stale_ttl_s=3600, refresh_wait_s=1)


def test_cache_key_includes_metric_period_and_exclusion():
    key = chart_cache_key(Metric.POWER_USERS, Period.LAST_3_MONTHS, True)

    assert key == "analytics:chart:power-users:last-3-months:1"


@pytest.mark.asyncio
async def test_computed_series_is_written_fresh_and_stale(fake_redis):
    cache = _cache(fake_redis)
    compute = AsyncMock(return_value=_series([1.0, 2.0]))

    series = await cache.get_or_compute(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, compute)

    key = chart_cache_key(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True)
    assert series.data == [1.0, 2.0]
    assert json.loads(fake_redis.store[key])["data"] == [1.0, 2.0]
    assert fake_redis.ttls[key] == 300
    assert fake_redis.ttls[f"{key}:stale"] == 3600


@pytest.mark.asyncio
async def test_fresh_hit_skips_compute(fake_redis):
    cache = _cache(fake_redis)
    await cache.get_or_compute(
        Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, AsyncMock(return_value=_series([3.0]))
    )
    compute = AsyncMock(return_value=_series([9.0]))

    series = await cache.get_or_compute(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, compute)

    assert series.data == [3.0]
    compute.assert_not_awaited()


@pytest.mark.asyncio
async def test_stale_copy_served_when_compute_fails(fake_redis):
    cache = _cache(fake_redis)
    key = chart_cache_key(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True)
    fake_redis.store[f"{key}:stale"] = json.dumps(_series([4.0]).as_dict())
    compute = AsyncMock(side_effect=UpstreamUnavailable("down", source="postgres"))

    series = await cache.get_or_compute(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, compute)

    assert series.data == [4.0]


@pytest.mark.asyncio
async def test_compute_failure_without_stale_copy_propagates(fake_redis):
    cache = _cache(fake_redis)
    compute = AsyncMock(side_effect=UpstreamUnavailable("down", source="postgres"))

    with pytest.raises(UpstreamUnavailable):
        await cache.get_or_compute(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, compute)


@pytest.mark.asyncio
async def test_partially_failed_series_is_not_cached(fake_redis):
    cache = _cache(fake_redis)
    compute = AsyncMock(return_value=_series([0.0, 2.0], failed_points=1))

    series = await cache.get_or_compute(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, compute)

    assert series.failed_points == 1
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_unreadable_cache_entry_is_treated_as_miss(fake_redis):
    cache = _cache(fake_redis)
    key = chart_cache_key(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True)
    fake_redis.store[key] = "not-json"
    compute = AsyncMock(return_value=_series([5.0]))

    series = await cache.get_or_compute(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, compute)

    assert series.data == [5.0]
    compute.assert_awaited_once()


def _slow(series, delay_s):
    async def compute():
        await asyncio.sleep(delay_s)
        return series

    return compute


@pytest.mark.asyncio
async def test_slow_compute_without_stale_copy_is_awaited_in_full(fake_redis):
    cache = ChartCache(redis_client=fake_redis, ttl_s=300, stale_ttl_s=3600, refresh_wait_s=0.01)

    series = await cache.get_or_compute(
        Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, _slow(_series([1.0, 2.0]), 0.05)
    )

    key = chart_cache_key(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True)
    assert series.data == [1.0, 2.0]
    assert series.failed_points == 0
    assert key in fake_redis.store


@pytest.mark.asyncio
async def test_slow_compute_serves_stale_and_stores_result_when_done(fake_redis):
    cache = ChartCache(redis_client=fake_redis, ttl_s=300, stale_ttl_s=3600, refresh_wait_s=0.01)
    key = chart_cache_key(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True)
    fake_redis.store[f"{key}:stale"] = json.dumps(_series([4.0]).as_dict())

    series = await cache.get_or_compute(
        Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, _slow(_series([7.0]), 0.05)
    )

    assert series.data == [4.0]
    await asyncio.gather(*cache._refreshing.values())
    assert json.loads(fake_redis.store[key])["data"] == [7.0]


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_computation(fake_redis):
    cache = _cache(fake_redis)
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return _series([6.0])

    first, second = await asyncio.gather(
        cache.get_or_compute(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, compute),
        cache.get_or_compute(Metric.ACTIVE_USERS, Period.LAST_7_DAYS, True, compute),
    )

    assert first.data == second.data == [6.0]
    assert calls == 1
