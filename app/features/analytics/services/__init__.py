"""
Service layer for analytics.

Request orchestration plus the two caches: the in-process identity snapshot
and the Redis-backed chart series cache.
"""

from .analytics_service import AnalyticsService, analytics_service, get_analytics_service
from .chart_cache import ChartCache
from .snapshot_cache import SnapshotCache

__all__ = [
    "AnalyticsService",
    "ChartCache",
    "SnapshotCache",
    "analytics_service",
    "get_analytics_service",
]
