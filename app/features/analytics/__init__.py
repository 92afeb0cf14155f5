"""
Engagement analytics feature package.

This vertical slice keeps every layer of the analytics engine co-located
(domain models, identity resolution, activity sources, the windowing,
aggregation and segmentation pipeline, services and API router).
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as analytics_router  # noqa: F401
from .services.analytics_service import AnalyticsService, analytics_service  # noqa: F401
from .domain.models import Metric, Period, MetricResult, ChartSeries  # noqa: F401
