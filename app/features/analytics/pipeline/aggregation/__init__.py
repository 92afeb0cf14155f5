"""
Aggregation package for analytics.

Merges raw session, message and report feeds into per-handle activity
records for a window.
"""

from .service import ActivityAggregator, ActivityMap

__all__ = ["ActivityAggregator", "ActivityMap"]
