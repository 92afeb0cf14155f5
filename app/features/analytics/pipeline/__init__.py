"""
Pipeline components for analytics.

Windows, aggregation, segmentation and the statistics they share. Each
request rebuilds everything from the activity sources.
"""

__all__ = ["aggregation", "segmentation"]
