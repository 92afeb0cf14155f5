"""
Segmentation package for analytics.

Classifies per-handle activity into engagement segments and computes the
dashboard metrics.
"""

from .service import POWER_USER_THRESHOLDS, SegmentationEngine, power_user_threshold

__all__ = ["POWER_USER_THRESHOLDS", "SegmentationEngine", "power_user_threshold"]
