"""
Domain subpackage for the analytics feature.
"""

from .models import (
    Account,
    ActivityConsistency,
    ActivityWindow,
    ChartSeries,
    ContactHandle,
    LeaderboardEntry,
    MessageEvent,
    Metric,
    MetricResult,
    Period,
    ReportEvent,
    SegmentMember,
    SegmentListing,
    SegmentReportLeaderboard,
    Session,
    SubInterval,
    Trend,
    UserActivityRecord,
    WindowSet,
)

__all__ = [
    "Account",
    "ActivityConsistency",
    "ActivityWindow",
    "ChartSeries",
    "ContactHandle",
    "LeaderboardEntry",
    "MessageEvent",
    "Metric",
    "MetricResult",
    "Period",
    "ReportEvent",
    "SegmentMember",
    "SegmentListing",
    "SegmentReportLeaderboard",
    "Session",
    "SubInterval",
    "Trend",
    "UserActivityRecord",
    "WindowSet",
]
