"""
Analytics API response models.
Used by the analytics router for output formatting.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.features.analytics.domain.models import (
    ActivityConsistency,
    ChartSeries,
    MetricResult,
    SegmentListing,
    SegmentMember,
    SegmentReportLeaderboard,
)


class MetricResponse(BaseModel):
    """Current vs previous value for one metric."""

    metric: str = Field(..., description="Metric slug")
    period: str = Field(..., description="Resolved period name")
    exclude_test: bool = Field(..., description="Whether test traffic was excluded")
    current_value: float = Field(..., description="Value for the current window")
    previous_value: float = Field(..., description="Value for the previous window")
    percent_change: int = Field(..., ge=0, description="Magnitude of the change, in percent")
    direction: Literal["up", "down", "neutral"] = Field(..., description="Sign of the change")
    error: str | None = Field(None, description="Set when part of the result was zero-filled")

    @classmethod
    def from_result(cls, result: MetricResult) -> "MetricResponse":
        return cls(**result.as_dict())


class OverviewResponse(BaseModel):
    """All dashboard metrics computed against one reference instant."""

    period: str = Field(..., description="Resolved period name")
    exclude_test: bool = Field(..., description="Whether test traffic was excluded")
    metrics: list[MetricResponse] = Field(..., description="One entry per metric")


class ChartResponse(BaseModel):
    """Chart series for one metric."""

    metric: str = Field(..., description="Metric slug")
    period: str = Field(..., description="Resolved period name")
    exclude_test: bool = Field(..., description="Whether test traffic was excluded")
    labels: list[str] = Field(..., description="One label per sub-interval, oldest first")
    data: list[float] = Field(..., description="One value per sub-interval")
    failed_points: int = Field(default=0, description="Sub-intervals zero-filled after upstream failures")
    error: str | None = Field(None, description="Set when any point was zero-filled")

    @classmethod
    def from_series(cls, series: ChartSeries) -> "ChartResponse":
        return cls(**series.as_dict())


class HandleActivityResponse(BaseModel):
    """A contact handle in a segment drill-down."""

    handle: str = Field(..., description="Email address or wallet address")
    handle_type: Literal["email", "wallet"] = Field(..., description="Kind of handle")
    action_count: int = Field(..., description="Messages plus reports in the window")
    active_days: int = Field(..., description="Distinct UTC days with activity")

    @classmethod
    def from_member(cls, member: SegmentMember) -> "HandleActivityResponse":
        return cls(**member.as_dict())


class SegmentHandlesResponse(BaseModel):
    """Handles currently classified into a segment."""

    segment: str = Field(..., description="Segment slug")
    period: str | None = Field(None, description="Resolved period name, if the segment uses one")
    exclude_test: bool = Field(..., description="Whether test traffic was excluded")
    total_count: int = Field(..., description="Number of handles in the segment")
    handles: list[HandleActivityResponse] = Field(..., description="Handles sorted by activity")
    error: str | None = Field(None, description="Set when the list could not be computed")

    @classmethod
    def from_listing(cls, listing: SegmentListing) -> "SegmentHandlesResponse":
        return cls(
            segment=listing.segment,
            period=listing.period.value if listing.period else None,
            exclude_test=listing.exclude_test,
            total_count=len(listing.members),
            handles=[HandleActivityResponse.from_member(m) for m in listing.members],
            error=listing.error,
        )


class ActivityConsistencyRequest(BaseModel):
    """Emails to report active days for."""

    emails: list[str] = Field(..., min_length=1, description="Account emails to look up")
    period: str | None = Field(None, description="Period name; defaults to 'Last 30 Days'")


class ActivityConsistencyResponse(BaseModel):
    """Distinct active days per requested email."""

    period: str = Field(..., description="Resolved period name")
    exclude_test: bool = Field(..., description="Whether test traffic was excluded")
    active_days: dict[str, int] = Field(..., description="Email to distinct UTC days with activity")
    error: str | None = Field(None, description="Set when the days could not be computed")

    @classmethod
    def from_consistency(cls, consistency: ActivityConsistency) -> "ActivityConsistencyResponse":
        return cls(
            period=consistency.period.value,
            exclude_test=consistency.exclude_test,
            active_days=consistency.active_days,
            error=consistency.error,
        )


class LeaderboardEntryResponse(BaseModel):
    email: str = Field(..., description="Account email")
    segment_report_count: int = Field(..., description="Segment-report sessions this month")


class SegmentReportLeaderboardResponse(BaseModel):
    """Segment-report sessions per email since the start of the month."""

    since: datetime = Field(..., description="Start of the current UTC month")
    exclude_test: bool = Field(..., description="Whether test traffic was excluded")
    entries: list[LeaderboardEntryResponse] = Field(..., description="Busiest first")
    error: str | None = Field(None, description="Set when the leaderboard could not be computed")

    @classmethod
    def from_leaderboard(cls, leaderboard: SegmentReportLeaderboard) -> "SegmentReportLeaderboardResponse":
        return cls(
            since=leaderboard.since,
            exclude_test=leaderboard.exclude_test,
            entries=[LeaderboardEntryResponse(**entry.as_dict()) for entry in leaderboard.entries],
            error=leaderboard.error,
        )
