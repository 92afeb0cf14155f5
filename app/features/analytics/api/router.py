"""
Analytics routes.

Read-only endpoints backing the internal engagement dashboard. Upstream
failures come back as zeroed results with an ``error`` field rather than
5xx responses.
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from app.features.analytics.api.schemas import (
    ActivityConsistencyRequest,
    ActivityConsistencyResponse,
    ChartResponse,
    MetricResponse,
    OverviewResponse,
    SegmentHandlesResponse,
    SegmentReportLeaderboardResponse,
)
from app.features.analytics.domain.models import Metric, Period
from app.features.analytics.services.analytics_service import (
    AnalyticsService,
    get_analytics_service,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])

PERIOD_QUERY = Query(
    default=Period.default().value,
    description="Period name, e.g. 'Last 7 Days'. Unknown names fall back to 'Last 30 Days'.",
)
EXCLUDE_TEST_QUERY = Query(default=False, description="Exclude internal test accounts")


def _resolve_metric(slug: str) -> Metric:
    try:
        return Metric(slug)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown metric '{slug}'",
        ) from None


@router.get("/metrics/{metric}", response_model=MetricResponse)
async def get_metric(
    metric: str = Path(..., description="Metric slug"),
    period: str = PERIOD_QUERY,
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Current value, previous value and trend for one metric."""
    resolved = _resolve_metric(metric)
    result = await service.get_metric(resolved, period, exclude_test)
    return MetricResponse.from_result(result)


@router.get("/overview", response_model=OverviewResponse)
async def get_overview(
    period: str = PERIOD_QUERY,
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    results = await service.get_overview(period, exclude_test)
    return OverviewResponse(
        period=results[0].period.value,
        exclude_test=exclude_test,
        metrics=[MetricResponse.from_result(r) for r in results],
    )


@router.get("/charts/{metric}", response_model=ChartResponse)
async def get_chart(
    metric: str = Path(..., description="Metric slug"),
    period: str = PERIOD_QUERY,
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    """One value per sub-interval of the period."""
    resolved = _resolve_metric(metric)
    series = await service.get_chart(resolved, period, exclude_test)
    return ChartResponse.from_series(series)


@router.get("/power-users/handles", response_model=SegmentHandlesResponse)
async def list_power_user_handles(
    period: str = PERIOD_QUERY,
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    listing = await service.get_power_user_handles(period, exclude_test)
    return SegmentHandlesResponse.from_listing(listing)


@router.get("/pmf-survey-ready/handles", response_model=SegmentHandlesResponse)
async def list_pmf_ready_handles(
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Handles ready for a PMF survey right now; no period applies."""
    listing = await service.get_pmf_ready_handles(exclude_test)
    return SegmentHandlesResponse.from_listing(listing)


@router.get("/engaged-users", response_model=MetricResponse)
async def get_engaged_users(
    period: str = PERIOD_QUERY,
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Handles with 3+ actions in the period against the previous period."""
    result = await service.get_engaged_users(period, exclude_test)
    return MetricResponse.from_result(result)


@router.get("/engaged-users/handles", response_model=SegmentHandlesResponse)
async def list_engaged_user_handles(
    period: str = PERIOD_QUERY,
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    listing = await service.get_engaged_user_handles(period, exclude_test)
    return SegmentHandlesResponse.from_listing(listing)


@router.post("/activity-consistency", response_model=ActivityConsistencyResponse)
async def get_activity_consistency(
    request: ActivityConsistencyRequest,
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Distinct active days in the period for each requested email."""
    consistency = await service.get_activity_consistency(request.emails, request.period, exclude_test)
    return ActivityConsistencyResponse.from_consistency(consistency)


@router.get("/segment-reports/leaderboard", response_model=SegmentReportLeaderboardResponse)
async def get_segment_report_leaderboard(
    exclude_test: bool = EXCLUDE_TEST_QUERY,
    service: AnalyticsService = Depends(get_analytics_service),
):
    leaderboard = await service.get_segment_report_leaderboard(exclude_test)
    return SegmentReportLeaderboardResponse.from_leaderboard(leaderboard)
