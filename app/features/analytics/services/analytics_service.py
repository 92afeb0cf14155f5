"""
Analytics request orchestration.

Captures one reference instant per request, builds the identity context from
the cached accounts snapshot, runs the segmentation engine and turns upstream
failures into zeroed results carrying an error message.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from app.config import settings
from app.features.analytics.domain.models import (
    Account,
    ActivityConsistency,
    ChartSeries,
    LeaderboardEntry,
    Metric,
    MetricResult,
    Period,
    SegmentListing,
    SegmentReportLeaderboard,
    ensure_utc,
)
from app.features.analytics.errors import UpstreamUnavailable
from app.features.analytics.identity.resolver import AccountDirectory, build_exclusion_set
from app.features.analytics.pipeline.aggregation.service import ActivityAggregator
from app.features.analytics.pipeline.context import AnalyticsContext
from app.features.analytics.pipeline.segmentation.service import (
    ENGAGED_USERS_SEGMENT,
    SegmentationEngine,
)
from app.features.analytics.pipeline.windows import build_windows, month_start
from app.features.analytics.repository.activity_repository import ActivitySource, activity_source
from app.features.analytics.services.chart_cache import ChartCache
from app.features.analytics.services.snapshot_cache import SnapshotCache
from app.infrastructure.observability.logging import get_logger, log_metric_failure

logger = get_logger(__name__)

IDENTITY_SNAPSHOT_KEY = "identity"
ACTIVITY_CONSISTENCY_VIEW = "activity-consistency"
LEADERBOARD_VIEW = "segment-report-leaderboard"


@dataclass(frozen=True, slots=True)
class IdentitySnapshot:
    directory: AccountDirectory
    test_emails: tuple[str, ...]
    test_artist_ids: tuple[str, ...]


class AnalyticsService:
    def __init__(
        self,
        source: ActivitySource | None = None,
        chart_cache: ChartCache | None = None,
        snapshot_cache: SnapshotCache[IdentitySnapshot] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.source = source or activity_source
        self.engine = SegmentationEngine(ActivityAggregator(self.source))
        self.chart_cache = chart_cache or ChartCache()
        self.snapshots: SnapshotCache[IdentitySnapshot] = snapshot_cache or SnapshotCache()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def resolve_period(self, raw: str | None) -> Period:
        period, recognized = Period.parse(raw)
        if not recognized:
            logger.warning("Unknown period, using default", requested=raw, period=period.value)
        return period

    async def _load_identity(self) -> IdentitySnapshot:
        accounts, test_emails, test_artist_ids = await asyncio.gather(
            self.source.fetch_accounts(),
            self.source.fetch_test_emails(),
            self.source.fetch_account_ids_by_name(settings.ANALYTICS_TEST_ARTIST_NAME),
        )
        logger.info(
            "Identity snapshot loaded",
            accounts=len(accounts),
            test_emails=len(test_emails),
            test_artists=len(test_artist_ids),
        )
        return IdentitySnapshot(
            directory=AccountDirectory(accounts),
            test_emails=tuple(test_emails),
            test_artist_ids=tuple(test_artist_ids),
        )

    async def build_context(self, reference: datetime, exclude_test: bool) -> AnalyticsContext:
        snapshot = await self.snapshots.get(IDENTITY_SNAPSHOT_KEY, self._load_identity)
        exclusion = None
        if exclude_test:
            exclusion = build_exclusion_set(
                snapshot.directory,
                snapshot.test_emails,
                settings.ANALYTICS_TEST_WALLET_PREFIXES,
                snapshot.test_artist_ids,
            )
        return AnalyticsContext(
            reference=reference,
            directory=snapshot.directory,
            exclusion=exclusion,
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _failed_metric(
        self, metric: str, period: Period, exclude_test: bool, error: Exception
    ) -> MetricResult:
        log_metric_failure(metric, period.value, error)
        return MetricResult(
            metric=metric,
            period=period,
            exclude_test=exclude_test,
            current_value=0.0,
            previous_value=0.0,
            percent_change=0,
            direction="neutral",
            error=str(error) or type(error).__name__,
        )

    async def get_metric(self, metric: Metric, period: str | None, exclude_test: bool) -> MetricResult:
        resolved = self.resolve_period(period)
        windows = build_windows(resolved, self._clock())
        try:
            ctx = await self.build_context(windows.reference, exclude_test)
            return await self.engine.compare(metric, windows, ctx)
        except UpstreamUnavailable as e:
            return self._failed_metric(metric.value, resolved, exclude_test, e)

    async def get_overview(self, period: str | None, exclude_test: bool) -> list[MetricResult]:
        """All five metrics against one reference instant and one identity context."""
        resolved = self.resolve_period(period)
        windows = build_windows(resolved, self._clock())
        metrics = list(Metric)
        try:
            ctx = await self.build_context(windows.reference, exclude_test)
        except UpstreamUnavailable as e:
            return [self._failed_metric(m.value, resolved, exclude_test, e) for m in metrics]

        outcomes = await asyncio.gather(
            *(self.engine.compare(m, windows, ctx) for m in metrics),
            return_exceptions=True,
        )
        results = []
        for metric, outcome in zip(metrics, outcomes):
            if isinstance(outcome, UpstreamUnavailable):
                results.append(self._failed_metric(metric.value, resolved, exclude_test, outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)
        return results

    async def get_engaged_users(self, period: str | None, exclude_test: bool) -> MetricResult:
        resolved = self.resolve_period(period)
        windows = build_windows(resolved, self._clock())
        try:
            ctx = await self.build_context(windows.reference, exclude_test)
            return await self.engine.compare_engaged_users(windows, ctx)
        except UpstreamUnavailable as e:
            return self._failed_metric(ENGAGED_USERS_SEGMENT, resolved, exclude_test, e)

    async def get_chart(self, metric: Metric, period: str | None, exclude_test: bool) -> ChartSeries:
        resolved = self.resolve_period(period)
        windows = build_windows(resolved, self._clock())

        async def compute() -> ChartSeries:
            ctx = await self.build_context(windows.reference, exclude_test)
            return await self.engine.chart(metric, windows, ctx)

        try:
            return await self.chart_cache.get_or_compute(metric, resolved, exclude_test, compute)
        except UpstreamUnavailable as e:
            log_metric_failure(metric.value, resolved.value, e)
            return ChartSeries(
                metric=metric.value,
                period=resolved,
                exclude_test=exclude_test,
                labels=[sub.label for sub in windows.subintervals],
                data=[0.0] * len(windows.subintervals),
                failed_points=len(windows.subintervals),
                error=str(e) or type(e).__name__,
            )

    # ------------------------------------------------------------------
    # Drill-down lists
    # ------------------------------------------------------------------

    async def get_power_user_handles(self, period: str | None, exclude_test: bool) -> SegmentListing:
        resolved = self.resolve_period(period)
        windows = build_windows(resolved, self._clock())
        try:
            ctx = await self.build_context(windows.reference, exclude_test)
            members = await self.engine.power_user_members(windows, ctx)
        except UpstreamUnavailable as e:
            log_metric_failure(Metric.POWER_USERS.value, resolved.value, e)
            return SegmentListing(
                segment=Metric.POWER_USERS.value,
                period=resolved,
                exclude_test=exclude_test,
                error=str(e),
            )
        return SegmentListing(
            segment=Metric.POWER_USERS.value,
            period=resolved,
            exclude_test=exclude_test,
            members=members,
        )

    async def get_pmf_ready_handles(self, exclude_test: bool) -> SegmentListing:
        """PMF readiness is anchored at now and does not depend on a period."""
        reference = self._clock()
        try:
            ctx = await self.build_context(reference, exclude_test)
            members = await self.engine.pmf_ready_members(reference, ctx)
        except UpstreamUnavailable as e:
            log_metric_failure(Metric.PMF_SURVEY_READY.value, "n/a", e)
            return SegmentListing(
                segment=Metric.PMF_SURVEY_READY.value,
                period=None,
                exclude_test=exclude_test,
                error=str(e),
            )
        return SegmentListing(
            segment=Metric.PMF_SURVEY_READY.value,
            period=None,
            exclude_test=exclude_test,
            members=members,
        )

    async def get_engaged_user_handles(self, period: str | None, exclude_test: bool) -> SegmentListing:
        resolved = self.resolve_period(period)
        windows = build_windows(resolved, self._clock())
        try:
            ctx = await self.build_context(windows.reference, exclude_test)
            members = await self.engine.engaged_members(windows.current, ctx)
        except UpstreamUnavailable as e:
            log_metric_failure(ENGAGED_USERS_SEGMENT, resolved.value, e)
            return SegmentListing(
                segment=ENGAGED_USERS_SEGMENT,
                period=resolved,
                exclude_test=exclude_test,
                error=str(e),
            )
        return SegmentListing(
            segment=ENGAGED_USERS_SEGMENT,
            period=resolved,
            exclude_test=exclude_test,
            members=members,
        )

    # ------------------------------------------------------------------
    # Per-user views
    # ------------------------------------------------------------------

    async def get_activity_consistency(
        self, emails: Sequence[str], period: str | None, exclude_test: bool
    ) -> ActivityConsistency:
        """
        Distinct active days in the period's current window for each email.

        Emails with no account, or whose account is excluded as test traffic,
        report 0 days. Order follows the request with duplicates dropped.
        """
        resolved = self.resolve_period(period)
        windows = build_windows(resolved, self._clock())
        requested = list(dict.fromkeys(email.strip() for email in emails if email and email.strip()))
        active_days = dict.fromkeys(requested, 0)

        try:
            ctx = await self.build_context(windows.reference, exclude_test)
            accounts: dict[str, Account] = {}
            for email in requested:
                account = ctx.directory.by_email(email)
                if account is not None:
                    accounts[email] = account
            if accounts:
                by_account = await self.engine.active_days_by_account(
                    windows.current, accounts.values(), ctx
                )
                for email, account in accounts.items():
                    active_days[email] = by_account.get(account.account_id, 0)
        except UpstreamUnavailable as e:
            log_metric_failure(ACTIVITY_CONSISTENCY_VIEW, resolved.value, e)
            return ActivityConsistency(
                period=resolved,
                exclude_test=exclude_test,
                active_days=dict.fromkeys(requested, 0),
                error=str(e),
            )

        logger.info(
            "Activity consistency computed",
            period=resolved.value,
            requested=len(requested),
            matched_accounts=len(accounts),
        )
        return ActivityConsistency(period=resolved, exclude_test=exclude_test, active_days=active_days)

    async def get_segment_report_leaderboard(self, exclude_test: bool) -> SegmentReportLeaderboard:
        """Segment-report sessions per email since the start of the current UTC month."""
        reference = ensure_utc(self._clock())
        since = month_start(reference)
        try:
            ctx = await self.build_context(reference, exclude_test)
            counts = await self.engine.aggregator.segment_report_counts(since, ctx)
        except UpstreamUnavailable as e:
            log_metric_failure(LEADERBOARD_VIEW, "month-to-date", e, window_start=since, window_end=reference)
            return SegmentReportLeaderboard(since=since, exclude_test=exclude_test, error=str(e))

        entries = [
            LeaderboardEntry(email=email, segment_report_count=count)
            for email, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ]
        return SegmentReportLeaderboard(since=since, exclude_test=exclude_test, entries=entries)


analytics_service = AnalyticsService()


def get_analytics_service() -> AnalyticsService:
    return analytics_service
