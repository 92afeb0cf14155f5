"""
Segmentation engine.

Classifies handles into engagement segments and computes the five dashboard
metrics for a window pair, plus their chart series, drill-down lists and
the per-user engaged and active-day views.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.features.analytics.domain.models import (
    Account,
    ActivityWindow,
    ChartSeries,
    ContactHandle,
    Metric,
    MetricResult,
    Period,
    SegmentMember,
    UserActivityRecord,
    WindowSet,
)
from app.features.analytics.errors import UpstreamUnavailable
from app.features.analytics.pipeline.aggregation.service import (
    ActivityAggregator,
    ActivityMap,
    gather_settled,
)
from app.features.analytics.pipeline.context import AnalyticsContext
from app.features.analytics.pipeline.statistics import (
    median,
    percent_change,
    robust_average,
    round_half_up,
)
from app.features.analytics.pipeline.windows import trailing_window
from app.infrastructure.observability.logging import get_logger, log_metric_failure

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PowerUserThreshold:
    min_days_active: int
    min_total_actions: int


POWER_USER_THRESHOLDS: dict[Period, PowerUserThreshold] = {
    Period.LAST_24_HOURS: PowerUserThreshold(min_days_active=1, min_total_actions=10),
    Period.LAST_7_DAYS: PowerUserThreshold(min_days_active=5, min_total_actions=1),
    Period.LAST_30_DAYS: PowerUserThreshold(min_days_active=20, min_total_actions=1),
    Period.LAST_3_MONTHS: PowerUserThreshold(min_days_active=60, min_total_actions=1),
    Period.LAST_12_MONTHS: PowerUserThreshold(min_days_active=240, min_total_actions=1),
}
DEFAULT_POWER_USER_THRESHOLD = PowerUserThreshold(min_days_active=20, min_total_actions=1)

ENGAGED_MIN_ACTIONS = 3
ENGAGED_USERS_SEGMENT = "engaged-users"

PMF_LOOKBACK = timedelta(days=30)
PMF_RECENCY = timedelta(days=14)
PMF_MIN_SCORE = 2

INTENSITY_DIGITS = 1
AVERAGE_DIGITS = 2


def power_user_threshold(period: Period) -> PowerUserThreshold:
    return POWER_USER_THRESHOLDS.get(period, DEFAULT_POWER_USER_THRESHOLD)


def _sort_members(members: Iterable[SegmentMember]) -> list[SegmentMember]:
    return sorted(members, key=lambda m: (-m.action_count, -m.active_days, m.handle))


# ---------------------------------------------------------------------------
# Pure classifiers
# ---------------------------------------------------------------------------


def count_active_users(records: ActivityMap) -> int:
    """Handles with at least one action that resolve to an account."""
    return sum(1 for r in records.values() if r.account_id is not None and r.action_count > 0)


def select_power_users(records: ActivityMap, period: Period) -> list[UserActivityRecord]:
    threshold = power_user_threshold(period)
    return [
        r
        for r in records.values()
        if r.account_id is not None
        and len(r.active_days) >= threshold.min_days_active
        and r.action_count >= threshold.min_total_actions
    ]


def select_engaged(records: ActivityMap) -> list[SegmentMember]:
    return _sort_members(
        SegmentMember(handle=r.handle, action_count=r.action_count, active_days=len(r.active_days))
        for r in records.values()
        if r.action_count >= ENGAGED_MIN_ACTIONS
    )


def usage_intensity(records: ActivityMap) -> float:
    """Median actions of engaged handles (3+ actions); no trimming."""
    engaged = [r.action_count for r in records.values() if r.action_count >= ENGAGED_MIN_ACTIONS]
    if not engaged:
        return 0.0
    return round_half_up(median(engaged), INTENSITY_DIGITS)


def average_usage(records: ActivityMap) -> float:
    counts = [r.action_count for r in records.values() if r.action_count > 0]
    if not counts:
        return 0.0
    return round_half_up(robust_average(counts), AVERAGE_DIGITS)


def pmf_score(record: UserActivityRecord, lifetime_sessions: int) -> int:
    """max(message days in the lookback, lifetime sessions) + reports in the lookback."""
    return max(len(record.message_days), lifetime_sessions) + record.report_count


def select_pmf_ready(
    lookback: ActivityMap,
    recent: ActivityMap,
    session_counts: dict[ContactHandle, int],
) -> list[SegmentMember]:
    members = []
    for handle, record in lookback.items():
        recent_record = recent.get(handle)
        if recent_record is None or recent_record.action_count == 0:
            continue
        if pmf_score(record, session_counts.get(handle, 0)) < PMF_MIN_SCORE:
            continue
        members.append(
            SegmentMember(
                handle=handle,
                action_count=record.action_count,
                active_days=len(record.active_days),
            )
        )
    return _sort_members(members)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SegmentationEngine:
    def __init__(self, aggregator: ActivityAggregator):
        self.aggregator = aggregator

    async def window_value(
        self, metric: Metric, window: ActivityWindow, period: Period, ctx: AnalyticsContext
    ) -> float:
        """Value of a windowed metric for exactly ``window``."""
        if metric == Metric.PMF_SURVEY_READY:
            return float(len(await self.pmf_ready_members(window.end, ctx)))

        records = await self.aggregator.aggregate(
            window, ctx, include_report_sessions=metric == Metric.POWER_USERS
        )
        if metric == Metric.ACTIVE_USERS:
            return float(count_active_users(records))
        if metric == Metric.POWER_USERS:
            return float(len(select_power_users(records, period)))
        if metric == Metric.USAGE_INTENSITY:
            return usage_intensity(records)
        if metric == Metric.AVERAGE_USAGE:
            return average_usage(records)
        raise ValueError(f"Unsupported metric: {metric}")

    async def pmf_ready_members(self, anchor: datetime, ctx: AnalyticsContext) -> list[SegmentMember]:
        lookback_window = ActivityWindow(start=anchor - PMF_LOOKBACK, end=anchor)
        recent_window = ActivityWindow(start=anchor - PMF_RECENCY, end=anchor)
        lookback, recent, session_counts = await gather_settled(
            self.aggregator.aggregate(lookback_window, ctx),
            self.aggregator.aggregate(recent_window, ctx),
            self.aggregator.session_counts_by_handle(anchor, ctx),
        )
        return select_pmf_ready(lookback, recent, session_counts)

    async def power_user_members(self, windows: WindowSet, ctx: AnalyticsContext) -> list[SegmentMember]:
        records = await self.aggregator.aggregate(windows.current, ctx, include_report_sessions=True)
        return _sort_members(
            SegmentMember(handle=r.handle, action_count=r.action_count, active_days=len(r.active_days))
            for r in select_power_users(records, windows.period)
        )

    async def engaged_members(self, window: ActivityWindow, ctx: AnalyticsContext) -> list[SegmentMember]:
        return select_engaged(await self.aggregator.aggregate(window, ctx))

    async def active_days_by_account(
        self, window: ActivityWindow, accounts: Iterable[Account], ctx: AnalyticsContext
    ) -> dict[str, int]:
        """Distinct active days in ``window`` per account id, counting report sessions."""
        accounts = list(accounts)
        records = await self.aggregator.aggregate(
            window,
            ctx,
            include_report_sessions=True,
            account_ids=[a.account_id for a in accounts],
        )
        days: dict[str, int] = {}
        for account in accounts:
            record = records.get(account.primary_handle) if account.primary_handle else None
            days[account.account_id] = len(record.active_days) if record else 0
        return days

    async def compare(self, metric: Metric, windows: WindowSet, ctx: AnalyticsContext) -> MetricResult:
        """
        Current value, previous value and trend for one metric.

        PMF-survey-ready ignores the period's windows: it is anchored at the
        reference instant and compared with the same count 14 days earlier.
        A failing side is zero-filled and reported in ``error``.
        """
        if metric == Metric.PMF_SURVEY_READY:
            current_window = ActivityWindow(start=None, end=windows.reference)
            previous_window = ActivityWindow(start=None, end=windows.reference - PMF_RECENCY)
        else:
            current_window = windows.current
            previous_window = windows.previous

        async def value(window: ActivityWindow) -> float:
            return await self.window_value(metric, window, windows.period, ctx)

        return await self._compare(metric.value, value, current_window, previous_window, windows, ctx)

    async def compare_engaged_users(self, windows: WindowSet, ctx: AnalyticsContext) -> MetricResult:
        """Handles with 3+ actions in the current window against the previous one."""

        async def value(window: ActivityWindow) -> float:
            return float(len(await self.engaged_members(window, ctx)))

        return await self._compare(
            ENGAGED_USERS_SEGMENT, value, windows.current, windows.previous, windows, ctx
        )

    async def _compare(
        self,
        name: str,
        value: Callable[[ActivityWindow], Awaitable[float]],
        current_window: ActivityWindow,
        previous_window: ActivityWindow | None,
        windows: WindowSet,
        ctx: AnalyticsContext,
    ) -> MetricResult:
        pending = [value(current_window)]
        if previous_window is not None:
            pending.append(value(previous_window))

        outcomes = await asyncio.gather(*pending, return_exceptions=True)
        values: list[float] = []
        errors: list[str] = []
        for outcome, window in zip(outcomes, (current_window, previous_window)):
            if isinstance(outcome, UpstreamUnavailable):
                log_metric_failure(
                    name,
                    windows.period.value,
                    outcome,
                    window_start=window.start,
                    window_end=window.end,
                )
                errors.append(f"{outcome.source}.{outcome.operation}: {outcome}")
                values.append(0.0)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                values.append(outcome)

        current_value = values[0]
        previous_value = values[1] if len(values) > 1 else 0.0
        trend = percent_change(current_value, previous_value)

        return MetricResult(
            metric=name,
            period=windows.period,
            exclude_test=ctx.exclude_test,
            current_value=current_value,
            previous_value=previous_value,
            percent_change=trend.percent_change,
            direction=trend.direction,
            error="; ".join(errors) or None,
        )

    async def chart(self, metric: Metric, windows: WindowSet, ctx: AnalyticsContext) -> ChartSeries:
        """
        One value per sub-interval.

        Power users use a trailing window of the period's length ending at each
        sub-interval end; PMF-survey-ready is anchored at each sub-interval end.
        Failed points are zero-filled and counted.
        """
        pending = []
        for sub in windows.subintervals:
            if metric == Metric.POWER_USERS:
                window = trailing_window(windows.period, sub.window.end)
            else:
                window = sub.window
            pending.append(self.window_value(metric, window, windows.period, ctx))

        outcomes = await asyncio.gather(*pending, return_exceptions=True)
        data: list[float] = []
        failed = 0
        last_error: UpstreamUnavailable | None = None
        for outcome, sub in zip(outcomes, windows.subintervals):
            if isinstance(outcome, UpstreamUnavailable):
                log_metric_failure(
                    metric.value,
                    windows.period.value,
                    outcome,
                    window_start=sub.window.start,
                    window_end=sub.window.end,
                )
                failed += 1
                last_error = outcome
                data.append(0.0)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                data.append(outcome)

        if failed:
            logger.warning(
                "Chart series partially zero-filled",
                metric=metric.value,
                period=windows.period.value,
                failed_points=failed,
                total_points=len(data),
            )

        return ChartSeries(
            metric=metric.value,
            period=windows.period,
            exclude_test=ctx.exclude_test,
            labels=[sub.label for sub in windows.subintervals],
            data=data,
            failed_points=failed,
            error=f"{failed} of {len(data)} points unavailable: {last_error}" if last_error else None,
        )
