"""
Domain models for the engagement analytics feature.

Source records (accounts, sessions, events) mirror the read-only feeds the
repository returns. Derived values (windows, activity records, metric
results) are rebuilt on every request and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Literal

HandleKind = Literal["email", "wallet"]

SEGMENT_REPORT_TOPIC_PREFIX = "segment:"


class Period(str, Enum):
    """Dashboard period names, as sent by the frontend."""

    LAST_24_HOURS = "Last 24 Hours"
    LAST_7_DAYS = "Last 7 Days"
    LAST_30_DAYS = "Last 30 Days"
    LAST_3_MONTHS = "Last 3 Months"
    LAST_12_MONTHS = "Last 12 Months"
    ALL_TIME = "All Time"

    @classmethod
    def default(cls) -> Period:
        return cls.LAST_30_DAYS

    @classmethod
    def parse(cls, value: str | None) -> tuple[Period, bool]:
        """
        Resolve a caller-supplied period name.

        Returns the period and whether the raw value was recognized; unknown
        or missing names fall back to the default period.
        """
        if value is None:
            return cls.default(), True
        normalized = value.strip().lower()
        for period in cls:
            if period.value.lower() == normalized:
                return period, True
        return cls.default(), False


class Metric(str, Enum):
    ACTIVE_USERS = "active-users"
    POWER_USERS = "power-users"
    PMF_SURVEY_READY = "pmf-survey-ready"
    USAGE_INTENSITY = "usage-intensity"
    AVERAGE_USAGE = "average-usage"


@dataclass(frozen=True, slots=True, order=True)
class ContactHandle:
    """An email address or wallet address identifying a contactable user."""

    kind: HandleKind
    value: str

    @classmethod
    def email(cls, address: str) -> ContactHandle:
        return cls("email", address)

    @classmethod
    def wallet(cls, address: str) -> ContactHandle:
        return cls("wallet", address)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class Account:
    account_id: str
    email: str | None = None
    wallet: str | None = None

    @property
    def is_contactable(self) -> bool:
        return bool(self.email or self.wallet)

    @property
    def primary_handle(self) -> ContactHandle | None:
        if self.email:
            return ContactHandle.email(self.email)
        if self.wallet:
            return ContactHandle.wallet(self.wallet)
        return None

    @property
    def handles(self) -> list[ContactHandle]:
        handles = []
        if self.email:
            handles.append(ContactHandle.email(self.email))
        if self.wallet:
            handles.append(ContactHandle.wallet(self.wallet))
        return handles


@dataclass(frozen=True, slots=True)
class Session:
    """A conversation room between one account and one counterparty (artist)."""

    session_id: str
    account_id: str
    artist_id: str | None
    created_at: datetime
    last_activity_at: datetime
    topic: str | None = None

    @property
    def is_segment_report(self) -> bool:
        return bool(self.topic) and self.topic.lower().startswith(SEGMENT_REPORT_TOPIC_PREFIX)


@dataclass(frozen=True, slots=True)
class MessageEvent:
    event_id: str
    session_id: str
    timestamp: datetime
    role: str = "user"

    @property
    def is_human(self) -> bool:
        return self.role != "assistant"


@dataclass(frozen=True, slots=True)
class ReportEvent:
    """Work triggered outside the chat surface, keyed by the requester's email."""

    report_id: str
    email: str | None
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class ActivityWindow:
    """
    A time range used to select activity.

    ``start=None`` is unbounded (All Time). Comparison windows include their
    end instant; chart sub-intervals are half-open ``[start, end)``.
    """

    start: datetime | None
    end: datetime
    end_inclusive: bool = True

    def contains(self, ts: datetime) -> bool:
        ts = ensure_utc(ts)
        if self.start is not None and ts < self.start:
            return False
        return ts <= self.end if self.end_inclusive else ts < self.end


@dataclass(frozen=True, slots=True)
class SubInterval:
    window: ActivityWindow
    label: str


@dataclass(frozen=True, slots=True)
class WindowSet:
    period: Period
    reference: datetime
    current: ActivityWindow
    previous: ActivityWindow | None
    subintervals: tuple[SubInterval, ...]


@dataclass(slots=True)
class UserActivityRecord:
    """Per-handle activity inside one window. Only built for handles with activity."""

    handle: ContactHandle
    account_id: str | None = None
    message_count: int = 0
    report_count: int = 0
    message_days: set[date] = field(default_factory=set)
    report_days: set[date] = field(default_factory=set)
    session_report_days: set[date] = field(default_factory=set)

    @property
    def action_count(self) -> int:
        return self.message_count + self.report_count

    @property
    def active_days(self) -> set[date]:
        return self.message_days | self.report_days | self.session_report_days

    def record_message(self, ts: datetime) -> None:
        self.message_count += 1
        self.message_days.add(utc_date(ts))

    def record_report(self, ts: datetime) -> None:
        self.report_count += 1
        self.report_days.add(utc_date(ts))

    def record_report_session(self, ts: datetime) -> None:
        self.session_report_days.add(utc_date(ts))


Direction = Literal["up", "down", "neutral"]


@dataclass(frozen=True, slots=True)
class Trend:
    percent_change: int
    direction: Direction


@dataclass(frozen=True, slots=True)
class MetricResult:
    metric: str
    period: Period
    exclude_test: bool
    current_value: float
    previous_value: float
    percent_change: int
    direction: Direction
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "period": self.period.value,
            "exclude_test": self.exclude_test,
            "current_value": self.current_value,
            "previous_value": self.previous_value,
            "percent_change": self.percent_change,
            "direction": self.direction,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class ChartSeries:
    metric: str
    period: Period
    exclude_test: bool
    labels: list[str]
    data: list[float]
    failed_points: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "period": self.period.value,
            "exclude_test": self.exclude_test,
            "labels": list(self.labels),
            "data": list(self.data),
            "failed_points": self.failed_points,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ChartSeries:
        return cls(
            metric=payload["metric"],
            period=Period(payload["period"]),
            exclude_test=bool(payload["exclude_test"]),
            labels=list(payload["labels"]),
            data=list(payload["data"]),
            failed_points=int(payload.get("failed_points", 0)),
            error=payload.get("error"),
        )


@dataclass(frozen=True, slots=True)
class SegmentMember:
    """A handle listed in a segment drill-down."""

    handle: ContactHandle
    action_count: int
    active_days: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle.value,
            "handle_type": self.handle.kind,
            "action_count": self.action_count,
            "active_days": self.active_days,
        }


def ensure_utc(ts: datetime) -> datetime:
    """Aware UTC copy of ``ts``; naive timestamps are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def utc_date(ts: datetime) -> date:
    return ensure_utc(ts).date()


@dataclass(frozen=True, slots=True)
class SegmentListing:
    segment: str
    period: Period | None
    exclude_test: bool
    members: list[SegmentMember] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ActivityConsistency:
    """Distinct active days per requested email; unknown emails map to 0."""

    period: Period
    exclude_test: bool
    active_days: dict[str, int]
    error: str | None = None


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    email: str
    segment_report_count: int

    def as_dict(self) -> dict[str, Any]:
        return {"email": self.email, "segment_report_count": self.segment_report_count}


@dataclass(frozen=True, slots=True)
class SegmentReportLeaderboard:
    """Segment-report sessions per email since ``since``, busiest first."""

    since: datetime
    exclude_test: bool
    entries: list[LeaderboardEntry] = field(default_factory=list)
    error: str | None = None
