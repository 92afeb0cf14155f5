"""
Activity aggregation service.

Merges message events (via their session's owning account) and report
events (via the requester's email) into one ``UserActivityRecord`` per
contact handle for a window. Only handles with activity get a record.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime
from typing import Any, TypeVar

from app.features.analytics.domain.models import (
    Account,
    ActivityWindow,
    ContactHandle,
    MessageEvent,
    ReportEvent,
    Session,
    UserActivityRecord,
)
from app.features.analytics.identity.resolver import is_excluded
from app.features.analytics.pipeline.context import AnalyticsContext
from app.features.analytics.repository.activity_repository import ActivitySource
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ActivityMap = dict[ContactHandle, UserActivityRecord]


async def limited(ctx: AnalyticsContext, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
    """Run one upstream call under the request's concurrency limit."""
    async with ctx.limiter:
        return await fn(*args, **kwargs)


async def gather_settled(*aws: Awaitable[Any]) -> list[Any]:
    """Await every call, then raise the first failure."""
    outcomes = await asyncio.gather(*aws, return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return outcomes


class ActivityAggregator:
    def __init__(self, source: ActivitySource):
        self.source = source

    async def aggregate(
        self,
        window: ActivityWindow,
        ctx: AnalyticsContext,
        *,
        include_report_sessions: bool = False,
        account_ids: Sequence[str] | None = None,
    ) -> ActivityMap:
        """
        Build the activity map for ``window``.

        ``account_ids`` restricts session activity to those accounts; reports
        are still read for the whole window. Raises ``UpstreamUnavailable``
        if any source call fails; callers decide how far the failure spreads.
        """
        sessions_and_messages, reports = await gather_settled(
            self._fetch_sessions_and_messages(window, ctx, account_ids),
            limited(ctx, self.source.fetch_report_events, window),
        )
        sessions, messages = sessions_and_messages
        return self.build_activity_records(
            window,
            ctx,
            sessions=sessions,
            messages=messages,
            reports=reports,
            include_report_sessions=include_report_sessions,
        )

    async def session_counts_by_handle(
        self, created_before: datetime, ctx: AnalyticsContext
    ) -> dict[ContactHandle, int]:
        """Lifetime session count per primary handle for sessions created on/before ``created_before``."""
        sessions = await limited(ctx, self.source.fetch_sessions, created_before=created_before)
        return self.count_sessions_by_handle(sessions, ctx)

    async def segment_report_counts(self, since: datetime, ctx: AnalyticsContext) -> dict[str, int]:
        """Segment-report sessions active since ``since``, counted per owner email."""
        sessions = await limited(ctx, self.source.fetch_sessions, active_since=since)
        counts: Counter[str] = Counter()
        for session in sessions:
            if not session.is_segment_report or session.last_activity_at < since:
                continue
            account = self._session_allowed(session, ctx)
            if account is not None and account.email:
                counts[account.email] += 1
        return dict(counts)

    async def _fetch_sessions_and_messages(
        self,
        window: ActivityWindow,
        ctx: AnalyticsContext,
        account_ids: Sequence[str] | None = None,
    ) -> tuple[list[Session], list[MessageEvent]]:
        # Sessions touched on/after the window start are a superset of those
        # holding messages inside the window.
        sessions = await limited(
            ctx, self.source.fetch_sessions, account_ids=account_ids, active_since=window.start
        )
        sessions = [s for s in sessions if self._session_allowed(s, ctx) is not None]
        if not sessions:
            return sessions, []
        messages = await limited(
            ctx, self.source.fetch_message_events, [s.session_id for s in sessions], window
        )
        return sessions, messages

    def build_activity_records(
        self,
        window: ActivityWindow,
        ctx: AnalyticsContext,
        *,
        sessions: Iterable[Session],
        messages: Iterable[MessageEvent],
        reports: Iterable[ReportEvent],
        include_report_sessions: bool = False,
    ) -> ActivityMap:
        """Pure merge step; same inputs always give the same ordered map."""
        session_owner: dict[str, Account] = {}
        allowed_sessions: list[tuple[Session, Account]] = []
        for session in sessions:
            account = self._session_allowed(session, ctx)
            if account is None:
                continue
            session_owner[session.session_id] = account
            allowed_sessions.append((session, account))

        records: ActivityMap = {}

        def ensure_record(handle: ContactHandle, account_id: str | None) -> UserActivityRecord:
            record = records.get(handle)
            if record is None:
                record = UserActivityRecord(handle=handle, account_id=account_id)
                records[handle] = record
            elif record.account_id is None and account_id is not None:
                record.account_id = account_id
            return record

        for message in messages:
            if not message.is_human or not window.contains(message.timestamp):
                continue
            account = session_owner.get(message.session_id)
            if account is None:
                continue
            ensure_record(account.primary_handle, account.account_id).record_message(message.timestamp)

        unresolved_reports = 0
        for report in reports:
            if not report.email or not window.contains(report.timestamp):
                continue
            email_handle = ContactHandle.email(report.email)
            if is_excluded(email_handle, ctx.exclusion):
                continue
            account = ctx.directory.by_email(report.email)
            if account is not None:
                if is_excluded(account, ctx.exclusion):
                    continue
                ensure_record(account.primary_handle, account.account_id).record_report(report.timestamp)
            else:
                unresolved_reports += 1
                ensure_record(email_handle, None).record_report(report.timestamp)

        if include_report_sessions:
            for session, account in allowed_sessions:
                if not session.is_segment_report or not window.contains(session.last_activity_at):
                    continue
                record = records.get(account.primary_handle)
                if record is not None:
                    record.record_report_session(session.last_activity_at)

        if unresolved_reports:
            logger.debug("Reports without a matching account", count=unresolved_reports)

        return {handle: records[handle] for handle in sorted(records)}

    def count_sessions_by_handle(
        self, sessions: Iterable[Session], ctx: AnalyticsContext
    ) -> dict[ContactHandle, int]:
        counts: Counter[ContactHandle] = Counter()
        for session in sessions:
            account = self._session_allowed(session, ctx)
            if account is not None:
                counts[account.primary_handle] += 1
        return dict(counts)

    @staticmethod
    def _session_allowed(session: Session, ctx: AnalyticsContext) -> Account | None:
        """Owning account when the session counts, else ``None``."""
        account = ctx.directory.get(session.account_id)
        if account is None or account.primary_handle is None:
            return None
        if ctx.exclusion is not None and (
            ctx.exclusion.excludes_session(session) or ctx.exclusion.excludes_account(account)
        ):
            return None
        return account
