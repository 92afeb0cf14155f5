"""Shared fakes and builders for the analytics tests."""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime

from app.features.analytics.domain.models import (
    Account,
    ActivityWindow,
    MessageEvent,
    ReportEvent,
    Session,
)
from app.features.analytics.errors import UpstreamUnavailable
from app.features.analytics.identity.resolver import AccountDirectory, build_exclusion_set
from app.features.analytics.pipeline.context import AnalyticsContext

REFERENCE = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


class InMemoryActivitySource:
    """
    Activity source over plain lists.

    ``fail`` names operations that raise; ``delays`` maps operation names to a
    sleep in seconds taken before the call returns.
    """

    name = "memory"

    def __init__(
        self,
        accounts: Sequence[Account] = (),
        sessions: Sequence[Session] = (),
        messages: Sequence[MessageEvent] = (),
        reports: Sequence[ReportEvent] = (),
        test_emails: Sequence[str] = (),
        artists: dict[str, str] | None = None,
    ):
        self.accounts = list(accounts)
        self.sessions = list(sessions)
        self.messages = list(messages)
        self.reports = list(reports)
        self.test_emails = list(test_emails)
        self.artists = artists or {}
        self.fail: set[str] = set()
        self.delays: dict[str, float] = {}
        self.calls: dict[str, int] = {}

    async def _enter(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        delay = self.delays.get(operation)
        if delay:
            await asyncio.sleep(delay)
        if operation in self.fail:
            raise UpstreamUnavailable("injected failure", source=self.name, operation=operation)

    async def fetch_accounts(self) -> list[Account]:
        await self._enter("fetch_accounts")
        return list(self.accounts)

    async def fetch_test_emails(self) -> list[str]:
        await self._enter("fetch_test_emails")
        return list(self.test_emails)

    async def fetch_account_ids_by_name(self, name: str) -> list[str]:
        await self._enter("fetch_account_ids_by_name")
        return [account_id for account_id, artist in self.artists.items() if artist == name]

    async def fetch_sessions(self, *, account_ids=None, active_since=None, created_before=None):
        await self._enter("fetch_sessions")
        sessions = self.sessions
        if account_ids is not None:
            sessions = [s for s in sessions if s.account_id in set(account_ids)]
        if active_since is not None:
            sessions = [s for s in sessions if s.last_activity_at >= active_since]
        if created_before is not None:
            sessions = [s for s in sessions if s.created_at <= created_before]
        return list(sessions)

    async def fetch_message_events(self, session_ids, window: ActivityWindow):
        await self._enter("fetch_message_events")
        wanted = set(session_ids)
        return [m for m in self.messages if m.session_id in wanted and window.contains(m.timestamp)]

    async def fetch_report_events(self, window: ActivityWindow):
        await self._enter("fetch_report_events")
        return [r for r in self.reports if window.contains(r.timestamp)]


def make_context(
    accounts: Sequence[Account],
    *,
    reference: datetime = REFERENCE,
    exclude_test: bool = False,
    test_emails: Sequence[str] = (),
    wallet_prefixes: Sequence[str] = (),
    test_artist_ids: Sequence[str] = (),
) -> AnalyticsContext:
    directory = AccountDirectory(accounts)
    exclusion = None
    if exclude_test:
        exclusion = build_exclusion_set(accounts, test_emails, wallet_prefixes, test_artist_ids)
    return AnalyticsContext(reference=reference, directory=directory, exclusion=exclusion)


