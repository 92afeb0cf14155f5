"""
Read-only activity sources.

``ActivitySource`` is the surface the aggregator depends on;
``PostgresActivitySource`` reads it from the product database replica.
Every call is a single attempt bounded by ``ANALYTICS_UPSTREAM_TIMEOUT_S``
and surfaces failures as ``UpstreamUnavailable``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from app.config import settings
from app.db.helpers import DatabaseError, fetch_all
from app.features.analytics.domain.models import (
    Account,
    ActivityWindow,
    MessageEvent,
    ReportEvent,
    Session,
)
from app.features.analytics.errors import UpstreamUnavailable
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ActivitySource(Protocol):
    async def fetch_accounts(self) -> list[Account]: ...

    async def fetch_test_emails(self) -> list[str]: ...

    async def fetch_account_ids_by_name(self, name: str) -> list[str]: ...

    async def fetch_sessions(
        self,
        *,
        account_ids: Sequence[str] | None = None,
        active_since: datetime | None = None,
        created_before: datetime | None = None,
    ) -> list[Session]: ...

    async def fetch_message_events(
        self, session_ids: Sequence[str], window: ActivityWindow
    ) -> list[MessageEvent]: ...

    async def fetch_report_events(self, window: ActivityWindow) -> list[ReportEvent]: ...


def _window_clause(column: str, window: ActivityWindow) -> tuple[list[str], list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if window.start is not None:
        clauses.append(f"{column} >= %s")
        params.append(window.start)
    clauses.append(f"{column} {'<=' if window.end_inclusive else '<'} %s")
    params.append(window.end)
    return clauses, params


class PostgresActivitySource:
    """Activity source backed by the product database (read replica)."""

    name = "postgres"

    ACCOUNTS_QUERY = """
        SELECT
            a.id::text AS account_id,
            MIN(e.email) AS email,
            MIN(w.wallet) AS wallet
        FROM accounts a
        LEFT JOIN account_emails e ON e.account_id = a.id
        LEFT JOIN account_wallets w ON w.account_id = a.id
        GROUP BY a.id
    """

    TEST_EMAILS_QUERY = "SELECT email FROM test_emails WHERE email IS NOT NULL"

    ACCOUNTS_BY_NAME_QUERY = "SELECT id::text AS account_id FROM accounts WHERE name = %s"

    def __init__(self, timeout_s: float | None = None):
        self.timeout_s = timeout_s if timeout_s is not None else settings.ANALYTICS_UPSTREAM_TIMEOUT_S

    async def _fetch(self, operation: str, query: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        try:
            return await asyncio.wait_for(fetch_all(query, tuple(params)), timeout=self.timeout_s)
        except TimeoutError as e:
            logger.error(
                "Activity source timed out",
                source=self.name,
                operation=operation,
                timeout_s=self.timeout_s,
            )
            raise UpstreamUnavailable(
                f"{operation} timed out after {self.timeout_s}s", source=self.name, operation=operation
            ) from e
        except DatabaseError as e:
            logger.error("Activity source query failed", source=self.name, operation=operation, error=str(e))
            raise UpstreamUnavailable(str(e), source=self.name, operation=operation) from e

    async def fetch_accounts(self) -> list[Account]:
        rows = await self._fetch("fetch_accounts", self.ACCOUNTS_QUERY)
        return [
            Account(account_id=row["account_id"], email=row.get("email"), wallet=row.get("wallet"))
            for row in rows
        ]

    async def fetch_test_emails(self) -> list[str]:
        rows = await self._fetch("fetch_test_emails", self.TEST_EMAILS_QUERY)
        return [row["email"] for row in rows]

    async def fetch_account_ids_by_name(self, name: str) -> list[str]:
        rows = await self._fetch("fetch_account_ids_by_name", self.ACCOUNTS_BY_NAME_QUERY, (name,))
        return [row["account_id"] for row in rows]

    async def fetch_sessions(
        self,
        *,
        account_ids: Sequence[str] | None = None,
        active_since: datetime | None = None,
        created_before: datetime | None = None,
    ) -> list[Session]:
        if account_ids is not None and not account_ids:
            return []

        clauses: list[str] = []
        params: list[Any] = []
        if account_ids is not None:
            clauses.append("account_id::text = ANY(%s)")
            params.append(list(account_ids))
        if active_since is not None:
            clauses.append("updated_at >= %s")
            params.append(active_since)
        if created_before is not None:
            clauses.append("created_at <= %s")
            params.append(created_before)

        query = """
            SELECT
                id::text AS session_id,
                account_id::text AS account_id,
                artist_id::text AS artist_id,
                topic,
                created_at,
                COALESCE(updated_at, created_at) AS last_activity_at
            FROM rooms
        """
        if clauses:
            query += " WHERE " + " AND ".join(clauses)

        rows = await self._fetch("fetch_sessions", query, params)
        return [
            Session(
                session_id=row["session_id"],
                account_id=row["account_id"],
                artist_id=row.get("artist_id"),
                topic=row.get("topic"),
                created_at=row["created_at"],
                last_activity_at=row["last_activity_at"],
            )
            for row in rows
        ]

    async def fetch_message_events(
        self, session_ids: Sequence[str], window: ActivityWindow
    ) -> list[MessageEvent]:
        if not session_ids:
            return []

        time_clauses, time_params = _window_clause("updated_at", window)
        query = f"""
            SELECT
                id::text AS event_id,
                room_id::text AS session_id,
                updated_at AS timestamp,
                COALESCE(content->>'role', 'user') AS role
            FROM memories
            WHERE room_id::text = ANY(%s)
              AND COALESCE(content->>'role', 'user') <> 'assistant'
              AND {" AND ".join(time_clauses)}
        """
        rows = await self._fetch("fetch_message_events", query, [list(session_ids), *time_params])
        return [
            MessageEvent(
                event_id=row["event_id"],
                session_id=row["session_id"],
                timestamp=row["timestamp"],
                role=row["role"],
            )
            for row in rows
        ]

    async def fetch_report_events(self, window: ActivityWindow) -> list[ReportEvent]:
        time_clauses, time_params = _window_clause("updated_at", window)
        query = f"""
            SELECT
                id::text AS report_id,
                account_email AS email,
                updated_at AS timestamp
            FROM segment_reports
            WHERE {" AND ".join(time_clauses)}
        """
        rows = await self._fetch("fetch_report_events", query, time_params)
        return [
            ReportEvent(report_id=row["report_id"], email=row.get("email"), timestamp=row["timestamp"])
            for row in rows
        ]


activity_source = PostgresActivitySource()
