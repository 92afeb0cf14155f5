"""Request-scoped state shared by every computation of one analytics request."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from app.config import settings
from app.features.analytics.identity.resolver import AccountDirectory, TestExclusionSet


@dataclass(slots=True)
class AnalyticsContext:
    """
    One reference instant, one identity snapshot and one exclusion decision.

    ``exclusion`` is ``None`` when test traffic is included. ``limiter`` bounds
    the number of upstream calls in flight for the request.
    """

    reference: datetime
    directory: AccountDirectory
    exclusion: TestExclusionSet | None = None
    limiter: asyncio.Semaphore = field(
        default_factory=lambda: asyncio.Semaphore(settings.ANALYTICS_MAX_CONCURRENCY)
    )

    @property
    def exclude_test(self) -> bool:
        return self.exclusion is not None
