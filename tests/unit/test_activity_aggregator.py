from datetime import UTC, date, datetime, timedelta

import pytest

from app.features.analytics.domain.models import (
    Account,
    ActivityWindow,
    ContactHandle,
    MessageEvent,
    ReportEvent,
    Session,
)
from app.features.analytics.errors import UpstreamUnavailable
from app.features.analytics.pipeline.aggregation.service import ActivityAggregator
from tests.helpers import REFERENCE, InMemoryActivitySource, make_context

WINDOW = ActivityWindow(start=REFERENCE - timedelta(days=7), end=REFERENCE)

ALICE = Account("a1", email="alice@acme.io")
BOB = Account("a2", wallet="0xb0b")
TESTER = Account("a3", email="qa@example.com")


def _session(session_id, account_id, *, topic=None, artist_id=None, last_activity_at=REFERENCE):
    return Session(
        session_id=session_id,
        account_id=account_id,
        artist_id=artist_id,
        topic=topic,
        created_at=REFERENCE - timedelta(days=60),
        last_activity_at=last_activity_at,
    )


def _message(event_id, session_id, days_ago, role="user"):
    return MessageEvent(
        event_id=event_id,
        session_id=session_id,
        timestamp=REFERENCE - timedelta(days=days_ago),
        role=role,
    )


def _build(accounts, sessions, messages, reports=(), **context_kwargs):
    aggregator = ActivityAggregator(InMemoryActivitySource())
    ctx = make_context(accounts, **context_kwargs)
    return aggregator.build_activity_records(
        WINDOW, ctx, sessions=sessions, messages=messages, reports=reports
    )


def test_messages_merge_with_reports_per_handle():
    sessions = [_session("r1", "a1"), _session("r2", "a2")]
    messages = [
        _message("m1", "r1", 1),
        _message("m2", "r1", 1),
        _message("m3", "r1", 2),
        _message("m4", "r2", 3),
    ]
    reports = [ReportEvent("rep1", "alice@acme.io", REFERENCE - timedelta(days=4))]

    records = _build([ALICE, BOB], sessions, messages, reports)

    alice = records[ContactHandle.email("alice@acme.io")]
    assert alice.message_count == 3
    assert alice.report_count == 1
    assert alice.action_count == 4
    assert len(alice.active_days) == 3
    assert records[ContactHandle.wallet("0xb0b")].action_count == 1


def test_assistant_messages_never_count():
    sessions = [_session("r1", "a1")]
    messages = [_message("m1", "r1", 1, role="assistant"), _message("m2", "r1", 2, role="report")]

    records = _build([ALICE], sessions, messages)

    alice = records[ContactHandle.email("alice@acme.io")]
    assert alice.message_count == 1
    assert alice.active_days == {(REFERENCE - timedelta(days=2)).date()}


def test_output_is_sparse_and_ordered():
    sessions = [_session("r1", "a1"), _session("r2", "a2")]
    messages = [_message("m1", "r2", 1)]

    records = _build([ALICE, BOB], sessions, messages)

    assert list(records) == [ContactHandle.wallet("0xb0b")]
    assert all(r.action_count > 0 for r in records.values())


def test_aggregation_is_deterministic():
    sessions = [_session("r1", "a1"), _session("r2", "a2")]
    messages = [_message("m1", "r2", 1), _message("m2", "r1", 2)]

    first = _build([ALICE, BOB], sessions, messages)
    second = _build([ALICE, BOB], list(reversed(sessions)), list(reversed(messages)))

    assert list(first) == list(second)
    assert [r.action_count for r in first.values()] == [r.action_count for r in second.values()]


def test_events_outside_window_are_ignored():
    sessions = [_session("r1", "a1")]
    messages = [_message("m1", "r1", 8), _message("m2", "r1", 1)]
    reports = [ReportEvent("rep1", "alice@acme.io", REFERENCE + timedelta(seconds=1))]

    records = _build([ALICE], sessions, messages, reports)

    assert records[ContactHandle.email("alice@acme.io")].action_count == 1


def test_report_without_account_keeps_email_handle():
    reports = [ReportEvent("rep1", "lead@prospect.io", REFERENCE - timedelta(days=1))]

    records = _build([ALICE], [], [], reports)

    record = records[ContactHandle.email("lead@prospect.io")]
    assert record.account_id is None
    assert record.report_count == 1


def test_report_email_of_linked_account_merges_with_its_messages():
    linked = Account("a4", email="both@acme.io", wallet="0xbeef")
    sessions = [_session("r1", "a4")]
    messages = [_message("m1", "r1", 1)]
    reports = [ReportEvent("rep1", "both@acme.io", REFERENCE - timedelta(days=2))]

    records = _build([linked], sessions, messages, reports)

    assert list(records) == [ContactHandle.email("both@acme.io")]
    assert records[ContactHandle.email("both@acme.io")].action_count == 2


def test_exclusion_drops_test_accounts_and_test_reports():
    sessions = [_session("r1", "a1"), _session("r3", "a3")]
    messages = [_message("m1", "r1", 1), _message("m2", "r3", 1)]
    reports = [
        ReportEvent("rep1", "qa@example.com", REFERENCE - timedelta(days=1)),
        ReportEvent("rep2", "x+1@acme.io", REFERENCE - timedelta(days=1)),
    ]

    records = _build([ALICE, TESTER], sessions, messages, reports, exclude_test=True)

    assert list(records) == [ContactHandle.email("alice@acme.io")]


def test_exclusion_drops_sessions_with_test_artist():
    sessions = [_session("r1", "a1", artist_id="artist-test"), _session("r2", "a1")]
    messages = [_message("m1", "r1", 1), _message("m2", "r2", 1)]

    records = _build([ALICE], sessions, messages, exclude_test=True, test_artist_ids=["artist-test"])

    assert records[ContactHandle.email("alice@acme.io")].message_count == 1


def test_report_sessions_union_days_into_existing_records_only():
    sessions = [
        _session("r1", "a1"),
        _session("seg1", "a1", topic="Segment: Superfans", last_activity_at=REFERENCE - timedelta(days=5)),
        _session("seg2", "a2", topic="segment: lapsed", last_activity_at=REFERENCE - timedelta(days=5)),
    ]
    messages = [_message("m1", "r1", 1)]
    aggregator = ActivityAggregator(InMemoryActivitySource())
    ctx = make_context([ALICE, BOB])

    records = aggregator.build_activity_records(
        WINDOW, ctx, sessions=sessions, messages=messages, reports=[], include_report_sessions=True
    )

    alice = records[ContactHandle.email("alice@acme.io")]
    assert alice.active_days == {
        (REFERENCE - timedelta(days=1)).date(),
        (REFERENCE - timedelta(days=5)).date(),
    }
    assert alice.action_count == 1
    assert ContactHandle.wallet("0xb0b") not in records


def test_naive_timestamps_are_read_as_utc():
    sessions = [_session("r1", "a1")]
    messages = [MessageEvent("m1", "r1", datetime(2024, 6, 14, 10, 0))]
    reports = [ReportEvent("rep1", "alice@acme.io", datetime(2024, 6, 1, 10, 0))]

    records = _build([ALICE], sessions, messages, reports)

    record = records[ContactHandle.email("alice@acme.io")]
    assert record.message_count == 1
    assert record.report_count == 0
    assert record.active_days == {date(2024, 6, 14)}


def test_active_days_use_utc_dates():
    sessions = [_session("r1", "a1")]
    late = datetime(2024, 6, 14, 23, 30, tzinfo=UTC)
    early = datetime(2024, 6, 15, 0, 30, tzinfo=UTC)
    messages = [
        MessageEvent("m1", "r1", late),
        MessageEvent("m2", "r1", early),
    ]

    records = _build([ALICE], sessions, messages)

    assert records[ContactHandle.email("alice@acme.io")].active_days == {
        date(2024, 6, 14),
        date(2024, 6, 15),
    }


@pytest.mark.asyncio
async def test_aggregate_reads_from_source():
    source = InMemoryActivitySource(
        accounts=[ALICE],
        sessions=[_session("r1", "a1"), _session("old", "a1", last_activity_at=REFERENCE - timedelta(days=30))],
        messages=[_message("m1", "r1", 1), _message("m2", "old", 29)],
        reports=[ReportEvent("rep1", "alice@acme.io", REFERENCE - timedelta(days=3))],
    )
    aggregator = ActivityAggregator(source)

    records = await aggregator.aggregate(WINDOW, make_context([ALICE]))

    assert records[ContactHandle.email("alice@acme.io")].action_count == 2
    assert source.calls["fetch_message_events"] == 1


@pytest.mark.asyncio
async def test_aggregate_raises_upstream_failure():
    source = InMemoryActivitySource(accounts=[ALICE], sessions=[_session("r1", "a1")])
    source.fail.add("fetch_report_events")

    with pytest.raises(UpstreamUnavailable):
        await ActivityAggregator(source).aggregate(WINDOW, make_context([ALICE]))


@pytest.mark.asyncio
async def test_aggregate_waits_for_sibling_fetch_before_raising():
    source = InMemoryActivitySource(
        accounts=[ALICE],
        sessions=[_session("r1", "a1")],
        messages=[_message("m1", "r1", 1)],
    )
    source.fail.add("fetch_report_events")
    source.delays["fetch_sessions"] = 0.02

    with pytest.raises(UpstreamUnavailable):
        await ActivityAggregator(source).aggregate(WINDOW, make_context([ALICE]))

    # the session and message chain ran to completion before the error surfaced
    assert source.calls["fetch_message_events"] == 1


@pytest.mark.asyncio
async def test_session_counts_by_handle():
    source = InMemoryActivitySource(
        accounts=[ALICE, BOB],
        sessions=[_session("r1", "a1"), _session("r2", "a1"), _session("r3", "a2")],
    )

    counts = await ActivityAggregator(source).session_counts_by_handle(REFERENCE, make_context([ALICE, BOB]))

    assert counts == {ContactHandle.email("alice@acme.io"): 2, ContactHandle.wallet("0xb0b"): 1}
