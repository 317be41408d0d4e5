from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from tracker.database.models import PlatformAccount, StatsSnapshot
from tracker.services.history_recorder import HistoryRecorder


@pytest.fixture
def history(db, clock):
    return HistoryRecorder(db, clock=clock)


async def _record(db, history, account_id, problems, rating=0, contests=0, rank=0):
    """Set an account's metrics and write its snapshots the way a sync does."""
    async with db.transaction() as session:
        account = await session.get(PlatformAccount, account_id)
        account.total_problems_solved = problems
        account.contest_rating = rating
        account.contests_participated = contests
        account.global_rank = rank
        await session.flush()
        aggregate = await db.score_aggregator.recompute(session, account.user_id)
        await history.record_account_snapshot(session, account)
        await history.record_overall_snapshot(session, account.user_id, aggregate)


async def _snapshot_count(db):
    async with db.get_session() as session:
        return await session.scalar(select(func.count()).select_from(StatsSnapshot))


async def test_same_day_writes_overwrite(db, history, make_user, clock):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'leetcode', 'alice')

    await _record(db, history, account.id, problems=10)
    clock.advance(hours=3)
    await _record(db, history, account.id, problems=12)

    # One leetcode and one overall snapshot for the day
    assert await _snapshot_count(db) == 2
    points = await history.progress(user.id, 'leetcode')
    assert len(points) == 1
    assert points[0].problems == 12
    assert points[0].date == clock().date()


async def test_deltas_against_previous_day(db, history, make_user, clock):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'codeforces', 'alice')

    await _record(db, history, account.id, problems=10, rating=1400, rank=500)
    clock.advance(days=1)
    await _record(db, history, account.id, problems=15, rating=1450, rank=420)

    async with db.get_session() as session:
        latest = await session.scalar(
            select(StatsSnapshot).where(StatsSnapshot.platform == 'codeforces')
            .order_by(StatsSnapshot.snapshot_date.desc()).limit(1)
        )
    assert latest.problems_change == 5
    assert latest.rating_change == 50
    assert latest.rank_change == 80


async def test_growth_without_baseline_is_zero(db, history, make_user):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'leetcode', 'alice')
    await _record(db, history, account.id, problems=40, rating=1500, contests=3)

    report = await history.growth(user.id)

    assert report.platform == 'overall'
    assert report.weekly.problems == 0
    assert report.weekly.has_baseline is False
    assert report.monthly.problems == 0
    assert report.monthly.has_baseline is False


async def test_growth_uses_snapshot_at_or_before_window_start(db, history, make_user, clock):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'leetcode', 'alice')

    await _record(db, history, account.id, problems=10, rating=1200, contests=1)
    clock.advance(days=25)
    await _record(db, history, account.id, problems=30, rating=1300, contests=4)
    clock.advance(days=10)
    await _record(db, history, account.id, problems=45, rating=1350, contests=6)

    report = await history.growth(user.id, 'leetcode')

    # Weekly baseline is the day-25 snapshot, monthly is the first one
    assert report.weekly.problems == 15
    assert report.weekly.rating == 50
    assert report.weekly.contests == 2
    assert report.weekly.has_baseline is True
    assert report.monthly.problems == 35
    assert report.monthly.rating == 150
    assert report.monthly.contests == 5


async def test_progress_is_ascending_and_bounded(db, history, make_user, clock):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'leetcode', 'alice')
    start = clock().date()

    for problems in (5, 8, 13):
        await _record(db, history, account.id, problems=problems)
        clock.advance(days=1)

    points = await history.progress(user.id, days=30)
    assert [p.problems for p in points] == [5, 8, 13]
    assert [p.date for p in points] == [start, start + timedelta(days=1), start + timedelta(days=2)]

    recent = await history.progress(user.id, days=2)
    assert [p.problems for p in recent] == [8, 13]


async def test_weekly_summary_groups_by_iso_week(db, history, make_user, clock):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'leetcode', 'alice')

    # 2024-03-15 is a Friday; the 18th starts the next ISO week
    for problems in (10, 20, 30, 40):
        await _record(db, history, account.id, problems=problems, rating=1000 + problems)
        clock.advance(days=1)

    summaries = await history.weekly_summary(user.id, 'leetcode')

    assert [(s.year, s.week) for s in summaries] == [(2024, 11), (2024, 12)]
    assert summaries[0].avg_problems == 20
    assert summaries[0].max_problems == 30
    assert summaries[0].first_date == date(2024, 3, 15)
    assert summaries[1].max_rating == 1040


async def test_purge_removes_only_expired_daily_snapshots(db, history, make_user, clock):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'leetcode', 'alice')

    await _record(db, history, account.id, problems=1)
    clock.advance(days=400)
    await _record(db, history, account.id, problems=2)

    deleted = await history.purge_expired(retention_days=365)

    assert deleted == 2
    assert await _snapshot_count(db) == 2
    assert [p.problems for p in await history.progress(user.id, 'leetcode')] == [2]


async def test_purge_keeps_snapshot_on_the_retention_boundary_day(db, history, make_user, clock):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'leetcode', 'alice')
    await _record(db, history, account.id, problems=1)

    # Exactly 365 calendar days later, later in the day than the recording
    clock.advance(days=365, hours=6)
    assert await history.purge_expired(retention_days=365) == 0
    assert await _snapshot_count(db) == 2

    clock.advance(days=1)
    assert await history.purge_expired(retention_days=365) == 2
    assert await _snapshot_count(db) == 0
