"""
History Recorder

Writes one snapshot per (user, platform, calendar day) after each successful
sync and answers the time-series questions asked of them: growth over the
weekly and monthly windows, progress series for charts and weekly summaries.
Same-day writes overwrite the day's snapshot.
"""

import math
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.config import Config
from tracker.constants import HistoryConstants
from tracker.data_models.stats import (
    AggregateScore, GrowthReport, GrowthWindow, ProgressPoint, WeeklySummary
)
from tracker.database.models import Platform, PlatformAccount, SnapshotType, StatsSnapshot
from tracker.services.score_aggregator import compute_aggregate
from tracker.services.stats_merger import acceptance_rate
from tracker.utils.logger import setup_logger
from tracker.utils.time_utils import snapshot_day, utcnow

logger = setup_logger(__name__)


def _platform_key(platform) -> str:
    if platform is None or platform == HistoryConstants.OVERALL_PLATFORM:
        return HistoryConstants.OVERALL_PLATFORM
    return Platform.parse(platform).value


class HistoryRecorder:
    """Records and queries stats snapshots."""

    def __init__(self, db, clock: Optional[Callable[[], datetime]] = None,
                 timezone_name: Optional[str] = None):
        self.db = db
        self.clock = clock or db.clock or utcnow
        self.timezone_name = timezone_name

    # Writes. Callers own the session and its transaction.

    async def record_account_snapshot(self, session: AsyncSession, account: PlatformAccount,
                                      now: Optional[datetime] = None) -> StatsSnapshot:
        """Upsert today's snapshot of one platform account."""
        values = {
            'problems_total': account.total_problems_solved or 0,
            'problems_easy': account.easy_problems_solved or 0,
            'problems_medium': account.medium_problems_solved or 0,
            'problems_hard': account.hard_problems_solved or 0,
            'contest_rating': account.contest_rating or 0,
            'max_rating': account.max_contest_rating or 0,
            'contests_participated': account.contests_participated or 0,
            'global_rank': account.global_rank or 0,
            'composite_score': account.platform_score,
            'total_submissions': account.total_submissions or 0,
            'accepted_submissions': account.accepted_submissions or 0,
            'acceptance_rate': account.acceptance_rate or 0,
            'current_streak': account.current_streak or 0,
            'max_streak': account.max_streak or 0,
        }
        return await self._upsert(session, account.user_id, account.platform.value, values, now)

    async def record_overall_snapshot(self, session: AsyncSession, user_id: int,
                                      aggregate: Optional[AggregateScore] = None,
                                      now: Optional[datetime] = None) -> StatsSnapshot:
        """Upsert today's cross-platform snapshot of a user."""
        result = await session.execute(
            select(PlatformAccount).where(
                PlatformAccount.user_id == user_id,
                PlatformAccount.is_active == True
            )
        )
        accounts = result.scalars().all()
        if aggregate is None:
            aggregate = compute_aggregate(accounts)

        total_submissions = sum(a.total_submissions or 0 for a in accounts)
        accepted_submissions = sum(a.accepted_submissions or 0 for a in accounts)
        values = {
            'problems_total': aggregate.total_problems,
            'problems_easy': sum(a.easy_problems_solved or 0 for a in accounts),
            'problems_medium': sum(a.medium_problems_solved or 0 for a in accounts),
            'problems_hard': sum(a.hard_problems_solved or 0 for a in accounts),
            'contest_rating': aggregate.avg_rating,
            'max_rating': max((a.max_contest_rating or 0 for a in accounts), default=0),
            'contests_participated': sum(a.contests_participated or 0 for a in accounts),
            'global_rank': 0,
            'composite_score': aggregate.composite_score,
            'total_submissions': total_submissions,
            'accepted_submissions': accepted_submissions,
            'acceptance_rate': acceptance_rate(accepted_submissions, total_submissions),
            'current_streak': max((a.current_streak or 0 for a in accounts), default=0),
            'max_streak': aggregate.max_streak,
        }
        return await self._upsert(session, user_id, HistoryConstants.OVERALL_PLATFORM, values, now)

    async def _upsert(self, session: AsyncSession, user_id: int, platform: str,
                      values: Dict, now: Optional[datetime]) -> StatsSnapshot:
        now = now or self.clock()
        day = snapshot_day(now, self.timezone_name)

        result = await session.execute(
            select(StatsSnapshot).where(
                StatsSnapshot.user_id == user_id,
                StatsSnapshot.platform == platform,
                StatsSnapshot.snapshot_type == SnapshotType.DAILY,
                StatsSnapshot.snapshot_date == day
            )
        )
        snapshot = result.scalar_one_or_none()

        result = await session.execute(
            select(StatsSnapshot).where(
                StatsSnapshot.user_id == user_id,
                StatsSnapshot.platform == platform,
                StatsSnapshot.snapshot_type == SnapshotType.DAILY,
                StatsSnapshot.snapshot_date < day
            ).order_by(StatsSnapshot.snapshot_date.desc()).limit(1)
        )
        previous = result.scalar_one_or_none()

        if snapshot is None:
            snapshot = StatsSnapshot(
                user_id=user_id,
                platform=platform,
                snapshot_type=SnapshotType.DAILY,
                snapshot_date=day
            )
            session.add(snapshot)

        for key, value in values.items():
            setattr(snapshot, key, value)
        snapshot.recorded_at = now

        if previous is not None:
            snapshot.problems_change = values['problems_total'] - previous.problems_total
            snapshot.rating_change = values['contest_rating'] - previous.contest_rating
            # Positive when the rank number went down
            snapshot.rank_change = (previous.global_rank - values['global_rank']
                                    if previous.global_rank and values['global_rank'] else 0)
        else:
            snapshot.problems_change = 0
            snapshot.rating_change = 0
            snapshot.rank_change = 0

        return snapshot

    async def purge_expired(self, retention_days: Optional[int] = None) -> int:
        """Delete daily snapshots whose day lies more than retention_days before today."""
        retention_days = retention_days or Config.HISTORY_RETENTION_DAYS
        cutoff = snapshot_day(self.clock(), self.timezone_name) - timedelta(days=retention_days)

        async with self.db.transaction() as session:
            result = await session.execute(
                delete(StatsSnapshot).where(
                    StatsSnapshot.snapshot_type == SnapshotType.DAILY,
                    StatsSnapshot.snapshot_date < cutoff
                )
            )
            deleted = result.rowcount or 0

        logger.info(f"Purged {deleted} snapshots older than {retention_days} days")
        return deleted

    # Reads

    async def growth(self, user_id: int, platform=HistoryConstants.OVERALL_PLATFORM) -> GrowthReport:
        """
        Change of problems, rating and contests over the last 7 and 30 days.

        Each window compares the latest snapshot with the most recent one
        recorded at or before the window start. Without such a baseline the
        window reports zero growth and has_baseline=False.
        """
        platform = _platform_key(platform)
        now = self.clock()

        async with self.db.get_session() as session:
            latest = await self._latest(session, user_id, platform)
            weekly_base = await self._latest(
                session, user_id, platform, now - timedelta(days=HistoryConstants.WEEKLY_WINDOW_DAYS)
            )
            monthly_base = await self._latest(
                session, user_id, platform, now - timedelta(days=HistoryConstants.MONTHLY_WINDOW_DAYS)
            )

        return GrowthReport(
            platform=platform,
            weekly=self._window(HistoryConstants.WEEKLY_WINDOW_DAYS, latest, weekly_base),
            monthly=self._window(HistoryConstants.MONTHLY_WINDOW_DAYS, latest, monthly_base),
        )

    async def _latest(self, session: AsyncSession, user_id: int, platform: str,
                      at_or_before: Optional[datetime] = None) -> Optional[StatsSnapshot]:
        query = select(StatsSnapshot).where(
            StatsSnapshot.user_id == user_id,
            StatsSnapshot.platform == platform,
            StatsSnapshot.snapshot_type == SnapshotType.DAILY
        )
        if at_or_before is not None:
            query = query.where(StatsSnapshot.recorded_at <= at_or_before)
        result = await session.execute(
            query.order_by(StatsSnapshot.recorded_at.desc(), StatsSnapshot.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _window(days: int, latest: Optional[StatsSnapshot],
                baseline: Optional[StatsSnapshot]) -> GrowthWindow:
        if latest is None or baseline is None:
            return GrowthWindow(days=days, problems=0, rating=0, contests=0, has_baseline=False)
        return GrowthWindow(
            days=days,
            problems=latest.problems_total - baseline.problems_total,
            rating=latest.contest_rating - baseline.contest_rating,
            contests=latest.contests_participated - baseline.contests_participated,
            has_baseline=True,
        )

    async def progress(self, user_id: int, platform=HistoryConstants.OVERALL_PLATFORM,
                       days: int = HistoryConstants.DEFAULT_PROGRESS_DAYS) -> List[ProgressPoint]:
        """Daily problems/rating series over the last `days` days, oldest first."""
        if days < 1:
            raise ValueError("days must be at least 1")
        snapshots = await self._range(user_id, _platform_key(platform), timedelta(days=days))
        return [
            ProgressPoint(
                date=s.snapshot_date,
                problems=s.problems_total,
                rating=s.contest_rating,
                easy=s.problems_easy,
                medium=s.problems_medium,
                hard=s.problems_hard,
            )
            for s in snapshots
        ]

    async def weekly_summary(self, user_id: int, platform=HistoryConstants.OVERALL_PLATFORM,
                             weeks: int = HistoryConstants.DEFAULT_SUMMARY_WEEKS) -> List[WeeklySummary]:
        """Average and best problems/rating per ISO week, oldest week first."""
        if weeks < 1:
            raise ValueError("weeks must be at least 1")
        snapshots = await self._range(user_id, _platform_key(platform), timedelta(weeks=weeks))

        groups: Dict[Tuple[int, int], List[StatsSnapshot]] = {}
        for snapshot in snapshots:
            year, week, _ = snapshot.snapshot_date.isocalendar()
            groups.setdefault((year, week), []).append(snapshot)

        summaries = []
        for (year, week), members in groups.items():
            problems = [s.problems_total for s in members]
            ratings = [s.contest_rating for s in members]
            summaries.append(WeeklySummary(
                year=year,
                week=week,
                avg_problems=sum(problems) / len(problems),
                max_problems=max(problems),
                avg_rating=math.fsum(ratings) / len(ratings),
                max_rating=max(ratings),
                first_date=members[0].snapshot_date,
            ))
        summaries.sort(key=lambda s: s.first_date)
        return summaries

    async def _range(self, user_id: int, platform: str, span: timedelta) -> List[StatsSnapshot]:
        start = self.clock() - span
        async with self.db.get_session() as session:
            result = await session.execute(
                select(StatsSnapshot).where(
                    StatsSnapshot.user_id == user_id,
                    StatsSnapshot.platform == platform,
                    StatsSnapshot.snapshot_type == SnapshotType.DAILY,
                    StatsSnapshot.recorded_at >= start
                ).order_by(StatsSnapshot.snapshot_date, StatsSnapshot.id)
            )
            return list(result.scalars().all())
