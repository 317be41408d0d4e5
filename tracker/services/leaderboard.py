"""
Leaderboard service

Overall and per-platform leaderboards, position lookups and site-wide
statistics, with a short TTL cache in front of the ranking queries.
"""

from typing import Any, Dict, List, Optional
import asyncio
import time
import logging

from sqlalchemy import func, select
from tracker.config import Config
from tracker.constants import HistoryConstants, LeaderboardConstants
from tracker.data_models.leaderboard import GlobalStats, LeaderboardEntry, LeaderboardPage, RankPosition
from tracker.database.models import Platform, PlatformAccount, User, UserScore
from tracker.services.base import BaseService
from tracker.utils.exceptions import UserNotFoundError
from tracker.utils.ranking import (
    OverallMetric, RankingUtility, parse_overall_metric, parse_platform_metric, percentile
)

logger = logging.getLogger(__name__)


class LeaderboardService(BaseService):
    """Service for leaderboard queries and ranking with caching."""

    def __init__(self, session_factory, cache_ttl: Optional[int] = None):
        super().__init__(session_factory)
        # TTL cache for leaderboard results
        self._cache: Dict[str, Any] = {}
        self._cache_timestamps: Dict[str, float] = {}
        self._cache_ttl = cache_ttl if cache_ttl is not None else Config.LEADERBOARD_CACHE_TTL
        self._cache_max_size = LeaderboardConstants.CACHE_MAX_SIZE
        self._cache_lock = asyncio.Lock()

    async def _get_cached(self, key: str):
        async with self._cache_lock:
            timestamp = self._cache_timestamps.get(key)
            if timestamp is None or time.time() - timestamp >= self._cache_ttl:
                return None
            return self._cache[key]

    async def _store(self, key: str, value):
        async with self._cache_lock:
            current_time = time.time()
            expired_keys = [
                k for k, timestamp in self._cache_timestamps.items()
                if current_time - timestamp >= self._cache_ttl
            ]
            for k in expired_keys:
                self._cache.pop(k, None)
                self._cache_timestamps.pop(k, None)

            # Enforce size limit by removing oldest entries
            if len(self._cache) >= self._cache_max_size:
                oldest = sorted(self._cache_timestamps.items(), key=lambda x: x[1])
                for k, _ in oldest[:len(self._cache) - self._cache_max_size + 1]:
                    self._cache.pop(k, None)
                    self._cache_timestamps.pop(k, None)

            self._cache[key] = value
            self._cache_timestamps[key] = current_time

    async def clear_cache(self):
        """Clears the entire leaderboard cache."""
        async with self._cache_lock:
            self._cache.clear()
            self._cache_timestamps.clear()
        logger.info("Leaderboard cache cleared.")

    async def get_overall_page(self, metric=OverallMetric.COMPOSITE_SCORE, limit: Optional[int] = None,
                               viewer_user_id: Optional[int] = None) -> LeaderboardPage:
        """
        Top-N public users ranked by an overall metric.

        Args:
            metric: OverallMetric or its name
            limit: Number of entries, 1 to LEADERBOARD_MAX_LIMIT
            viewer_user_id: When given, the viewer's position is included
                (None if the viewer is not ranked)

        Raises:
            InvalidMetricError: unknown metric name
            ValueError: limit out of range
        """
        metric = parse_overall_metric(metric)
        limit = limit if limit is not None else Config.LEADERBOARD_DEFAULT_LIMIT
        RankingUtility.validate_limit(limit, Config.LEADERBOARD_MAX_LIMIT)

        cache_key = f"overall:{metric.value}:{limit}"
        entries_and_total = await self._get_cached(cache_key)
        if entries_and_total is None:
            ranked = RankingUtility.overall_ranking_cte(metric)
            async with self.get_session() as session:
                total = await session.scalar(select(func.count()).select_from(ranked)) or 0
                result = await session.execute(
                    select(ranked).order_by(ranked.c.position).limit(limit)
                )
                entries = [self._entry(row) for row in result]
            entries_and_total = (entries, total)
            await self._store(cache_key, entries_and_total)

        entries, total = entries_and_total
        viewer_position = None
        if viewer_user_id is not None:
            position = await self._overall_position(viewer_user_id, metric)
            viewer_position = position.position if position else None

        return LeaderboardPage(
            entries=entries,
            total=total,
            platform=HistoryConstants.OVERALL_PLATFORM,
            metric=metric.value,
            limit=limit,
            viewer_position=viewer_position,
        )

    async def get_platform_page(self, platform, metric='problems', limit: Optional[int] = None,
                                viewer_user_id: Optional[int] = None) -> LeaderboardPage:
        """Top-N accounts of one platform whose owners are public."""
        platform = Platform.parse(platform)
        metric = parse_platform_metric(metric)
        limit = limit if limit is not None else Config.LEADERBOARD_DEFAULT_LIMIT
        RankingUtility.validate_limit(limit, Config.LEADERBOARD_MAX_LIMIT)

        cache_key = f"platform:{platform.value}:{metric.value}:{limit}"
        entries_and_total = await self._get_cached(cache_key)
        if entries_and_total is None:
            ranked = RankingUtility.platform_ranking_cte(platform, metric)
            async with self.get_session() as session:
                total = await session.scalar(select(func.count()).select_from(ranked)) or 0
                result = await session.execute(
                    select(ranked).order_by(ranked.c.position).limit(limit)
                )
                entries = [self._entry(row, with_account=True) for row in result]
            entries_and_total = (entries, total)
            await self._store(cache_key, entries_and_total)

        entries, total = entries_and_total
        viewer_position = None
        if viewer_user_id is not None:
            position = await self._platform_position(viewer_user_id, platform, metric)
            viewer_position = position.position if position else None

        return LeaderboardPage(
            entries=entries,
            total=total,
            platform=platform.value,
            metric=metric.value,
            limit=limit,
            viewer_position=viewer_position,
        )

    @staticmethod
    def _entry(row, with_account: bool = False) -> LeaderboardEntry:
        return LeaderboardEntry(
            position=row.position,
            user_id=row.user_id,
            username=row.username,
            display_name=row.display_name or row.username,
            value=row.value or 0,
            composite_score=row.composite_score or 0,
            joined_at=row.joined_at,
            account_id=row.account_id if with_account else None,
            platform_username=row.platform_username if with_account else None,
        )

    async def _require_user(self, user_id: int):
        async with self.get_session() as session:
            if await session.get(User, user_id) is None:
                raise UserNotFoundError(user_id)

    async def get_user_position(self, user_id: int, metric=OverallMetric.COMPOSITE_SCORE) -> Optional[RankPosition]:
        """
        A user's position on the overall leaderboard.

        Returns None when the user is not ranked (private, or no active
        accounts).

        Raises:
            UserNotFoundError: if the user does not exist
        """
        metric = parse_overall_metric(metric)
        await self._require_user(user_id)
        return await self._overall_position(user_id, metric)

    async def get_account_position(self, user_id: int, platform, metric='problems') -> Optional[RankPosition]:
        """A user's position on one platform's leaderboard, None when not ranked."""
        platform = Platform.parse(platform)
        metric = parse_platform_metric(metric)
        await self._require_user(user_id)
        return await self._platform_position(user_id, platform, metric)

    async def _overall_position(self, user_id: int, metric: OverallMetric) -> Optional[RankPosition]:
        ranked = RankingUtility.overall_ranking_cte(metric)
        async with self.get_session() as session:
            result = await session.execute(select(ranked).where(ranked.c.user_id == user_id))
            row = result.first()
        if row is None:
            return None
        return RankPosition(
            position=row.position,
            total=row.total,
            percentile=percentile(row.position, row.total),
            platform=HistoryConstants.OVERALL_PLATFORM,
            metric=metric.value,
            value=row.value or 0,
        )

    async def _platform_position(self, user_id: int, platform: Platform, metric) -> Optional[RankPosition]:
        ranked = RankingUtility.platform_ranking_cte(platform, metric)
        async with self.get_session() as session:
            result = await session.execute(select(ranked).where(ranked.c.user_id == user_id))
            row = result.first()
        if row is None:
            return None
        return RankPosition(
            position=row.position,
            total=row.total,
            percentile=percentile(row.position, row.total),
            platform=platform.value,
            metric=metric.value,
            value=row.value or 0,
        )

    async def get_top_performers(self, limit: int = LeaderboardConstants.TOP_PERFORMERS_LIMIT) -> Dict[str, List[LeaderboardEntry]]:
        """Top entries for every overall metric, keyed by metric name."""
        performers = {}
        for metric in OverallMetric:
            page = await self.get_overall_page(metric, limit=limit)
            performers[metric.value] = page.entries
        return performers

    async def get_global_stats(self) -> GlobalStats:
        """Site-wide totals and record values over public users."""
        cached = await self._get_cached('global_stats')
        if cached is not None:
            return cached

        public_user = (User.is_public == True, User.is_active == True)
        async with self.get_session() as session:
            score_row = (await session.execute(
                select(
                    func.count(UserScore.user_id),
                    func.max(UserScore.composite_score),
                    func.max(UserScore.total_problems),
                    func.max(UserScore.avg_rating),
                    func.max(UserScore.max_streak),
                    func.sum(UserScore.total_problems),
                )
                .join(User, UserScore.user_id == User.id)
                .where(*public_user, UserScore.account_count > 0)
            )).one()

            distribution_rows = (await session.execute(
                select(PlatformAccount.platform, func.count(PlatformAccount.id))
                .join(User, PlatformAccount.user_id == User.id)
                .where(PlatformAccount.is_active == True, *public_user)
                .group_by(PlatformAccount.platform)
            )).all()

        distribution = {platform.value: 0 for platform in Platform}
        for platform, count in distribution_rows:
            distribution[platform.value] = count

        stats = GlobalStats(
            total_users=score_row[0] or 0,
            total_accounts=sum(distribution.values()),
            platform_distribution=distribution,
            max_composite_score=score_row[1] or 0,
            max_problems=score_row[2] or 0,
            max_avg_rating=score_row[3] or 0,
            max_streak=score_row[4] or 0,
            total_problems_global=score_row[5] or 0,
        )
        await self._store('global_stats', stats)
        return stats
