"""
Stats service

Read views of a user's stats: the cross-platform profile aggregate and
single-platform detail.
"""

import logging
from typing import Optional

from sqlalchemy import select

from tracker.constants import StatsConstants
from tracker.data_models.stats import AggregatedStats, PlatformBreakdown
from tracker.database.models import Platform, PlatformAccount, User, UserScore
from tracker.services.base import BaseService
from tracker.services.stats_merger import acceptance_rate
from tracker.utils.exceptions import AccountNotFoundError, UserNotFoundError
from tracker.utils.time_utils import round_half_up

logger = logging.getLogger(__name__)


class StatsService(BaseService):
    """Builds profile views from the stored account metrics."""

    async def get_user_stats(self, user_id: int, platform=None) -> AggregatedStats:
        """
        Aggregate a user's active accounts, optionally restricted to one platform.

        Raises:
            UserNotFoundError: if the user does not exist
        """
        platform = Platform.parse(platform) if platform is not None else None

        async with self.get_session() as session:
            if await session.get(User, user_id) is None:
                raise UserNotFoundError(user_id)

            query = select(PlatformAccount).where(
                PlatformAccount.user_id == user_id,
                PlatformAccount.is_active == True
            )
            if platform is not None:
                query = query.where(PlatformAccount.platform == platform)
            accounts = list((await session.execute(query.order_by(PlatformAccount.id))).scalars().all())
            score = await session.get(UserScore, user_id)

        stats = AggregatedStats(
            composite_score=score.composite_score if score else 0,
            platform_count=len(accounts),
        )

        rated = []
        activity = []
        for account in accounts:
            stats.total_problems_solved += account.total_problems_solved or 0
            stats.easy_problems_solved += account.easy_problems_solved or 0
            stats.medium_problems_solved += account.medium_problems_solved or 0
            stats.hard_problems_solved += account.hard_problems_solved or 0
            stats.total_contests_participated += account.contests_participated or 0
            stats.max_contest_rating = max(stats.max_contest_rating, account.max_contest_rating or 0)
            stats.total_platform_score += account.platform_score
            stats.current_streak = max(stats.current_streak, account.current_streak or 0)
            stats.max_streak = max(stats.max_streak, account.max_streak or 0)
            stats.total_submissions += account.total_submissions or 0
            stats.accepted_submissions += account.accepted_submissions or 0

            if (account.contest_rating or 0) > 0:
                rated.append(account.contest_rating)

            if account.last_synced_at and (stats.last_synced_at is None
                                           or account.last_synced_at > stats.last_synced_at):
                stats.last_synced_at = account.last_synced_at

            stats.platform_breakdown[account.platform.value] = PlatformBreakdown(
                problems=account.total_problems_solved or 0,
                rating=account.contest_rating or 0,
                contests=account.contests_participated or 0,
                rank=account.global_rank or 0,
                platform_score=account.platform_score,
                last_synced_at=account.last_synced_at,
                sync_status=account.sync_status.value,
                last_error=account.last_error,
            )

            for language, entry in (account.language_stats or {}).items():
                merged = stats.language_stats.setdefault(language, {'problems_solved': 0, 'submissions': 0})
                merged['problems_solved'] += entry.get('problems_solved', 0)
                merged['submissions'] += entry.get('submissions', 0)

            for entry in account.recent_activity or []:
                activity.append(dict(entry, platform=account.platform.value))

        if rated:
            stats.average_contest_rating = round_half_up(sum(rated) / len(rated))
        stats.acceptance_rate = acceptance_rate(stats.accepted_submissions, stats.total_submissions)

        activity.sort(key=lambda e: e.get('date', ''), reverse=True)
        stats.recent_activity = activity[:StatsConstants.RECENT_ACTIVITY_LIMIT]

        return stats

    async def get_visible_user_stats(self, user_id: int, viewer_user_id: Optional[int],
                                     platform=None) -> Optional[AggregatedStats]:
        """
        Stats of a user as seen by another user.

        Returns None when the profile is private and the viewer is not its
        owner. viewer_user_id is None for viewers without an account.

        Raises:
            UserNotFoundError: if the user does not exist
        """
        async with self.get_session() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(user_id)

        if not user.is_public and viewer_user_id != user_id:
            logger.debug(f"Hid private profile of user {user_id} from viewer {viewer_user_id}")
            return None
        return await self.get_user_stats(user_id, platform)

    async def get_platform_stats(self, user_id: int, platform) -> PlatformAccount:
        """
        One active platform account of a user.

        Raises:
            UserNotFoundError: if the user does not exist
            AccountNotFoundError: if no active account is linked on the platform
        """
        platform = Platform.parse(platform)
        async with self.get_session() as session:
            if await session.get(User, user_id) is None:
                raise UserNotFoundError(user_id)
            result = await session.execute(
                select(PlatformAccount).where(
                    PlatformAccount.user_id == user_id,
                    PlatformAccount.platform == platform,
                    PlatformAccount.is_active == True
                )
            )
            account = result.scalar_one_or_none()

        if account is None:
            raise AccountNotFoundError(user_id, platform.value)
        return account
