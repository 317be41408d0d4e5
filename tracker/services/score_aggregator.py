"""
Score Aggregation Service

Derives a user's composite score from all of their active platform accounts
and writes it through to the denormalized UserScore row. The score is always
recomputed from the current account set, never adjusted incrementally.
"""

import math
from datetime import datetime
from typing import Callable, Iterable, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tracker.constants import ScoreConstants
from tracker.data_models.stats import AggregateScore
from tracker.database.models import PlatformAccount, UserScore
from tracker.utils.logger import setup_logger
from tracker.utils.time_utils import round_half_up, utcnow

logger = setup_logger(__name__)


def compute_aggregate(accounts: Iterable[PlatformAccount]) -> AggregateScore:
    """
    Reduce a set of active accounts to the composite score and its components.

    Only accounts with a positive contest rating count towards the average
    rating. An empty set yields all zeros. The result does not depend on the
    order of the accounts.
    """
    accounts = list(accounts)

    total_problems = sum(account.total_problems_solved or 0 for account in accounts)
    ratings = [account.contest_rating for account in accounts if (account.contest_rating or 0) > 0]
    avg_rating = math.fsum(ratings) / len(ratings) if ratings else 0.0
    max_streak = max((account.max_streak or 0 for account in accounts), default=0)
    account_count = len(accounts)

    composite_score = round_half_up(
        total_problems * ScoreConstants.PROBLEM_WEIGHT +
        avg_rating * ScoreConstants.RATING_WEIGHT +
        max_streak * ScoreConstants.STREAK_WEIGHT +
        account_count * ScoreConstants.ACCOUNT_WEIGHT
    )

    return AggregateScore(
        total_problems=total_problems,
        avg_rating=avg_rating,
        max_streak=max_streak,
        account_count=account_count,
        composite_score=composite_score,
    )


class ScoreAggregatorService:
    """Service for recomputing users' composite scores."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or utcnow

    async def recompute(self, session: AsyncSession, user_id: int) -> AggregateScore:
        """
        Recompute a user's composite score and write it to UserScore.

        Args:
            session: Database session (caller handles commit)
            user_id: ID of the user to update

        Returns:
            The aggregate that was written
        """
        result = await session.execute(
            select(PlatformAccount).where(
                PlatformAccount.user_id == user_id,
                PlatformAccount.is_active == True
            )
        )
        aggregate = compute_aggregate(result.scalars().all())

        score = await session.get(UserScore, user_id)
        if score is None:
            score = UserScore(user_id=user_id)
            session.add(score)

        score.composite_score = aggregate.composite_score
        score.total_problems = aggregate.total_problems
        score.avg_rating = aggregate.avg_rating
        score.max_streak = aggregate.max_streak
        score.account_count = aggregate.account_count
        score.updated_at = self.clock()

        logger.debug(
            f"Updated user {user_id} score: "
            f"composite={aggregate.composite_score}, "
            f"problems={aggregate.total_problems}, "
            f"avg_rating={aggregate.avg_rating:.1f}, "
            f"accounts={aggregate.account_count}"
        )
        return aggregate
