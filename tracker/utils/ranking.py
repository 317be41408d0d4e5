"""
Shared ranking utilities for the leaderboard queries.

Rankings are built as CTEs with a row_number() window so the top-N query and
the single-user position lookup share one ordering. Ties on the metric value
are broken by creation time (earlier first), then by id.
"""

from enum import Enum
from typing import Dict, List

from sqlalchemy import func, select
from sqlalchemy.sql.expression import CTE, ColumnElement

from tracker.database.models import Platform, PlatformAccount, User, UserScore
from tracker.utils.exceptions import InvalidMetricError
from tracker.utils.time_utils import round_half_up


class OverallMetric(Enum):
    COMPOSITE_SCORE = "composite_score"
    TOTAL_PROBLEMS = "total_problems"
    AVG_RATING = "avg_rating"
    MAX_STREAK = "max_streak"


class PlatformMetric(Enum):
    PROBLEMS = "problems"
    RATING = "rating"
    MAX_RATING = "max_rating"
    CONTESTS = "contests"
    STREAK = "streak"
    BADGES = "badges"


OVERALL_METRIC_COLUMNS: Dict[OverallMetric, ColumnElement] = {
    OverallMetric.COMPOSITE_SCORE: UserScore.composite_score,
    OverallMetric.TOTAL_PROBLEMS: UserScore.total_problems,
    OverallMetric.AVG_RATING: UserScore.avg_rating,
    OverallMetric.MAX_STREAK: UserScore.max_streak,
}

PLATFORM_METRIC_COLUMNS: Dict[PlatformMetric, ColumnElement] = {
    PlatformMetric.PROBLEMS: PlatformAccount.total_problems_solved,
    PlatformMetric.RATING: PlatformAccount.contest_rating,
    PlatformMetric.MAX_RATING: PlatformAccount.max_contest_rating,
    PlatformMetric.CONTESTS: PlatformAccount.contests_participated,
    PlatformMetric.STREAK: PlatformAccount.max_streak,
    PlatformMetric.BADGES: PlatformAccount.badges,
}


def _allowed(metric_enum) -> List[str]:
    return [metric.value for metric in metric_enum]


def parse_overall_metric(value) -> OverallMetric:
    if isinstance(value, OverallMetric):
        return value
    try:
        return OverallMetric(str(value).strip().lower())
    except ValueError:
        raise InvalidMetricError(str(value), _allowed(OverallMetric))


def parse_platform_metric(value) -> PlatformMetric:
    if isinstance(value, PlatformMetric):
        return value
    try:
        return PlatformMetric(str(value).strip().lower())
    except ValueError:
        raise InvalidMetricError(str(value), _allowed(PlatformMetric))


def percentile(position: int, total: int) -> int:
    """
    Share of the ranked set at or below a 1-based position, as a whole percent.

    The top of a set of 10 is at the 100th percentile, the bottom at the 10th.
    """
    if total <= 0 or not 1 <= position <= total:
        raise ValueError("position must be between 1 and total")
    return round_half_up((total - position + 1) / total * 100)


class RankingUtility:
    """Ranking CTEs shared by the leaderboard queries."""

    @staticmethod
    def overall_ranking_cte(metric: OverallMetric) -> CTE:
        """
        Rank public users with at least one active account by an overall metric.

        Columns: user_id, username, display_name, joined_at, value,
        composite_score, position, total
        """
        value_column = OVERALL_METRIC_COLUMNS[metric]
        query = (
            select(
                User.id.label('user_id'),
                User.username,
                User.display_name,
                User.created_at.label('joined_at'),
                value_column.label('value'),
                UserScore.composite_score,
                func.row_number().over(
                    order_by=[value_column.desc(), User.created_at.asc(), User.id.asc()]
                ).label('position'),
                func.count().over().label('total'),
            )
            .select_from(User)
            .join(UserScore, UserScore.user_id == User.id)
            .where(
                User.is_public == True,
                User.is_active == True,
                UserScore.account_count > 0
            )
        )
        return query.cte('ranked_users')

    @staticmethod
    def platform_ranking_cte(platform: Platform, metric: PlatformMetric) -> CTE:
        """
        Rank active accounts of one platform whose owner is public.

        Columns: account_id, platform_username, user_id, username,
        display_name, joined_at, value, composite_score, position, total
        """
        value_column = PLATFORM_METRIC_COLUMNS[metric]
        query = (
            select(
                PlatformAccount.id.label('account_id'),
                PlatformAccount.platform_username,
                User.id.label('user_id'),
                User.username,
                User.display_name,
                PlatformAccount.created_at.label('joined_at'),
                value_column.label('value'),
                func.coalesce(UserScore.composite_score, 0).label('composite_score'),
                func.row_number().over(
                    order_by=[value_column.desc(), PlatformAccount.created_at.asc(), PlatformAccount.id.asc()]
                ).label('position'),
                func.count().over().label('total'),
            )
            .select_from(PlatformAccount)
            .join(User, PlatformAccount.user_id == User.id)
            .outerjoin(UserScore, UserScore.user_id == User.id)
            .where(
                PlatformAccount.platform == platform,
                PlatformAccount.is_active == True,
                User.is_public == True,
                User.is_active == True
            )
        )
        return query.cte('ranked_accounts')

    @staticmethod
    def validate_limit(limit: int, max_limit: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= max_limit:
            raise ValueError(f"limit must be between 1 and {max_limit}")
