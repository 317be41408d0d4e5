"""
Metric data models for platform accounts.

AccountMetrics is the in-memory form of the metrics block stored on a
PlatformAccount row; the stats merger works on these objects only.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class StreakStats:
    current: int = 0
    max: int = 0


@dataclass
class SubmissionStats:
    total_submissions: int = 0
    accepted_submissions: int = 0
    acceptance_rate: int = 0


@dataclass
class AccountMetrics:
    """Metrics block of one platform account."""
    total_problems_solved: int = 0
    easy_problems_solved: int = 0
    medium_problems_solved: int = 0
    hard_problems_solved: int = 0
    contest_rating: float = 0
    max_contest_rating: float = 0
    contests_participated: int = 0
    global_rank: int = 0
    country_rank: int = 0
    badges: int = 0
    streak: StreakStats = field(default_factory=StreakStats)
    submission_stats: SubmissionStats = field(default_factory=SubmissionStats)
    language_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    recent_activity: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_account(cls, account) -> "AccountMetrics":
        """Read the metrics block off a PlatformAccount row."""
        return cls(
            total_problems_solved=account.total_problems_solved or 0,
            easy_problems_solved=account.easy_problems_solved or 0,
            medium_problems_solved=account.medium_problems_solved or 0,
            hard_problems_solved=account.hard_problems_solved or 0,
            contest_rating=account.contest_rating or 0,
            max_contest_rating=account.max_contest_rating or 0,
            contests_participated=account.contests_participated or 0,
            global_rank=account.global_rank or 0,
            country_rank=account.country_rank or 0,
            badges=account.badges or 0,
            streak=StreakStats(
                current=account.current_streak or 0,
                max=account.max_streak or 0,
            ),
            submission_stats=SubmissionStats(
                total_submissions=account.total_submissions or 0,
                accepted_submissions=account.accepted_submissions or 0,
                acceptance_rate=account.acceptance_rate or 0,
            ),
            language_stats={k: dict(v) for k, v in (account.language_stats or {}).items()},
            recent_activity=[dict(entry) for entry in (account.recent_activity or [])],
        )

    def apply_to(self, account) -> None:
        """Write the metrics block back onto a PlatformAccount row."""
        account.total_problems_solved = self.total_problems_solved
        account.easy_problems_solved = self.easy_problems_solved
        account.medium_problems_solved = self.medium_problems_solved
        account.hard_problems_solved = self.hard_problems_solved
        account.contest_rating = self.contest_rating
        account.max_contest_rating = self.max_contest_rating
        account.contests_participated = self.contests_participated
        account.global_rank = self.global_rank
        account.country_rank = self.country_rank
        account.badges = self.badges
        account.current_streak = self.streak.current
        account.max_streak = self.streak.max
        account.total_submissions = self.submission_stats.total_submissions
        account.accepted_submissions = self.submission_stats.accepted_submissions
        account.acceptance_rate = self.submission_stats.acceptance_rate
        # New containers so the JSON columns are flagged dirty
        account.language_stats = {k: dict(v) for k, v in self.language_stats.items()}
        account.recent_activity = [dict(entry) for entry in self.recent_activity]
