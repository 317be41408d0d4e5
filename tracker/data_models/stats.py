"""
Stats data models for sync results, growth analytics and profile views.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class AggregateScore:
    """Result of reducing a user's active accounts to one score."""
    total_problems: int
    avg_rating: float
    max_streak: int
    account_count: int
    composite_score: int


@dataclass
class SyncCycleSummary:
    """Counters for one sync cycle."""
    total: int = 0
    success: int = 0
    error: int = 0
    skipped: int = 0
    batches: int = 0


@dataclass(frozen=True)
class AccountSyncResult:
    """Outcome of syncing one account on demand."""
    platform: str
    status: str
    error: Optional[str] = None


@dataclass(frozen=True)
class GrowthWindow:
    """Change of the tracked metrics over one window."""
    days: int
    problems: int
    rating: float
    contests: int
    has_baseline: bool


@dataclass(frozen=True)
class GrowthReport:
    platform: str
    weekly: GrowthWindow
    monthly: GrowthWindow


@dataclass(frozen=True)
class ProgressPoint:
    """One point of a problems/rating time series."""
    date: date
    problems: int
    rating: float
    easy: int
    medium: int
    hard: int


@dataclass(frozen=True)
class WeeklySummary:
    year: int
    week: int
    avg_problems: float
    max_problems: int
    avg_rating: float
    max_rating: float
    first_date: date


@dataclass(frozen=True)
class PlatformBreakdown:
    problems: int
    rating: float
    contests: int
    rank: int
    platform_score: int
    last_synced_at: Optional[datetime]
    sync_status: str
    last_error: Optional[Dict[str, Any]] = None


@dataclass
class AggregatedStats:
    """Profile view of a user's stats across platforms."""
    total_problems_solved: int = 0
    easy_problems_solved: int = 0
    medium_problems_solved: int = 0
    hard_problems_solved: int = 0
    total_contests_participated: int = 0
    average_contest_rating: int = 0
    max_contest_rating: float = 0
    total_platform_score: int = 0
    current_streak: int = 0
    max_streak: int = 0
    total_submissions: int = 0
    accepted_submissions: int = 0
    acceptance_rate: int = 0
    composite_score: int = 0
    platform_count: int = 0
    last_synced_at: Optional[datetime] = None
    platform_breakdown: Dict[str, PlatformBreakdown] = field(default_factory=dict)
    language_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    recent_activity: List[Dict[str, Any]] = field(default_factory=list)
