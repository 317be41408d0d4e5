"""
Leaderboard data models.

Provides immutable data transfer objects for leaderboard queries.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single leaderboard row."""
    position: int
    user_id: int
    username: str
    display_name: str
    value: float            # Value of the selected metric
    composite_score: int
    joined_at: datetime
    account_id: Optional[int] = None          # Per-platform boards only
    platform_username: Optional[str] = None   # Per-platform boards only


@dataclass(frozen=True)
class LeaderboardPage:
    """Top-N leaderboard data."""
    entries: List[LeaderboardEntry]
    total: int
    platform: str
    metric: str
    limit: int
    viewer_position: Optional[int] = None


@dataclass(frozen=True)
class RankPosition:
    """A user's or account's position within a full ranked set."""
    position: int
    total: int
    percentile: int
    platform: str
    metric: str
    value: float


@dataclass(frozen=True)
class GlobalStats:
    """Site-wide leaderboard statistics."""
    total_users: int
    total_accounts: int
    platform_distribution: Dict[str, int]
    max_composite_score: int
    max_problems: int
    max_avg_rating: float
    max_streak: int
    total_problems_global: int
