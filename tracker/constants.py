"""
Tracker-wide constants.

This module contains the weights and limits used by the scoring, history and
ranking code so the numbers live in one place.
"""

class ScoreConstants:
    """Weights of the composite score formula."""

    PROBLEM_WEIGHT = 10
    RATING_WEIGHT = 0.5
    STREAK_WEIGHT = 20
    ACCOUNT_WEIGHT = 50

    # Per-platform score shown on profiles
    PLATFORM_PROBLEM_WEIGHT = 0.7
    PLATFORM_RATING_WEIGHT = 0.3
    PLATFORM_BADGE_WEIGHT = 10

class HistoryConstants:
    """Constants for snapshots and growth windows."""

    OVERALL_PLATFORM = "overall"

    WEEKLY_WINDOW_DAYS = 7
    MONTHLY_WINDOW_DAYS = 30

    DEFAULT_PROGRESS_DAYS = 30
    DEFAULT_SUMMARY_WEEKS = 12

class LeaderboardConstants:
    """Constants for leaderboard queries."""

    TOP_PERFORMERS_LIMIT = 3

    # Cache sizing
    CACHE_MAX_SIZE = 500

class StatsConstants:
    """Constants for aggregated stats views."""

    RECENT_ACTIVITY_LIMIT = 20

class UIConstants:
    """Constants for Discord UI elements."""

    DEFAULT_EMBED_COLOR = 0x3498db  # Blue
    GOLD_RANK_COLOR = 0xffd700     # Gold for #1 ranked users
    SUCCESS_COLOR = 0x2ecc71       # Green for success

    TROPHY_EMOJI = "🏆"
    CHART_EMOJI = "📈"
