"""
Stats Merger

Folds freshly fetched platform metrics into an existing account record.

Incoming counters are authoritative absolute values from the platform and
overwrite what is stored; they are never added up. Nested groups (streak,
submission stats) are merged field by field so a partial payload keeps the
stored values of the fields it does not mention.
"""

import math
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

import pytz

from tracker.config import Config
from tracker.data_models.metrics import AccountMetrics
from tracker.database.models import PlatformAccount, SyncStatus
from tracker.services.fetcher import MalformedMetricsError
from tracker.utils.logger import setup_logger
from tracker.utils.time_utils import round_half_up

logger = setup_logger(__name__)

INTEGER_COUNTERS = (
    'total_problems_solved',
    'easy_problems_solved',
    'medium_problems_solved',
    'hard_problems_solved',
    'contests_participated',
    'global_rank',
    'country_rank',
    'badges',
)
RATING_COUNTERS = ('contest_rating', 'max_contest_rating')

# Largest value an INTEGER column can hold
MAX_COUNTER = 2 ** 63 - 1

# Counters that can only grow on a healthy source
MONOTONIC_COUNTERS = (
    'total_problems_solved',
    'easy_problems_solved',
    'medium_problems_solved',
    'hard_problems_solved',
    'contests_participated',
    'badges',
)


def acceptance_rate(accepted: int, total: int) -> int:
    """Percentage of accepted submissions, 0 when there are none."""
    if total <= 0:
        return 0
    return max(0, min(100, round_half_up(accepted / total * 100)))


def _number(key: str, value: Any, integer: bool = True):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedMetricsError(f"Metric '{key}' must be a number, got {type(value).__name__}")
    if isinstance(value, int):
        # Checked before any float conversion, which overflows on huge ints
        if value < 0 or value > MAX_COUNTER:
            raise MalformedMetricsError(f"Metric '{key}' is out of range")
        return value if integer else float(value)
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise MalformedMetricsError(f"Metric '{key}' must be a finite non-negative number, got {value}")
    if integer:
        if value != int(value):
            raise MalformedMetricsError(f"Metric '{key}' must be a whole number, got {value}")
        if value > MAX_COUNTER:
            raise MalformedMetricsError(f"Metric '{key}' is out of range")
        return int(value)
    return value


def _group(key: str, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise MalformedMetricsError(f"Metric group '{key}' must be a mapping")
    return value


def _activity_date(entry: Mapping[str, Any]) -> str:
    value = entry.get('date')
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise MalformedMetricsError(f"Activity entry has an invalid date: {value!r}")
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(pytz.utc).replace(tzinfo=None)
        return value.isoformat()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day).isoformat()
    raise MalformedMetricsError(f"Activity entry has an invalid date: {value!r}")


class StatsMerger:
    """Merges fetched metrics into accounts and records sync outcomes."""

    def __init__(self, max_recent_activity: Optional[int] = None,
                 regression_tolerance: Optional[float] = None):
        self.max_recent_activity = max_recent_activity or Config.MAX_RECENT_ACTIVITY
        self.regression_tolerance = (
            regression_tolerance if regression_tolerance is not None
            else Config.MERGE_REGRESSION_TOLERANCE
        )

    def merge(self, existing: AccountMetrics, incoming: Mapping[str, Any]) -> AccountMetrics:
        """
        Merge incoming raw metrics into a copy of the existing metrics.

        Raises:
            MalformedMetricsError: if the incoming payload has the wrong shape,
                or a counter regressed beyond the configured tolerance
        """
        if not isinstance(incoming, Mapping):
            raise MalformedMetricsError(f"Metrics payload must be a mapping, got {type(incoming).__name__}")

        updates: Dict[str, Any] = {}
        for key in INTEGER_COUNTERS:
            if incoming.get(key) is not None:
                updates[key] = _number(key, incoming[key])
        for key in RATING_COUNTERS:
            if incoming.get(key) is not None:
                updates[key] = _number(key, incoming[key], integer=False)

        streak = replace(existing.streak)
        if incoming.get('streak') is not None:
            group = _group('streak', incoming['streak'])
            if group.get('current') is not None:
                streak.current = _number('streak.current', group['current'])
            if group.get('max') is not None:
                streak.max = _number('streak.max', group['max'])

        submissions = replace(existing.submission_stats)
        # Submission totals may arrive at the top level or inside the group
        for key in ('total_submissions', 'accepted_submissions'):
            if incoming.get(key) is not None:
                setattr(submissions, key, _number(key, incoming[key]))
        if incoming.get('submission_stats') is not None:
            group = _group('submission_stats', incoming['submission_stats'])
            for key in ('total_submissions', 'accepted_submissions'):
                if group.get(key) is not None:
                    setattr(submissions, key, _number(f'submission_stats.{key}', group[key]))
        submissions.acceptance_rate = acceptance_rate(
            submissions.accepted_submissions, submissions.total_submissions
        )

        language_stats = {k: dict(v) for k, v in existing.language_stats.items()}
        if incoming.get('language_stats') is not None:
            language_stats = self._language_stats(incoming['language_stats'])

        recent_activity = [dict(entry) for entry in existing.recent_activity]
        if incoming.get('recent_activity') is not None:
            recent_activity = self._recent_activity(incoming['recent_activity'])

        merged = replace(
            existing,
            streak=streak,
            submission_stats=submissions,
            language_stats=language_stats,
            recent_activity=recent_activity,
            **updates
        )

        if self.regression_tolerance is not None:
            self._check_regressions(existing, merged)

        return merged

    def _language_stats(self, value: Any) -> Dict[str, Dict[str, int]]:
        group = _group('language_stats', value)
        stats = {}
        for language, entry in group.items():
            entry = _group(f'language_stats.{language}', entry)
            stats[str(language)] = {
                'problems_solved': _number(f'{language}.problems_solved', entry.get('problems_solved', 0) or 0),
                'submissions': _number(f'{language}.submissions', entry.get('submissions', 0) or 0),
            }
        return stats

    def _recent_activity(self, value: Any) -> List[Dict[str, Any]]:
        if not isinstance(value, (list, tuple)):
            raise MalformedMetricsError("Metric 'recent_activity' must be a list")
        entries = []
        for entry in value:
            entry = _group('recent_activity[]', entry)
            normalized = dict(entry)
            normalized['date'] = _activity_date(entry)
            entries.append(normalized)
        entries.sort(key=lambda e: e['date'], reverse=True)
        return entries[:self.max_recent_activity]

    def _check_regressions(self, existing: AccountMetrics, merged: AccountMetrics) -> None:
        checks = [(key, getattr(existing, key), getattr(merged, key)) for key in MONOTONIC_COUNTERS]
        checks.append((
            'total_submissions',
            existing.submission_stats.total_submissions,
            merged.submission_stats.total_submissions
        ))
        for key, old, new in checks:
            if old - new > self.regression_tolerance:
                logger.warning(f"Rejecting metrics: {key} dropped from {old} to {new}")
                raise MalformedMetricsError(
                    f"Metric '{key}' regressed from {old} to {new} "
                    f"(tolerance {self.regression_tolerance})"
                )

    def mark_success(self, account: PlatformAccount, merged: AccountMetrics, now: datetime) -> None:
        """Store merged metrics and mark the account as freshly synced."""
        merged.apply_to(account)
        account.sync_status = SyncStatus.SUCCESS
        account.last_error_message = None
        account.last_error_at = None
        account.last_synced_at = now
        account.updated_at = now

    def mark_failure(self, account: PlatformAccount, error: BaseException, now: datetime) -> None:
        """Record a failed sync; metrics and last_synced_at stay as they were."""
        account.sync_status = SyncStatus.ERROR
        account.last_error_message = str(error) or type(error).__name__ or 'Unknown error'
        account.last_error_at = now
        account.updated_at = now


def merge_metrics(existing: AccountMetrics, incoming: Mapping[str, Any],
                  regression_tolerance: Optional[float] = None,
                  max_recent_activity: Optional[int] = None) -> AccountMetrics:
    """Merge with a one-off StatsMerger."""
    return StatsMerger(
        max_recent_activity=max_recent_activity,
        regression_tolerance=regression_tolerance,
    ).merge(existing, incoming)
