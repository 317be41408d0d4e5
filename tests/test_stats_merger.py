from datetime import datetime

import pytest

from tracker.data_models.metrics import AccountMetrics, StreakStats, SubmissionStats
from tracker.database.models import PlatformAccount, SyncStatus
from tracker.services.fetcher import MalformedMetricsError, RateLimitedError
from tracker.services.stats_merger import StatsMerger, acceptance_rate, merge_metrics


@pytest.fixture
def merger():
    return StatsMerger(max_recent_activity=3, regression_tolerance=None)


@pytest.fixture
def existing():
    return AccountMetrics(
        total_problems_solved=100,
        easy_problems_solved=60,
        contest_rating=1500,
        streak=StreakStats(current=4, max=10),
        submission_stats=SubmissionStats(total_submissions=200, accepted_submissions=100, acceptance_rate=50),
        language_stats={'python': {'problems_solved': 100, 'submissions': 200}},
    )


def test_counters_are_overwritten_not_added(merger, existing):
    merged = merger.merge(existing, {'total_problems_solved': 120, 'contest_rating': 1550.5})

    assert merged.total_problems_solved == 120
    assert merged.contest_rating == 1550.5
    # Absent fields keep their stored values
    assert merged.easy_problems_solved == 60
    assert existing.total_problems_solved == 100


def test_nested_groups_merge_field_by_field(merger, existing):
    merged = merger.merge(existing, {'streak': {'current': 7}})

    assert merged.streak.current == 7
    assert merged.streak.max == 10


def test_submission_stats_recompute_acceptance_rate(merger, existing):
    merged = merger.merge(existing, {'submission_stats': {'accepted_submissions': 150}})

    assert merged.submission_stats.total_submissions == 200
    assert merged.submission_stats.accepted_submissions == 150
    assert merged.submission_stats.acceptance_rate == 75


def test_top_level_submission_totals_are_accepted(merger, existing):
    merged = merger.merge(existing, {'total_submissions': 10, 'accepted_submissions': 3})

    assert merged.submission_stats.total_submissions == 10
    assert merged.submission_stats.acceptance_rate == 30


def test_language_stats_overwrite(merger, existing):
    merged = merger.merge(existing, {'language_stats': {'cpp': {'problems_solved': 5, 'submissions': 9}}})

    assert merged.language_stats == {'cpp': {'problems_solved': 5, 'submissions': 9}}


def test_recent_activity_sorted_newest_first_and_bounded(merger, existing):
    activity = [
        {'date': '2024-03-01T10:00:00', 'problem': 'a'},
        {'date': '2024-03-04T10:00:00', 'problem': 'd'},
        {'date': datetime(2024, 3, 2, 10, 0), 'problem': 'b'},
        {'date': '2024-03-03T10:00:00Z', 'problem': 'c'},
    ]
    merged = merger.merge(existing, {'recent_activity': activity})

    assert [entry['problem'] for entry in merged.recent_activity] == ['d', 'c', 'b']


@pytest.mark.parametrize("accepted,total,expected", [
    (0, 0, 0),
    (5, 0, 0),
    (0, 10, 0),
    (50, 100, 50),
    (1, 3, 33),
    (2, 3, 67),
    (1, 8, 13),
    (10, 10, 100),
    (15, 10, 100),
])
def test_acceptance_rate(accepted, total, expected):
    assert acceptance_rate(accepted, total) == expected


@pytest.mark.parametrize("payload", [
    ['not', 'a', 'mapping'],
    {'total_problems_solved': -1},
    {'total_problems_solved': 'many'},
    {'total_problems_solved': True},
    {'total_problems_solved': 10.5},
    {'contest_rating': float('nan')},
    {'streak': 5},
    {'streak': {'max': -3}},
    {'submission_stats': [1, 2]},
    {'language_stats': {'python': 12}},
    {'recent_activity': {'date': '2024-01-01'}},
    {'recent_activity': [{'date': 'yesterday'}]},
])
def test_malformed_payloads_are_rejected(merger, existing, payload):
    with pytest.raises(MalformedMetricsError):
        merger.merge(existing, payload)


@pytest.mark.parametrize("payload", [
    {'total_problems_solved': 10 ** 400},
    {'total_problems_solved': 2 ** 63},
    {'total_problems_solved': 1e300},
    {'contest_rating': 10 ** 400},
    {'submission_stats': {'total_submissions': 2 ** 70}},
])
def test_out_of_range_numbers_are_rejected(merger, existing, payload):
    with pytest.raises(MalformedMetricsError, match="out of range"):
        merger.merge(existing, payload)


def test_largest_counter_is_accepted(merger, existing):
    merged = merger.merge(existing, {'total_problems_solved': 2 ** 63 - 1})
    assert merged.total_problems_solved == 2 ** 63 - 1


def test_none_values_are_treated_as_absent(merger, existing):
    merged = merger.merge(existing, {'total_problems_solved': None, 'streak': None})

    assert merged.total_problems_solved == 100
    assert merged.streak.max == 10


def test_regressions_pass_without_tolerance(existing):
    merged = merge_metrics(existing, {'total_problems_solved': 10}, regression_tolerance=None)
    assert merged.total_problems_solved == 10


def test_regression_beyond_tolerance_is_rejected(existing):
    merger = StatsMerger(regression_tolerance=5)

    assert merger.merge(existing, {'total_problems_solved': 96}).total_problems_solved == 96
    with pytest.raises(MalformedMetricsError):
        merger.merge(existing, {'total_problems_solved': 90})


def test_mark_success_and_failure():
    merger = StatsMerger()
    account = PlatformAccount(platform_username='alice')
    synced_at = datetime(2024, 3, 1, 8, 0)

    merger.mark_success(account, AccountMetrics(total_problems_solved=42), synced_at)
    assert account.sync_status == SyncStatus.SUCCESS
    assert account.last_synced_at == synced_at
    assert account.total_problems_solved == 42
    assert account.last_error is None
    assert account.updated_at == synced_at

    failed_at = datetime(2024, 3, 2, 8, 0)
    merger.mark_failure(account, RateLimitedError("slow down"), failed_at)
    assert account.sync_status == SyncStatus.ERROR
    assert account.last_error == {'message': 'slow down', 'timestamp': failed_at}
    assert account.updated_at == failed_at
    assert account.last_synced_at == synced_at
    assert account.total_problems_solved == 42
