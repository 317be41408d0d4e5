import pytest

from tracker.services.leaderboard import LeaderboardService
from tracker.utils.exceptions import InvalidMetricError, UserNotFoundError
from tracker.utils.ranking import OverallMetric, percentile


@pytest.fixture
def leaderboard(db):
    return LeaderboardService(db.session_factory, cache_ttl=60)


async def _ranked_user(db, make_user, set_metrics, name, problems, platform='leetcode', **fields):
    user = await make_user(name)
    account = await db.link_account(user.id, platform, name)
    await set_metrics(account.id, total_problems_solved=problems, **fields)
    return user, account


async def test_positions_and_percentiles(db, make_user, set_metrics, leaderboard):
    users = []
    for index in range(10):
        user, _ = await _ranked_user(db, make_user, set_metrics, f'user{index}', (index + 1) * 10)
        users.append(user)

    best = await leaderboard.get_user_position(users[-1].id)
    worst = await leaderboard.get_user_position(users[0].id)

    assert (best.position, best.total, best.percentile) == (1, 10, 100)
    assert (worst.position, worst.total, worst.percentile) == (10, 10, 10)
    # 100 problems * 10 + one account * 50
    assert best.value == 1050


@pytest.mark.parametrize("position,total,expected", [
    (1, 1, 100),
    (1, 10, 100),
    (10, 10, 10),
    (2, 3, 67),
    (3, 8, 75),
])
def test_percentile(position, total, expected):
    assert percentile(position, total) == expected


@pytest.mark.parametrize("position,total", [(0, 5), (6, 5), (1, 0)])
def test_percentile_out_of_range(position, total):
    with pytest.raises(ValueError):
        percentile(position, total)


async def test_ties_go_to_earlier_user(db, make_user, set_metrics, leaderboard):
    early, _ = await _ranked_user(db, make_user, set_metrics, 'early', 40)
    late, _ = await _ranked_user(db, make_user, set_metrics, 'late', 40)
    leader, _ = await _ranked_user(db, make_user, set_metrics, 'leader', 90)

    page = await leaderboard.get_overall_page(limit=10)

    assert [e.user_id for e in page.entries] == [leader.id, early.id, late.id]
    assert [e.position for e in page.entries] == [1, 2, 3]
    assert page.total == 3


async def test_private_and_unlinked_users_are_not_ranked(db, make_user, set_metrics, leaderboard):
    public, _ = await _ranked_user(db, make_user, set_metrics, 'public', 10)
    hidden, _ = await _ranked_user(db, make_user, set_metrics, 'hidden', 500)
    await db.set_user_visibility(hidden.id, False)
    idle = await make_user('idle')

    page = await leaderboard.get_overall_page(limit=10, viewer_user_id=hidden.id)

    assert [e.user_id for e in page.entries] == [public.id]
    assert page.total == 1
    assert page.viewer_position is None
    assert await leaderboard.get_user_position(hidden.id) is None
    assert await leaderboard.get_user_position(idle.id) is None


async def test_unknown_user_position_raises(leaderboard):
    with pytest.raises(UserNotFoundError):
        await leaderboard.get_user_position(999)
    with pytest.raises(UserNotFoundError):
        await leaderboard.get_account_position(999, 'leetcode')


@pytest.mark.parametrize("limit", [0, 101, -3])
async def test_limit_out_of_range(leaderboard, limit):
    with pytest.raises(ValueError):
        await leaderboard.get_overall_page(limit=limit)
    with pytest.raises(ValueError):
        await leaderboard.get_platform_page('codeforces', limit=limit)


async def test_unknown_metric(leaderboard):
    with pytest.raises(InvalidMetricError):
        await leaderboard.get_overall_page('elo')
    with pytest.raises(InvalidMetricError):
        await leaderboard.get_platform_page('leetcode', 'composite_score')


async def test_metric_names_are_case_insensitive(db, make_user, set_metrics, leaderboard):
    await _ranked_user(db, make_user, set_metrics, 'alice', 10, max_streak=4)

    page = await leaderboard.get_overall_page('MAX_STREAK', limit=5)

    assert page.metric == 'max_streak'
    assert page.entries[0].value == 4


async def test_platform_page(db, make_user, set_metrics, leaderboard):
    alice, _ = await _ranked_user(db, make_user, set_metrics, 'alice', 10, platform='codeforces',
                                  contest_rating=1900)
    bob, _ = await _ranked_user(db, make_user, set_metrics, 'bob', 50, platform='codeforces',
                                contest_rating=1500)
    carol, _ = await _ranked_user(db, make_user, set_metrics, 'carol', 70, platform='leetcode')

    page = await leaderboard.get_platform_page('codeforces', 'rating', limit=5, viewer_user_id=bob.id)

    assert [e.platform_username for e in page.entries] == ['alice', 'bob']
    assert [e.value for e in page.entries] == [1900, 1500]
    assert page.viewer_position == 2
    assert page.platform == 'codeforces'

    position = await leaderboard.get_account_position(alice.id, 'codeforces', 'problems')
    assert (position.position, position.total, position.percentile) == (2, 2, 50)
    assert await leaderboard.get_account_position(carol.id, 'codeforces') is None


async def test_unlinked_account_leaves_platform_board(db, make_user, set_metrics, leaderboard):
    alice, _ = await _ranked_user(db, make_user, set_metrics, 'alice', 10)
    await _ranked_user(db, make_user, set_metrics, 'bob', 5)

    await db.deactivate_account(alice.id, 'leetcode')
    page = await leaderboard.get_platform_page('leetcode', limit=5)

    assert [e.platform_username for e in page.entries] == ['bob']
    assert await leaderboard.get_user_position(alice.id) is None


async def test_top_performers(db, make_user, set_metrics, leaderboard):
    for index in range(5):
        await _ranked_user(db, make_user, set_metrics, f'user{index}', index + 1)

    performers = await leaderboard.get_top_performers()

    assert set(performers) == {metric.value for metric in OverallMetric}
    assert [e.username for e in performers['total_problems']] == ['user4', 'user3', 'user2']


async def test_global_stats_are_cached_until_cleared(db, make_user, set_metrics, leaderboard):
    await _ranked_user(db, make_user, set_metrics, 'alice', 10, max_streak=3)
    await _ranked_user(db, make_user, set_metrics, 'bob', 30, platform='atcoder')

    stats = await leaderboard.get_global_stats()

    assert stats.total_users == 2
    assert stats.total_accounts == 2
    assert stats.total_problems_global == 40
    assert stats.max_composite_score == 350
    assert stats.max_streak == 3
    assert stats.platform_distribution['leetcode'] == 1
    assert stats.platform_distribution['codechef'] == 0

    await _ranked_user(db, make_user, set_metrics, 'carol', 5)
    assert (await leaderboard.get_global_stats()).total_users == 2

    await leaderboard.clear_cache()
    assert (await leaderboard.get_global_stats()).total_users == 3


async def test_pages_are_cached_until_cleared(db, make_user, set_metrics, leaderboard):
    await _ranked_user(db, make_user, set_metrics, 'alice', 10)
    first = await leaderboard.get_overall_page(limit=5)

    await _ranked_user(db, make_user, set_metrics, 'bob', 99)
    assert (await leaderboard.get_overall_page(limit=5)).entries == first.entries

    await leaderboard.clear_cache()
    refreshed = await leaderboard.get_overall_page(limit=5)
    assert refreshed.entries[0].username == 'bob'
    assert refreshed.total == 2
