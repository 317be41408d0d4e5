from itertools import permutations

from tracker.database.models import PlatformAccount
from tracker.services.score_aggregator import compute_aggregate


def _account(problems, rating, max_streak):
    return PlatformAccount(total_problems_solved=problems, contest_rating=rating, max_streak=max_streak)


def test_composite_score_example():
    accounts = [_account(100, 1500, 10), _account(50, 1600, 5), _account(0, 0, 0)]

    aggregate = compute_aggregate(accounts)

    assert aggregate.total_problems == 150
    assert aggregate.avg_rating == 1550
    assert aggregate.max_streak == 10
    assert aggregate.account_count == 3
    assert aggregate.composite_score == 2625


def test_empty_account_set_yields_zeros():
    aggregate = compute_aggregate([])

    assert aggregate.total_problems == 0
    assert aggregate.avg_rating == 0
    assert aggregate.max_streak == 0
    assert aggregate.account_count == 0
    assert aggregate.composite_score == 0


def test_unrated_accounts_do_not_lower_average():
    aggregate = compute_aggregate([_account(1, 0, 0), _account(1, 1201, 0)])
    assert aggregate.avg_rating == 1201
    # 2*10 + 1201*0.5 + 0 + 2*50 = 720.5, rounded half up
    assert aggregate.composite_score == 721


def test_order_independence():
    accounts = [_account(7, 1234.1, 3), _account(11, 1987.7, 9), _account(0, 0, 1), _account(3, 1500.3, 0)]
    expected = compute_aggregate(accounts)

    for order in permutations(accounts):
        assert compute_aggregate(order) == expected


async def test_recompute_writes_through_to_user_score(db, make_user):
    user = await make_user('alice')
    linked = await db.link_account(user.id, 'leetcode', 'alice_lc')

    async with db.transaction() as session:
        account = await session.get(PlatformAccount, linked.id)
        account.total_problems_solved = 20
        account.contest_rating = 1400
        account.max_streak = 2
        await session.flush()
        await db.score_aggregator.recompute(session, user.id)

    score = await db.get_user_score(user.id)
    assert score.composite_score == 20 * 10 + 700 + 40 + 50
    assert score.account_count == 1
    assert score.updated_at == db.clock()
