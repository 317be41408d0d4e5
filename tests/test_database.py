from datetime import timedelta

import pytest

from tracker.database.models import Platform, PlatformAccount, SyncStatus
from tracker.utils.exceptions import (
    AccountNotFoundError, DuplicateAccountError, InvalidPlatformError, UserNotFoundError
)


async def test_link_creates_account_and_score_row(db, make_user):
    user = await make_user('alice')

    account = await db.link_account(user.id, 'LeetCode', '  alice_lc ')

    assert account.platform == Platform.LEETCODE
    assert account.platform_username == 'alice_lc'
    assert account.sync_status == SyncStatus.NEVER
    assert account.last_synced_at is None

    score = await db.get_user_score(user.id)
    assert score is not None
    assert score.account_count == 1
    assert score.composite_score == 50


async def test_link_rejects_second_active_account_on_platform(db, make_user):
    user = await make_user('alice')
    await db.link_account(user.id, 'codeforces', 'alice')

    with pytest.raises(DuplicateAccountError):
        await db.link_account(user.id, 'codeforces', 'alice2')


async def test_link_unknown_user_and_platform(db, make_user):
    with pytest.raises(UserNotFoundError):
        await db.link_account(999, 'leetcode', 'ghost')

    user = await make_user('alice')
    with pytest.raises(InvalidPlatformError):
        await db.link_account(user.id, 'topcoder', 'alice')


async def test_deactivate_is_soft_and_relink_reactivates(db, make_user):
    user = await make_user('alice')
    first = await db.link_account(user.id, 'atcoder', 'alice')

    await db.deactivate_account(user.id, 'atcoder')

    assert await db.get_active_account(user.id, 'atcoder') is None
    inactive = await db.get_account(first.id)
    assert inactive is not None
    assert inactive.is_active is False
    assert (await db.get_user_score(user.id)).account_count == 0

    again = await db.link_account(user.id, 'atcoder', 'alice')
    assert again.id == first.id
    assert again.is_active is True
    assert (await db.get_user_score(user.id)).account_count == 1


async def test_relink_with_new_username_resets_metrics(db, make_user):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'codechef', 'old_name')
    async with db.transaction() as session:
        stored = await session.get(PlatformAccount, account.id)
        stored.total_problems_solved = 33
        stored.sync_status = SyncStatus.SUCCESS
    await db.deactivate_account(user.id, 'codechef')

    relinked = await db.link_account(user.id, 'codechef', 'new_name')

    assert relinked.platform_username == 'new_name'
    assert relinked.total_problems_solved == 0
    assert relinked.sync_status == SyncStatus.NEVER


async def test_deactivate_missing_account(db, make_user):
    user = await make_user('alice')
    with pytest.raises(AccountNotFoundError):
        await db.deactivate_account(user.id, 'leetcode')


async def test_list_stale_accounts(db, make_user, clock):
    user = await make_user('alice')
    never = await db.link_account(user.id, 'leetcode', 'a')
    fresh = await db.link_account(user.id, 'codeforces', 'b')
    old = await db.link_account(user.id, 'atcoder', 'c')
    unlinked = await db.link_account(user.id, 'hackerrank', 'd')

    async with db.transaction() as session:
        (await session.get(PlatformAccount, fresh.id)).last_synced_at = clock() - timedelta(hours=1)
        (await session.get(PlatformAccount, fresh.id)).sync_status = SyncStatus.SUCCESS
        (await session.get(PlatformAccount, old.id)).last_synced_at = clock() - timedelta(hours=7)
        (await session.get(PlatformAccount, old.id)).sync_status = SyncStatus.SUCCESS
    await db.deactivate_account(user.id, 'hackerrank')

    stale = await db.list_stale_accounts(clock() - timedelta(hours=6))

    assert [account.id for account in stale] == [never.id, old.id]
    assert unlinked.id not in [account.id for account in stale]


async def test_request_resync_makes_account_due(db, make_user, clock):
    user = await make_user('alice')
    account = await db.link_account(user.id, 'leetcode', 'a')
    async with db.transaction() as session:
        stored = await session.get(PlatformAccount, account.id)
        stored.last_synced_at = clock()
        stored.sync_status = SyncStatus.SUCCESS

    synced_at = clock()
    assert await db.list_stale_accounts(clock() - timedelta(hours=6)) == []

    clock.advance(minutes=5)
    await db.request_resync(user.id, 'leetcode')

    stale = await db.list_stale_accounts(clock() - timedelta(hours=6))
    assert [a.id for a in stale] == [account.id]
    assert stale[0].sync_status == SyncStatus.PENDING
    # The last successful sync time is kept for display
    assert stale[0].last_synced_at == synced_at
    assert stale[0].updated_at == clock()


async def test_list_platform_accounts_respects_visibility(db, make_user):
    public = await make_user('public_user')
    private = await make_user('private_user', is_public=False)
    await db.link_account(public.id, 'leetcode', 'pub')
    await db.link_account(private.id, 'leetcode', 'priv')

    public_accounts = await db.list_platform_accounts('leetcode')
    all_accounts = await db.list_platform_accounts('leetcode', public_only=False)

    assert [a.platform_username for a in public_accounts] == ['pub']
    assert len(all_accounts) == 2


async def test_set_user_visibility(db, make_user):
    user = await make_user('alice')
    updated = await db.set_user_visibility(user.id, False)
    assert updated.is_public is False

    with pytest.raises(UserNotFoundError):
        await db.set_user_visibility(12345, True)
