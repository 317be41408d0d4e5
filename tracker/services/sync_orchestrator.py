"""
Sync Orchestrator

Periodically refreshes stale platform accounts in concurrent batches.

For each account the fetch runs outside any storage transaction; the merge,
score recomputation and snapshots then run in one short transaction. A failed
account is recorded on that account and never affects the rest of the cycle.
Only storage unavailability aborts a cycle.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from tracker.config import Config
from tracker.data_models.metrics import AccountMetrics
from tracker.data_models.stats import AccountSyncResult, SyncCycleSummary
from tracker.database.models import PlatformAccount
from tracker.services.fetcher import FetchError, MalformedMetricsError
from tracker.services.history_recorder import HistoryRecorder
from tracker.services.lease import InMemoryLeaseStore
from tracker.services.stats_merger import StatsMerger
from tracker.utils.exceptions import (
    AccountNotFoundError, StorageUnavailableError, SyncFailedError, UserNotFoundError
)

logger = logging.getLogger(__name__)

SUCCESS = 'success'
ERROR = 'error'
SKIPPED = 'skipped'


class SyncOrchestrator:
    """Runs sync cycles and on-demand syncs of platform accounts."""

    def __init__(self, db, fetcher, history: Optional[HistoryRecorder] = None,
                 merger: Optional[StatsMerger] = None, lease_store=None, config_service=None,
                 clock: Optional[Callable[[], datetime]] = None,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None,
                 batch_size: Optional[int] = None, batch_delay_ms: Optional[int] = None,
                 staleness_hours: Optional[float] = None, lease_ttl: Optional[int] = None):
        """
        Args:
            db: Database instance
            fetcher: Object with `async fetch(platform, username)`, usually a
                PlatformFetcherRegistry
            config_service: Optional ConfigurationService for runtime overrides
            clock: Returns the current naive UTC time
            sleep: Awaitable sleep used between batches
            batch_size, batch_delay_ms, staleness_hours: Explicit overrides that
                take precedence over the configuration service and Config
        """
        self.db = db
        self.fetcher = fetcher
        self.clock = clock or db.clock
        self.history = history or HistoryRecorder(db, clock=self.clock)
        self.merger = merger or StatsMerger()
        self.lease_store = lease_store or InMemoryLeaseStore()
        self.config_service = config_service
        self.sleep = sleep or asyncio.sleep
        self._batch_size = batch_size
        self._batch_delay_ms = batch_delay_ms
        self._staleness_hours = staleness_hours
        self.lease_ttl = lease_ttl or Config.SYNC_LEASE_TTL_SECONDS

    def _setting(self, override, key: str, default):
        if override is not None:
            return override
        if self.config_service is not None:
            return self.config_service.get(key, default)
        return default

    @property
    def batch_size(self) -> int:
        return int(self._setting(self._batch_size, 'sync.batch_size', Config.SYNC_BATCH_SIZE))

    @property
    def batch_delay_ms(self) -> int:
        return int(self._setting(self._batch_delay_ms, 'sync.batch_delay_ms', Config.SYNC_BATCH_DELAY_MS))

    @property
    def staleness_hours(self) -> float:
        return float(self._setting(self._staleness_hours, 'sync.staleness_hours', Config.SYNC_STALENESS_HOURS))

    async def run_sync_cycle(self) -> SyncCycleSummary:
        """
        Sync every account that is due, batch by batch.

        Within a batch, different users are synced concurrently while the
        accounts of one user are synced one after another, so a user's score
        and overall snapshot are never written by two transactions at once.

        Returns:
            Counters of the accounts processed in this cycle

        Raises:
            StorageUnavailableError: if the database cannot be reached
        """
        batch_size = self.batch_size
        if batch_size < 1:
            raise ValueError("batch size must be at least 1")
        delay = max(0, self.batch_delay_ms) / 1000

        cutoff = self.clock() - timedelta(hours=self.staleness_hours)
        accounts = await self.db.list_stale_accounts(cutoff)

        summary = SyncCycleSummary(total=len(accounts))
        if not accounts:
            logger.info("Sync cycle: no accounts due")
            return summary

        batches = [accounts[i:i + batch_size] for i in range(0, len(accounts), batch_size)]
        logger.info(f"Sync cycle: {len(accounts)} accounts in {len(batches)} batches")

        for index, batch in enumerate(batches):
            if index > 0:
                await self.sleep(delay)

            groups: Dict[int, List[PlatformAccount]] = {}
            for account in batch:
                groups.setdefault(account.user_id, []).append(account)

            outcomes = await asyncio.gather(
                *(self._sync_group(group) for group in groups.values()),
                return_exceptions=True
            )

            for group, outcome in zip(groups.values(), outcomes):
                if isinstance(outcome, StorageUnavailableError):
                    logger.error(f"Sync cycle aborted after {summary.batches} batches: {outcome}")
                    raise outcome
                if isinstance(outcome, BaseException):
                    raise outcome
                for result in outcome:
                    if result.status == SUCCESS:
                        summary.success += 1
                    elif result.status == SKIPPED:
                        summary.skipped += 1
                    else:
                        summary.error += 1

            summary.batches += 1

        logger.info(
            f"Sync cycle complete: total={summary.total}, success={summary.success}, "
            f"error={summary.error}, skipped={summary.skipped}"
        )
        return summary

    async def _sync_group(self, accounts: List[PlatformAccount]) -> List[AccountSyncResult]:
        """Sync the accounts of one user sequentially."""
        results = []
        for account in accounts:
            try:
                results.append(await self._sync_one(account))
            except StorageUnavailableError:
                raise
            except Exception as e:
                logger.error(f"Unexpected error syncing account {account.id}", exc_info=True)
                results.append(AccountSyncResult(platform=account.platform.value, status=ERROR, error=str(e)))
        return results

    async def _sync_one(self, account: PlatformAccount) -> AccountSyncResult:
        platform = account.platform.value
        lease_key = f"sync:account:{account.id}"

        token = await self.lease_store.acquire(lease_key, self.lease_ttl)
        if token is None:
            logger.debug(f"Account {account.id} is being synced elsewhere, skipping")
            return AccountSyncResult(platform=platform, status=SKIPPED)

        try:
            try:
                raw = await self.fetcher.fetch(account.platform, account.platform_username)
            except FetchError as e:
                await self._record_failure(account.id, e)
                return AccountSyncResult(platform=platform, status=ERROR, error=str(e))
            except StorageUnavailableError:
                raise
            except Exception as e:
                logger.error(f"Fetcher crashed for account {account.id}", exc_info=True)
                await self._record_failure(account.id, e)
                return AccountSyncResult(platform=platform, status=ERROR, error=str(e))

            try:
                persisted = await self._persist(account.id, raw)
            except StorageUnavailableError:
                raise
            except MalformedMetricsError as e:
                await self._record_failure(account.id, e)
                return AccountSyncResult(platform=platform, status=ERROR, error=str(e))
            except Exception as e:
                logger.error(f"Failed to store metrics for account {account.id}", exc_info=True)
                await self._record_failure(account.id, e)
                return AccountSyncResult(platform=platform, status=ERROR, error=str(e))

            if not persisted:
                return AccountSyncResult(platform=platform, status=SKIPPED)
            return AccountSyncResult(platform=platform, status=SUCCESS)
        finally:
            await self.lease_store.release(lease_key, token)

    async def _persist(self, account_id: int, raw) -> bool:
        """Merge raw metrics and update the score and snapshots in one transaction."""
        async with self.db.transaction() as session:
            account = await session.get(PlatformAccount, account_id)
            if account is None or not account.is_active:
                # Unlinked while the fetch was in flight
                return False

            now = self.clock()
            merged = self.merger.merge(AccountMetrics.from_account(account), raw)
            self.merger.mark_success(account, merged, now)
            await session.flush()

            aggregate = await self.db.score_aggregator.recompute(session, account.user_id)
            await self.history.record_account_snapshot(session, account, now)
            await self.history.record_overall_snapshot(session, account.user_id, aggregate, now)

        logger.debug(f"Synced account {account_id}")
        return True

    async def _record_failure(self, account_id: int, error: BaseException):
        logger.warning(f"Sync failed for account {account_id} ({getattr(error, 'kind', type(error).__name__)}): {error}")
        async with self.db.transaction() as session:
            account = await session.get(PlatformAccount, account_id)
            if account is not None:
                self.merger.mark_failure(account, error, self.clock())

    async def sync_account(self, user_id: int, platform) -> PlatformAccount:
        """
        Sync one account immediately.

        Raises:
            AccountNotFoundError: if the user has no active account on the platform
            SyncFailedError: if the fetch or merge failed (the failure is recorded)
        """
        account = await self.db.get_active_account(user_id, platform)
        if account is None:
            raise AccountNotFoundError(user_id, getattr(platform, 'value', platform))

        result = await self._sync_one(account)
        if result.status == ERROR:
            raise SyncFailedError(result.platform, result.error or 'unknown error')
        if result.status == SKIPPED:
            raise SyncFailedError(result.platform, 'a sync is already in progress')

        return await self.db.get_account(account.id)

    async def sync_user(self, user_id: int) -> List[AccountSyncResult]:
        """Sync all active accounts of a user one after another."""
        if await self.db.get_user(user_id) is None:
            raise UserNotFoundError(user_id)

        accounts = await self.db.list_user_accounts(user_id)
        if not accounts:
            raise AccountNotFoundError(user_id)

        results = []
        for account in accounts:
            results.append(await self._sync_one(account))
        return results

    async def request_resync(self, user_id: int, platform) -> PlatformAccount:
        """Queue an account for the next sync cycle."""
        account = await self.db.request_resync(user_id, platform)
        logger.info(f"Resync requested for {account.platform.value} account of user {user_id}")
        return account
