import asyncio
from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, or_
from contextlib import asynccontextmanager

from tracker.config import Config
from tracker.data_models.metrics import AccountMetrics
from tracker.database.models import (
    Base, User, PlatformAccount, UserScore, Platform, SyncStatus
)
from tracker.services.score_aggregator import ScoreAggregatorService
from tracker.utils.exceptions import (
    STORAGE_ERRORS, AccountNotFoundError, DuplicateAccountError, StorageUnavailableError,
    UserNotFoundError
)
from tracker.utils.logger import setup_logger
from tracker.utils.time_utils import utcnow

class Database:
    def __init__(self, database_url: Optional[str] = None, clock: Optional[Callable[[], datetime]] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.clock = clock or utcnow
        self.engine = None
        self.session_factory = None
        self.score_aggregator = ScoreAggregatorService(clock=self.clock)
        # SQLite allows a single writer; write transactions are serialized there
        self._write_lock = asyncio.Lock()
        self._serialize_writes = False

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        self._serialize_writes = self.engine.dialect.name == 'sqlite'

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except STORAGE_ERRORS as e:
            raise StorageUnavailableError("initialize", str(e)) from e

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a read session"""
        async with self.session_factory() as session:
            try:
                yield session
            except STORAGE_ERRORS as e:
                await self._rollback_quietly(session)
                raise StorageUnavailableError("read", str(e)) from e
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. Do not nest transactions: on
        SQLite the write lock is not re-entrant.
        """
        if self._serialize_writes:
            async with self._write_lock:
                async with self._transaction_scope() as session:
                    yield session
        else:
            async with self._transaction_scope() as session:
                yield session

    @asynccontextmanager
    async def _transaction_scope(self):
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except STORAGE_ERRORS as e:
                await self._rollback_quietly(session)
                raise StorageUnavailableError("transaction", str(e)) from e
            except Exception:
                await session.rollback()
                raise

    async def _rollback_quietly(self, session: AsyncSession):
        # The connection may already be gone; the original error is what matters
        try:
            await session.rollback()
        except STORAGE_ERRORS as e:
            self.logger.warning(f"Rollback failed on unavailable storage: {e}")

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # User operations
    async def create_user(self, username: str, display_name: str = None,
                          discord_id: int = None, is_public: bool = True) -> User:
        """Create a new user"""
        async with self.transaction() as session:
            user = User(
                username=username,
                display_name=display_name or username,
                discord_id=discord_id,
                is_public=is_public,
                created_at=self.clock()
            )
            session.add(user)
            await session.flush()
            return user

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self.get_session() as session:
            return await session.get(User, user_id)

    async def get_user_by_discord_id(self, discord_id: int) -> Optional[User]:
        """Get a user by their Discord ID"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User).where(User.discord_id == discord_id)
            )
            return result.scalar_one_or_none()

    async def set_user_visibility(self, user_id: int, is_public: bool) -> User:
        """Opt a user in or out of public leaderboards"""
        async with self.transaction() as session:
            user = await session.get(User, user_id)
            if not user:
                raise UserNotFoundError(user_id)
            user.is_public = is_public
            return user

    # Platform account operations
    async def link_account(self, user_id: int, platform, platform_username: str) -> PlatformAccount:
        """
        Link a platform account to a user.

        A previously deactivated account on the same platform is reactivated
        instead of creating a second row. The user's score row is created
        with their first account.
        """
        platform = Platform.parse(platform)
        platform_username = platform_username.strip()

        async with self.transaction() as session:
            user = await session.get(User, user_id)
            if not user:
                raise UserNotFoundError(user_id)

            result = await session.execute(
                select(PlatformAccount).where(
                    PlatformAccount.user_id == user_id,
                    PlatformAccount.platform == platform
                )
            )
            account = result.scalar_one_or_none()

            if account and account.is_active:
                raise DuplicateAccountError(user_id, platform.value)

            if account:
                if account.platform_username != platform_username:
                    # Different identity: old metrics no longer apply
                    AccountMetrics().apply_to(account)
                    account.platform_username = platform_username
                    account.last_synced_at = None
                    account.sync_status = SyncStatus.NEVER
                    account.last_error_message = None
                    account.last_error_at = None
                account.is_active = True
                account.updated_at = self.clock()
                self.logger.info(f"Reactivated {platform.value} account for user {user_id}")
            else:
                account = PlatformAccount(
                    user_id=user_id,
                    platform=platform,
                    platform_username=platform_username,
                    sync_status=SyncStatus.NEVER,
                    language_stats={},
                    recent_activity=[],
                    created_at=self.clock(),
                    updated_at=self.clock()
                )
                session.add(account)
                self.logger.info(f"Linked {platform.value} account '{platform_username}' to user {user_id}")

            await session.flush()
            await self.score_aggregator.recompute(session, user_id)
            return account

    async def deactivate_account(self, user_id: int, platform) -> PlatformAccount:
        """Soft-delete a user's account on a platform, keeping its history"""
        platform = Platform.parse(platform)
        async with self.transaction() as session:
            account = await self._get_active_account(session, user_id, platform)
            if not account:
                raise AccountNotFoundError(user_id, platform.value)
            account.is_active = False
            account.updated_at = self.clock()
            await session.flush()
            await self.score_aggregator.recompute(session, user_id)
            self.logger.info(f"Deactivated {platform.value} account for user {user_id}")
            return account

    async def request_resync(self, user_id: int, platform) -> PlatformAccount:
        """Mark an account pending so the next sync cycle picks it up"""
        platform = Platform.parse(platform)
        async with self.transaction() as session:
            account = await self._get_active_account(session, user_id, platform)
            if not account:
                raise AccountNotFoundError(user_id, platform.value)
            account.sync_status = SyncStatus.PENDING
            account.updated_at = self.clock()
            return account

    async def get_account(self, account_id: int) -> Optional[PlatformAccount]:
        async with self.get_session() as session:
            return await session.get(PlatformAccount, account_id)

    async def get_active_account(self, user_id: int, platform) -> Optional[PlatformAccount]:
        platform = Platform.parse(platform)
        async with self.get_session() as session:
            return await self._get_active_account(session, user_id, platform)

    async def _get_active_account(self, session: AsyncSession, user_id: int,
                                  platform: Platform) -> Optional[PlatformAccount]:
        result = await session.execute(
            select(PlatformAccount).where(
                PlatformAccount.user_id == user_id,
                PlatformAccount.platform == platform,
                PlatformAccount.is_active == True
            )
        )
        return result.scalar_one_or_none()

    async def list_user_accounts(self, user_id: int, active_only: bool = True) -> List[PlatformAccount]:
        """List a user's platform accounts"""
        async with self.get_session() as session:
            query = select(PlatformAccount).where(PlatformAccount.user_id == user_id)
            if active_only:
                query = query.where(PlatformAccount.is_active == True)
            query = query.order_by(PlatformAccount.created_at, PlatformAccount.id)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_platform_accounts(self, platform, public_only: bool = True) -> List[PlatformAccount]:
        """List active accounts on one platform"""
        platform = Platform.parse(platform)
        async with self.get_session() as session:
            query = select(PlatformAccount).where(
                PlatformAccount.platform == platform,
                PlatformAccount.is_active == True
            )
            if public_only:
                query = query.join(User, PlatformAccount.user_id == User.id).where(
                    User.is_public == True,
                    User.is_active == True
                )
            result = await session.execute(query.order_by(PlatformAccount.id))
            return list(result.scalars().all())

    async def list_stale_accounts(self, cutoff: datetime) -> List[PlatformAccount]:
        """
        List active accounts that are due for synchronization.

        An account is due when it has never synced, when its last sync is
        older than the cutoff, or when a resync was requested.
        """
        async with self.get_session() as session:
            result = await session.execute(
                select(PlatformAccount).where(
                    PlatformAccount.is_active == True,
                    or_(
                        PlatformAccount.last_synced_at.is_(None),
                        PlatformAccount.last_synced_at < cutoff,
                        PlatformAccount.sync_status.in_([SyncStatus.NEVER, SyncStatus.PENDING])
                    )
                ).order_by(PlatformAccount.id)
            )
            return list(result.scalars().all())

    # Score operations
    async def get_user_score(self, user_id: int) -> Optional[UserScore]:
        async with self.get_session() as session:
            return await session.get(UserScore, user_id)
