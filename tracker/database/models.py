from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Text, Float, BigInteger,
    ForeignKey, JSON, Enum as SQLEnum, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum

from tracker.constants import ScoreConstants
from tracker.utils.time_utils import round_half_up

Base = declarative_base()

class Platform(Enum):
    LEETCODE = "leetcode"
    CODEFORCES = "codeforces"
    HACKERRANK = "hackerrank"
    CODECHEF = "codechef"
    ATCODER = "atcoder"
    HACKEREARTH = "hackerearth"

    @classmethod
    def parse(cls, value) -> "Platform":
        """Resolve a Platform from an enum member or a case-insensitive name."""
        from tracker.utils.exceptions import InvalidPlatformError
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidPlatformError(str(value))

class SyncStatus(Enum):
    NEVER = "never"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"

class SnapshotType(Enum):
    DAILY = "daily"

class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(30), nullable=False, unique=True)
    display_name = Column(String(100))
    discord_id = Column(BigInteger, unique=True, nullable=True, index=True)

    is_public = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=func.now(), nullable=False)

    accounts = relationship("PlatformAccount", back_populates="user")
    score = relationship("UserScore", back_populates="user", uselist=False)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', public={self.is_public})>"

class PlatformAccount(Base):
    __tablename__ = 'platform_accounts'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    platform = Column(SQLEnum(Platform), nullable=False)
    platform_username = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)  # Soft delete only

    # Problem counts
    total_problems_solved = Column(Integer, default=0, nullable=False)
    easy_problems_solved = Column(Integer, default=0, nullable=False)
    medium_problems_solved = Column(Integer, default=0, nullable=False)
    hard_problems_solved = Column(Integer, default=0, nullable=False)

    # Contests
    contest_rating = Column(Float, default=0, nullable=False)
    max_contest_rating = Column(Float, default=0, nullable=False)
    contests_participated = Column(Integer, default=0, nullable=False)
    global_rank = Column(Integer, default=0, nullable=False)
    country_rank = Column(Integer, default=0, nullable=False)
    badges = Column(Integer, default=0, nullable=False)

    # Streak group
    current_streak = Column(Integer, default=0, nullable=False)
    max_streak = Column(Integer, default=0, nullable=False)

    # Submission group
    total_submissions = Column(Integer, default=0, nullable=False)
    accepted_submissions = Column(Integer, default=0, nullable=False)
    acceptance_rate = Column(Integer, default=0, nullable=False)

    language_stats = Column(JSON, default=dict)   # language -> {problems_solved, submissions}
    recent_activity = Column(JSON, default=list)  # newest first, bounded

    # Sync bookkeeping
    last_synced_at = Column(DateTime, nullable=True, index=True)
    sync_status = Column(SQLEnum(SyncStatus), default=SyncStatus.NEVER, nullable=False)
    last_error_message = Column(Text, nullable=True)
    last_error_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now())  # Set from the injected clock on every change

    user = relationship("User", back_populates="accounts")

    # At most one account row per (user, platform); re-linking reactivates it
    __table_args__ = (
        UniqueConstraint('user_id', 'platform', name='uq_account_user_platform'),
        Index('ix_account_platform_username', 'platform', 'platform_username'),
    )

    @property
    def platform_score(self) -> int:
        return round_half_up(
            (self.total_problems_solved or 0) * ScoreConstants.PLATFORM_PROBLEM_WEIGHT +
            (self.contest_rating or 0) * ScoreConstants.PLATFORM_RATING_WEIGHT +
            (self.badges or 0) * ScoreConstants.PLATFORM_BADGE_WEIGHT
        )

    @property
    def last_error(self):
        if self.last_error_message is None:
            return None
        return {'message': self.last_error_message, 'timestamp': self.last_error_at}

    def __repr__(self):
        return f"<PlatformAccount(user_id={self.user_id}, platform='{self.platform.value}', username='{self.platform_username}')>"

class UserScore(Base):
    __tablename__ = 'user_scores'

    user_id = Column(Integer, ForeignKey('users.id'), primary_key=True)
    composite_score = Column(Integer, default=0, nullable=False)

    # Components of the last reduction, kept for display
    total_problems = Column(Integer, default=0, nullable=False)
    avg_rating = Column(Float, default=0, nullable=False)
    max_streak = Column(Integer, default=0, nullable=False)
    account_count = Column(Integer, default=0, nullable=False)

    updated_at = Column(DateTime, default=func.now())

    user = relationship("User", back_populates="score")

    def __repr__(self):
        return f"<UserScore(user_id={self.user_id}, composite_score={self.composite_score})>"

class StatsSnapshot(Base):
    __tablename__ = 'stats_snapshots'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    platform = Column(String(20), nullable=False)  # Platform value or "overall"
    snapshot_type = Column(SQLEnum(SnapshotType), default=SnapshotType.DAILY, nullable=False)
    snapshot_date = Column(Date, nullable=False)
    recorded_at = Column(DateTime, nullable=False)

    problems_total = Column(Integer, default=0, nullable=False)
    problems_easy = Column(Integer, default=0, nullable=False)
    problems_medium = Column(Integer, default=0, nullable=False)
    problems_hard = Column(Integer, default=0, nullable=False)
    contest_rating = Column(Float, default=0, nullable=False)
    max_rating = Column(Float, default=0, nullable=False)
    contests_participated = Column(Integer, default=0, nullable=False)
    global_rank = Column(Integer, default=0, nullable=False)
    composite_score = Column(Integer, default=0, nullable=False)

    total_submissions = Column(Integer, default=0, nullable=False)
    accepted_submissions = Column(Integer, default=0, nullable=False)
    acceptance_rate = Column(Integer, default=0, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    max_streak = Column(Integer, default=0, nullable=False)

    # Deltas against the previous snapshot
    problems_change = Column(Integer, default=0, nullable=False)
    rating_change = Column(Float, default=0, nullable=False)
    rank_change = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'platform', 'snapshot_type', 'snapshot_date', name='uq_snapshot_per_day'),
        Index('ix_snapshot_user_platform_recorded', 'user_id', 'platform', 'recorded_at'),
        Index('ix_snapshot_recorded', 'recorded_at'),
    )

    def __repr__(self):
        return f"<StatsSnapshot(user_id={self.user_id}, platform='{self.platform}', date={self.snapshot_date})>"

class Configuration(Base):
    __tablename__ = 'configurations'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)  # JSON-encoded
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True)
    user_id = Column(BigInteger, nullable=False)
    action = Column(String(50), nullable=False)
    details = Column(Text)
    created_at = Column(DateTime, default=func.now())
