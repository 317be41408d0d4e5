import os
from dotenv import load_dotenv

load_dotenv()


def _optional_float(name: str):
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return None
    return float(value)


class Config:
    """Tracker configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')

    # Storage settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///tracker.db')
    REDIS_URL = os.getenv('REDIS_URL')  # Unset = single-instance in-memory leases

    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

    # Sync cycle settings
    SYNC_STALENESS_HOURS = float(os.getenv('SYNC_STALENESS_HOURS', 6))
    SYNC_BATCH_SIZE = int(os.getenv('SYNC_BATCH_SIZE', 10))
    SYNC_BATCH_DELAY_MS = int(os.getenv('SYNC_BATCH_DELAY_MS', 2000))
    SYNC_INTERVAL_HOURS = float(os.getenv('SYNC_INTERVAL_HOURS', 6))
    SYNC_LEASE_TTL_SECONDS = int(os.getenv('SYNC_LEASE_TTL_SECONDS', 900))
    FETCH_TIMEOUT_SECONDS = float(os.getenv('FETCH_TIMEOUT_SECONDS', 30))
    MANUAL_SYNC_COOLDOWN_SECONDS = int(os.getenv('MANUAL_SYNC_COOLDOWN_SECONDS', 300))

    # Merge settings
    MAX_RECENT_ACTIVITY = int(os.getenv('MAX_RECENT_ACTIVITY', 50))
    MERGE_REGRESSION_TOLERANCE = _optional_float('MERGE_REGRESSION_TOLERANCE')  # None = plain overwrite

    # History settings
    HISTORY_RETENTION_DAYS = int(os.getenv('HISTORY_RETENTION_DAYS', 365))
    SNAPSHOT_TIMEZONE = os.getenv('SNAPSHOT_TIMEZONE', 'UTC')

    # Leaderboard settings
    LEADERBOARD_DEFAULT_LIMIT = int(os.getenv('LEADERBOARD_DEFAULT_LIMIT', 50))
    LEADERBOARD_MAX_LIMIT = int(os.getenv('LEADERBOARD_MAX_LIMIT', 100))
    LEADERBOARD_CACHE_TTL = int(os.getenv('LEADERBOARD_CACHE_TTL', 180))

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if cls.SYNC_BATCH_SIZE < 1:
            raise ValueError("SYNC_BATCH_SIZE must be at least 1")
        if cls.SYNC_BATCH_DELAY_MS < 0:
            raise ValueError("SYNC_BATCH_DELAY_MS cannot be negative")
        if not 1 <= cls.LEADERBOARD_DEFAULT_LIMIT <= cls.LEADERBOARD_MAX_LIMIT:
            raise ValueError("LEADERBOARD_DEFAULT_LIMIT must be between 1 and LEADERBOARD_MAX_LIMIT")
