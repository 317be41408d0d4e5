"""
Configuration management service for the stats tracker.

Runtime overrides for sync and history settings, stored as JSON in the
database with an in-memory cache and an audit trail. Values not present in
the database fall back to the environment-backed Config defaults.
"""

import json
import logging
from typing import Any, Dict
from sqlalchemy import select
from tracker.config import Config
from tracker.services.base import BaseService
from tracker.database.models import Configuration, AuditLog

logger = logging.getLogger(__name__)

# Keys seeded on first start, with their Config defaults
INITIAL_CONFIGS = {
    'sync.batch_size': Config.SYNC_BATCH_SIZE,
    'sync.batch_delay_ms': Config.SYNC_BATCH_DELAY_MS,
    'sync.staleness_hours': Config.SYNC_STALENESS_HOURS,
    'history.retention_days': Config.HISTORY_RETENTION_DAYS,
}

class ConfigurationService(BaseService):
    """Manages runtime configuration with simple caching and audit trail."""

    def __init__(self, session_factory):
        """
        Initialize configuration service with session factory.

        Args:
            session_factory: Async session factory from Database class
        """
        super().__init__(session_factory)
        self._cache: Dict[str, Any] = {}

    async def seed_defaults(self) -> int:
        """Insert default values for keys that are not stored yet."""
        async with self.get_session() as session:
            result = await session.execute(select(Configuration.key))
            existing = set(result.scalars().all())

            missing = {key: value for key, value in INITIAL_CONFIGS.items() if key not in existing}
            for key, value in missing.items():
                session.add(Configuration(key=key, value=json.dumps(value)))

        if missing:
            logger.info(f"Seeded {len(missing)} configuration parameters")
        return len(missing)

    async def load_all(self):
        """Load all configurations from database into memory."""
        new_cache = {}
        async with self.get_session() as session:
            result = await session.execute(select(Configuration))
            configs = result.scalars().all()

            for config in configs:
                try:
                    new_cache[config.key] = json.loads(config.value)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON for config key '{config.key}', skipping")
                    continue

        self._cache = new_cache
        logger.info(f"Loaded {len(self._cache)} configuration parameters")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by key.

        Args:
            key: Configuration key (e.g., 'sync.batch_size')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._cache.get(key, default)

    async def set(self, key: str, value: Any, user_id: int):
        """
        Set configuration value and persist it with an audit entry.

        Args:
            key: Configuration key
            value: Configuration value (will be JSON-encoded)
            user_id: Discord user ID for audit trail
        """
        async with self.get_session() as session:
            result = await session.execute(
                select(Configuration).where(Configuration.key == key)
            )
            config = result.scalar_one_or_none()

            if config:
                old_value = config.value
                config.value = json.dumps(value)
            else:
                old_value = None
                config = Configuration(key=key, value=json.dumps(value))
                session.add(config)

            old_value_parsed = None
            if old_value:
                try:
                    old_value_parsed = json.loads(old_value)
                except json.JSONDecodeError:
                    old_value_parsed = {"error": "invalid JSON", "raw": old_value}

            session.add(AuditLog(
                user_id=user_id,
                action='config_set',
                details=json.dumps({
                    'key': key,
                    'old_value': old_value_parsed,
                    'new_value': value
                })
            ))

        # Reload so the cache matches what was committed
        await self.load_all()

    def list_all(self) -> Dict[str, Any]:
        return self._cache.copy()

    def get_by_category(self, category: str) -> Dict[str, Any]:
        """Get all configuration values under one prefix, e.g. 'sync'."""
        prefix = f"{category}."
        return {
            key[len(prefix):]: value
            for key, value in self._cache.items()
            if key.startswith(prefix)
        }
