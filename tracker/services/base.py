"""
Base service class for the stats tracker.

Provides async database session management for read-side services.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.utils.exceptions import STORAGE_ERRORS, StorageUnavailableError

logger = logging.getLogger(__name__)

class BaseService:
    """Base class for services with async database session management."""

    def __init__(self, session_factory):
        """
        Initialize base service with session factory.

        Args:
            session_factory: Async session factory from Database class
        """
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for async database operations."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except STORAGE_ERRORS as e:
            await session.rollback()
            raise StorageUnavailableError(type(self).__name__, str(e)) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
