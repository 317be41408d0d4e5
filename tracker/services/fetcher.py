"""
External fetcher contract.

Platform clients live outside the tracker. They are registered with a
PlatformFetcherRegistry at startup and must return raw metrics as a mapping
of metric name to value (see AccountMetrics for the recognised keys), or
raise one of the FetchError subclasses below.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from tracker.database.models import Platform

logger = logging.getLogger(__name__)

RawMetrics = Mapping[str, Any]
FetchCallable = Callable[[str], Awaitable[RawMetrics]]


class FetchError(Exception):
    """Base class for failures reported by a platform fetcher."""
    kind = "fetch_error"


class RateLimitedError(FetchError):
    """The platform refused the request because of rate limits."""
    kind = "rate_limited"


class FetchNotFoundError(FetchError):
    """The external username does not exist on the platform."""
    kind = "not_found"


class TransientFetchError(FetchError):
    """Temporary failure (network, timeout, 5xx)."""
    kind = "transient"


class MalformedMetricsError(FetchError):
    """The platform returned data the tracker cannot interpret."""
    kind = "malformed"


class PlatformFetcherRegistry:
    """Dispatches fetches to per-platform adapters with a bounded wait."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._adapters: Dict[Platform, FetchCallable] = {}

    def register(self, platform, adapter: FetchCallable) -> None:
        """Register the adapter used for one platform."""
        platform = Platform.parse(platform)
        self._adapters[platform] = adapter
        logger.info(f"Registered fetcher for {platform.value}")

    def supports(self, platform) -> bool:
        return Platform.parse(platform) in self._adapters

    async def fetch(self, platform, external_username: str) -> RawMetrics:
        """Fetch raw metrics for one account."""
        platform = Platform.parse(platform)
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise FetchNotFoundError(f"No fetcher registered for platform {platform.value}")

        try:
            if self.timeout:
                return await asyncio.wait_for(adapter(external_username), timeout=self.timeout)
            return await adapter(external_username)
        except asyncio.TimeoutError:
            raise TransientFetchError(
                f"{platform.value} fetch for '{external_username}' timed out after {self.timeout}s"
            )
