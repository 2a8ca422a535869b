"""Injectable cache for short-lived third-party auth tokens."""

import time
from collections.abc import Awaitable, Callable

from cachetools import TTLCache


class ExpiringTokenCache:
    """
    Holds bearer tokens until they expire.

    One instance is created per process and handed to the clients that need
    it, so tests can swap the clock or start from an empty cache.
    """

    def __init__(
        self,
        ttl_seconds: float = 50 * 60,
        maxsize: int = 16,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._cache: TTLCache[str, str] = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)

    def get(self, key: str) -> str | None:
        return self._cache.get(key)

    def set(self, key: str, token: str) -> None:
        self._cache[key] = token

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[str]],
    ) -> str:
        """Return the cached token for ``key`` or fetch and cache a new one."""
        token = self.get(key)
        if token is None:
            token = await fetch()
            self.set(key, token)
        return token
