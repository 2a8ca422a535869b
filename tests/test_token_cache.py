"""Tests for the expiring token cache."""

import pytest

from compliance_tracker.core.token_cache import ExpiringTokenCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestExpiringTokenCache:
    async def test_token_is_fetched_once_until_expiry(self):
        clock = FakeClock()
        cache = ExpiringTokenCache(ttl_seconds=3000, timer=clock)
        fetches = []

        async def fetch() -> str:
            fetches.append(clock.now)
            return f"token-{len(fetches)}"

        assert await cache.get_or_fetch("kyc", fetch) == "token-1"
        clock.now = 2999
        assert await cache.get_or_fetch("kyc", fetch) == "token-1"

        clock.now = 3001
        assert await cache.get_or_fetch("kyc", fetch) == "token-2"
        assert len(fetches) == 2

    async def test_failed_fetch_is_not_cached(self):
        cache = ExpiringTokenCache()
        calls = 0

        async def failing() -> str:
            nonlocal calls
            calls += 1
            raise RuntimeError("provider down")

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await cache.get_or_fetch("kyc", failing)

        assert calls == 2
        assert cache.get("kyc") is None

    def test_invalidate(self):
        cache = ExpiringTokenCache()
        cache.set("kyc", "abc")
        cache.invalidate("kyc")
        cache.invalidate("missing")
        assert cache.get("kyc") is None
