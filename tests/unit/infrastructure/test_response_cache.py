"""
Tests for InMemoryResponseCache.

Time is driven by FakeClock; nothing sleeps.
"""

from typing import Any, Callable

import pytest

from nutriscan.domain.nutrition.models import ProviderResult
from nutriscan.infrastructure.cache.response_cache import InMemoryResponseCache


class TestTTL:
    """Test expiry."""

    def test_hit_before_expiry(
        self, cache: InMemoryResponseCache, paneer_result: ProviderResult, fake_clock: Any
    ) -> None:
        """Test entry readable until its TTL elapses."""
        cache.put("photo:abc", paneer_result)
        fake_clock.advance(1199)

        assert cache.get("photo:abc") == paneer_result

    def test_miss_after_expiry(
        self, cache: InMemoryResponseCache, paneer_result: ProviderResult, fake_clock: Any
    ) -> None:
        """Test expired entry is a miss and is removed."""
        cache.put("photo:abc", paneer_result)
        fake_clock.advance(1200)

        assert cache.get("photo:abc") is None
        assert cache.size() == 0

    def test_per_entry_ttl(
        self, cache: InMemoryResponseCache, paneer_result: ProviderResult, fake_clock: Any
    ) -> None:
        """Test explicit TTL overrides the default."""
        cache.put("photo:abc", paneer_result, ttl_s=10)
        fake_clock.advance(11)

        assert cache.get("photo:abc") is None

    def test_purge_expired(
        self, cache: InMemoryResponseCache, paneer_result: ProviderResult, fake_clock: Any
    ) -> None:
        """Test purge removes only expired entries."""
        cache.put("a", paneer_result, ttl_s=10)
        cache.put("b", paneer_result, ttl_s=100)
        fake_clock.advance(50)

        assert cache.purge_expired() == 1
        assert cache.get("b") == paneer_result

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_rejects_non_positive_ttl(
        self, cache: InMemoryResponseCache, paneer_result: ProviderResult, ttl: float
    ) -> None:
        """Test zero or negative TTL is refused."""
        with pytest.raises(ValueError):
            cache.put("a", paneer_result, ttl_s=ttl)


class TestLRU:
    """Test size bound."""

    def test_evicts_least_recently_used(
        self, make_result: Callable[..., ProviderResult], fake_clock: Any
    ) -> None:
        """Test reading an entry protects it from eviction."""
        cache = InMemoryResponseCache(default_ttl_seconds=60, max_entries=2, clock=fake_clock)
        cache.put("a", make_result(name="A"))
        cache.put("b", make_result(name="B"))
        cache.get("a")

        cache.put("c", make_result(name="C"))

        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.get("c") is not None

    def test_unbounded(
        self, make_result: Callable[..., ProviderResult], fake_clock: Any
    ) -> None:
        """Test max_entries=0 disables eviction."""
        cache = InMemoryResponseCache(default_ttl_seconds=60, max_entries=0, clock=fake_clock)
        for i in range(50):
            cache.put(f"k{i}", make_result())

        assert cache.size() == 50


class TestInvalidation:
    """Test invalidate and clear."""

    def test_invalidate(
        self, cache: InMemoryResponseCache, paneer_result: ProviderResult
    ) -> None:
        """Test invalidate reports whether the key existed."""
        cache.put("a", paneer_result)

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        assert cache.get("a") is None

    def test_clear(self, cache: InMemoryResponseCache, paneer_result: ProviderResult) -> None:
        """Test clear empties the cache."""
        cache.put("a", paneer_result)
        cache.put("b", paneer_result)

        cache.clear()

        assert cache.size() == 0

    def test_overwrite_keeps_latest(
        self, cache: InMemoryResponseCache, make_result: Callable[..., ProviderResult]
    ) -> None:
        """Test a second put on the same key replaces the value."""
        cache.put("a", make_result(name="First"))
        cache.put("a", make_result(name="Second"))

        hit = cache.get("a")
        assert hit is not None
        assert hit.name == "Second"
        assert cache.size() == 1

    def test_invalid_construction(self) -> None:
        """Test bad TTL or bound is rejected."""
        with pytest.raises(ValueError):
            InMemoryResponseCache(default_ttl_seconds=0)
        with pytest.raises(ValueError):
            InMemoryResponseCache(max_entries=-1)
