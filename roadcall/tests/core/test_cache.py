"""Tests for ResponseCache LRU/TTL behavior and cache keys."""

import pytest

from roadcall.core.cache import ResponseCache, make_cache_key
from roadcall.core.models import DiagnosisRequest, TruckModel, Urgency
from roadcall.tests.fakes import FakeClock


def _request(*symptoms: str, urgency: str = "medium", make: str = "Kenworth") -> DiagnosisRequest:
    return DiagnosisRequest(
        truck=TruckModel(make=make, model="T680", year=2020, engine="PACCAR MX-13"),
        symptoms=symptoms,
        urgency=urgency,
    )


class TestCacheKey:
    """make_cache_key normalization."""

    def test_order_and_case_do_not_matter(self) -> None:
        a = make_cache_key(_request("Loss of power", "Black smoke"))
        b = make_cache_key(_request("black smoke", "LOSS OF POWER "))
        assert a == b

    def test_duplicate_symptoms_collapse(self) -> None:
        a = make_cache_key(_request("Black smoke"))
        b = make_cache_key(_request("Black smoke", "black smoke"))
        assert a == b

    def test_urgency_changes_key(self) -> None:
        assert make_cache_key(_request("Noise", urgency="low")) != make_cache_key(
            _request("Noise", urgency="high")
        )

    def test_truck_changes_key(self) -> None:
        assert make_cache_key(_request("Noise")) != make_cache_key(
            _request("Noise", make="Peterbilt")
        )

    def test_key_is_hex_digest(self) -> None:
        key = make_cache_key(_request("Noise"))
        assert len(key) == 64
        int(key, 16)


class TestResponseCache:
    """Bounded LRU with lazy TTL expiry."""

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    def test_get_missing_returns_none(self, clock) -> None:
        cache: ResponseCache[str] = ResponseCache(clock=clock)
        assert cache.get("absent") is None
        assert cache.stats().misses == 1

    def test_set_then_get(self, clock) -> None:
        cache: ResponseCache[str] = ResponseCache(clock=clock)
        cache.set("k", "v")
        assert cache.get("k") == "v"
        assert cache.stats().hits == 1

    def test_size_never_exceeds_bound(self, clock) -> None:
        cache: ResponseCache[int] = ResponseCache(max_size=3, clock=clock)
        for i in range(10):
            cache.set(f"k{i}", i)
            assert len(cache) <= 3
        assert cache.stats().size == 3

    def test_evicts_least_recently_used(self, clock) -> None:
        cache: ResponseCache[int] = ResponseCache(max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")  # a is now most recently used
        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache

    def test_replacing_key_does_not_evict(self, clock) -> None:
        cache: ResponseCache[int] = ResponseCache(max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.get("a") == 10
        assert "b" in cache

    def test_entry_expires_after_ttl(self, clock) -> None:
        cache: ResponseCache[str] = ResponseCache(ttl_seconds=60, clock=clock)
        cache.set("k", "v")

        clock.advance(59)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None
        assert "k" not in cache

    def test_per_entry_ttl_override(self, clock) -> None:
        cache: ResponseCache[str] = ResponseCache(ttl_seconds=1800, clock=clock)
        cache.set("short", "v", ttl_seconds=10)
        cache.set("long", "v")

        clock.advance(11)
        assert cache.get("short") is None
        assert cache.get("long") == "v"

    def test_clear_empties_cache(self, clock) -> None:
        cache: ResponseCache[str] = ResponseCache(clock=clock)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.clear()
        assert len(cache) == 0
        assert cache.get("a") is None

    @pytest.mark.parametrize("kwargs", [{"max_size": 0}, {"ttl_seconds": 0}])
    def test_rejects_non_positive_bounds(self, kwargs) -> None:
        with pytest.raises(ValueError):
            ResponseCache(**kwargs)

    def test_urgency_enum_and_string_share_key(self) -> None:
        assert make_cache_key(_request("Noise", urgency="HIGH")) == make_cache_key(
            _request("Noise", urgency=Urgency.HIGH)
        )
