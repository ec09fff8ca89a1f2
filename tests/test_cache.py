"""
Unit tests for the result cache and its stores.
"""

import pytest

from tradewizard.cache import FileStore, MemoryStore, ResultCache, cache_key
from tradewizard.models import ExtractionResult, ProductAttributes


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _result(business_factory, product_factory) -> ExtractionResult:
    return ExtractionResult(
        source_url="https://example.com",
        entities=[business_factory(), product_factory("Green Tea", hs_code="0902.10")],
        confidence=0.7,
    )


class TestCacheKey:
    def test_key_is_prefixed_hash(self):
        key = cache_key("https://example.com")

        assert key.startswith("extraction:")
        assert len(key) == len("extraction:") + 64
        assert key == cache_key("https://example.com")
        assert key != cache_key("https://example.org")


class TestMemoryStore:
    """Test the in-process store."""

    def test_entry_expires(self):
        clock = FakeClock()
        store = MemoryStore(clock=clock)
        store.set("k", {"v": 1}, ttl=60)

        clock.now += 30
        assert store.get("k") == {"v": 1}

        clock.now += 31
        assert store.get("k") is None
        assert len(store) == 0

    def test_oldest_entry_evicted(self):
        store = MemoryStore(max_entries=2)
        store.set("a", 1)
        store.set("b", 2)
        store.set("c", 3)

        assert store.get("a") is None
        assert store.get("b") == 2
        assert store.get("c") == 3

    def test_overwrite_does_not_evict(self):
        store = MemoryStore(max_entries=2)
        store.set("a", 1)
        store.set("b", 2)
        store.set("a", 10)

        assert store.get("a") == 10
        assert store.get("b") == 2


class TestFileStore:
    """Test the on-disk store."""

    def test_set_get_delete(self, tmp_path):
        store = FileStore(tmp_path)
        store.set("extraction:abc", {"v": 1}, ttl=60)

        assert store.get("extraction:abc") == {"v": 1}
        assert (tmp_path / "extraction_abc.json").exists()

        store.delete("extraction:abc")
        assert store.get("extraction:abc") is None

    def test_expired_file_removed(self, tmp_path):
        clock = FakeClock()
        store = FileStore(tmp_path, clock=clock)
        store.set("k", {"v": 1}, ttl=10)

        clock.now += 11

        assert store.get("k") is None
        assert not (tmp_path / "k.json").exists()

    def test_unreadable_file_is_a_miss(self, tmp_path):
        store = FileStore(tmp_path)
        (tmp_path / "k.json").write_text("{not json", encoding="utf-8")

        assert store.get("k") is None


class TestResultCache:
    """Test typed storage of ExtractionResult."""

    def test_round_trip_keeps_attribute_kinds(self, business_factory, product_factory):
        cache = ResultCache(MemoryStore())
        cache.set("https://example.com", _result(business_factory, product_factory))

        cached = cache.get("https://example.com")

        product = cached.entities[1]
        assert isinstance(product.attributes, ProductAttributes)
        assert product.attributes.hs_code == "0902.10"
        assert cached.confidence == pytest.approx(0.7)

    def test_malformed_entry_discarded(self):
        store = MemoryStore()
        store.set(cache_key("https://example.com"), {"entities": "garbage"})
        cache = ResultCache(store)

        assert cache.get("https://example.com") is None
        assert store.get(cache_key("https://example.com")) is None

    def test_invalidate(self, business_factory, product_factory):
        cache = ResultCache(MemoryStore())
        cache.set("https://example.com", _result(business_factory, product_factory))

        cache.invalidate("https://example.com")

        assert cache.get("https://example.com") is None

    def test_file_backed_cache(self, tmp_path, business_factory, product_factory):
        cache = ResultCache(FileStore(tmp_path), ttl=60)
        cache.set("https://example.com", _result(business_factory, product_factory))

        assert cache.get("https://example.com").source_url == "https://example.com"
