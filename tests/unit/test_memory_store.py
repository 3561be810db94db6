"""
Unit tests for the in-process memory store.
"""

import threading
from datetime import timedelta

import pytest

from feedserver.cache import CacheEntry, MemoryStore


class TestMemoryStore:
    """Tests for MemoryStore load/store/delete."""

    def test_store_then_load(self, clock):
        """A stored payload is returned before its deadline."""
        store = MemoryStore(clock=clock)
        store.store("dynamic:42", b'{"x":1}', 600)

        assert store.load("dynamic:42") == b'{"x":1}'

    def test_missing_key(self, clock):
        """Unknown keys are a miss."""
        store = MemoryStore(clock=clock)
        assert store.load("nope") is None

    def test_expires_at_deadline(self, clock):
        """An entry is visible strictly before now + ttl, not at it."""
        store = MemoryStore(clock=clock)
        store.store("k", b"v", 10)

        clock.advance(9.999)
        assert store.load("k") == b"v"

        clock.advance(0.001)
        assert store.load("k") is None

    def test_expired_read_removes_entry(self, clock):
        """Reading an expired entry deletes it."""
        store = MemoryStore(clock=clock)
        store.store("k", b"v", 1)
        clock.advance(5)

        assert "k" in store
        assert store.load("k") is None
        assert "k" not in store
        assert len(store) == 0

    def test_overwrite_replaces_value_and_deadline(self, clock):
        """The second store wins, including its TTL."""
        store = MemoryStore(clock=clock)
        store.store("k", b"v1", 100)
        clock.advance(50)
        store.store("k", b"v2", 10)

        assert store.load("k") == b"v2"
        clock.advance(10)
        assert store.load("k") is None

    def test_timedelta_ttl(self, clock):
        """TTL may be a timedelta."""
        store = MemoryStore(clock=clock)
        store.store("k", b"v", timedelta(minutes=10))

        clock.advance(599)
        assert store.load("k") == b"v"
        clock.advance(1)
        assert store.load("k") is None

    @pytest.mark.parametrize("ttl", [0, -1, timedelta(0)])
    def test_non_positive_ttl_rejected(self, clock, ttl):
        """Zero and negative TTLs raise ValueError."""
        store = MemoryStore(clock=clock)
        with pytest.raises(ValueError):
            store.store("k", b"v", ttl)

    def test_payload_is_copied(self, clock):
        """Mutating the caller's buffer does not change the cached value."""
        store = MemoryStore(clock=clock)
        buffer = bytearray(b"abc")
        store.store("k", buffer, 10)
        buffer[0] = ord("z")

        assert store.load("k") == b"abc"

    def test_delete(self, clock):
        """Delete removes the key; deleting a missing key is fine."""
        store = MemoryStore(clock=clock)
        store.store("k", b"v", 10)
        store.delete("k")
        store.delete("never-stored")

        assert store.load("k") is None

    def test_clear(self, clock):
        store = MemoryStore(clock=clock)
        for i in range(20):
            store.store(f"k{i}", b"v", 10)
        store.clear()

        assert len(store) == 0

    def test_invalid_shard_count(self):
        with pytest.raises(ValueError):
            MemoryStore(shards=0)


class TestCacheEntry:
    """Tests for CacheEntry expiry."""

    def test_is_expired(self):
        entry = CacheEntry(payload=b"v", deadline=100.0)
        assert not entry.is_expired(99.9)
        assert entry.is_expired(100.0)


class TestConcurrency:
    """Tests for concurrent access."""

    def test_parallel_writers_and_readers(self):
        """Many threads on overlapping keys never corrupt the store."""
        store = MemoryStore()
        errors = []

        def worker(n: int):
            try:
                for i in range(200):
                    key = f"k{i % 10}"
                    store.store(key, f"{n}-{i}".encode(), 60)
                    value = store.load(key)
                    assert value is not None
            except AssertionError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(store) == 10
