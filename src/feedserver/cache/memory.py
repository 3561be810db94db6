"""
=============================================================================
IN-PROCESS MEMORY STORE
=============================================================================

The fallback tier of the cache. Used when no remote store is configured or
when the remote store did not answer PING at startup.

=============================================================================
HOW ENTRIES EXPIRE
=============================================================================

Every entry is a (payload, deadline) pair. The deadline is computed once
at store time from a monotonic clock and never changes:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         ENTRY LIFECYCLE                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   store(k, v, ttl)           load(k)              load(k)           │
    │        │                       │                     │               │
    │        ▼                       ▼                     ▼               │
    │   ┌──────────┐   now < dl  ┌────────┐  now >= dl ┌──────────┐       │
    │   │ (v, dl)  │ ──────────► │  HIT   │ ─────────► │ MISS +   │       │
    │   └──────────┘             └────────┘            │ DELETE   │       │
    │                                                  └──────────┘       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

There is no background sweeper. An expired entry is removed the first
time somebody reads it. Keys that are written once and never read again
stay in memory until the process exits.

=============================================================================
CONCURRENCY
=============================================================================

Keys are spread across a fixed number of shards. Each shard is a plain
dict guarded by its own lock, so two threads touching different keys
rarely contend, and there is no global lock.

The expired-read delete is compare-and-delete: we only remove the entry
if it is still the exact object we found expired. A writer that replaced
it in between keeps its new value.

=============================================================================
"""

import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Union


TTL = Union[int, float, timedelta]

DEFAULT_SHARDS = 16


def ttl_seconds(ttl: TTL) -> float:
    """
    Normalize a TTL to a positive number of seconds.

    Raises:
        ValueError: If the TTL is zero or negative.
    """
    if isinstance(ttl, timedelta):
        seconds = ttl.total_seconds()
    else:
        seconds = float(ttl)
    if seconds <= 0:
        raise ValueError(f"TTL must be positive, got {ttl!r}")
    return seconds


@dataclass(frozen=True)
class CacheEntry:
    """A stored payload and the instant it stops being visible."""

    payload: bytes
    deadline: float

    def is_expired(self, now: float) -> bool:
        return now >= self.deadline


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self):
        self.lock = threading.Lock()
        self.entries: Dict[str, CacheEntry] = {}


class MemoryStore:
    """
    Concurrent key → (bytes, deadline) mapping with lazy expiry.

    Usage:
        store = MemoryStore()
        store.store("dynamic:42", b'{"x":1}', 600)
        store.load("dynamic:42")    # b'{"x":1}'
        store.delete("dynamic:42")
        store.load("dynamic:42")    # None

    Args:
        clock: Source of "now" in seconds. Must be monotonic.
               Tests inject a fake clock to drive expiry.
        shards: Number of lock-guarded partitions.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        shards: int = DEFAULT_SHARDS,
    ):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._clock = clock
        self._shards: List[_Shard] = [_Shard() for _ in range(shards)]

    def _shard(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def load_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Return the live entry for key, or None.

        An entry found past its deadline is deleted before reporting the
        miss, so memory for keys that are never rewritten stays bounded
        by reads.
        """
        shard = self._shard(key)
        now = self._clock()
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                return None
            if not entry.is_expired(now):
                return entry
            # Compare-and-delete: a concurrent store may already have
            # replaced the expired entry.
            if shard.entries.get(key) is entry:
                del shard.entries[key]
        return None

    def load(self, key: str) -> Optional[bytes]:
        """Return the payload for key if present and not expired."""
        entry = self.load_entry(key)
        return entry.payload if entry is not None else None

    def store(self, key: str, payload: bytes, ttl: TTL) -> None:
        """Replace any entry under key with (payload, now + ttl)."""
        seconds = ttl_seconds(ttl)
        entry = CacheEntry(payload=bytes(payload), deadline=self._clock() + seconds)
        shard = self._shard(key)
        with shard.lock:
            shard.entries[key] = entry

    def delete(self, key: str) -> None:
        """Remove key unconditionally. Missing keys are ignored."""
        shard = self._shard(key)
        with shard.lock:
            shard.entries.pop(key, None)

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def __contains__(self, key: str) -> bool:
        # Physical presence only; expiry is not applied here.
        shard = self._shard(key)
        with shard.lock:
            return key in shard.entries

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
