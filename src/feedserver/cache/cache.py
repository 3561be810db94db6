"""
=============================================================================
CACHE FACADE
=============================================================================

One object that every request handler shares. It memoizes upstream feed
responses and proxied images, and hides where the bytes actually live.

=============================================================================
BACKEND SELECTION
=============================================================================

The backend is chosen ONCE, in __init__, and never changes afterwards:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       Cache(locator)                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   locator == ""  ───────────────────────────────► MEMORY            │
    │        │                                                             │
    │        ▼                                                             │
    │   parse as URL ── fails ──► parse as host:port                      │
    │        │                          │                                  │
    │        ▼                          ▼                                  │
    │   open client, PING (bounded by a 5 second PING timeout)            │
    │        │                                                             │
    │        ├── ok ─────────────────────────────────► REMOTE            │
    │        │                                                             │
    │        └── error ──► log warning, discard client ► MEMORY           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A flaky redis at startup therefore never takes the service down; it only
costs us a shared cache.

=============================================================================
KEY NAMESPACES
=============================================================================

    dynamic:<uid>     feed entry for one upstream user      TTL 10 minutes
    img:<url>         image payload                         TTL 60 minutes
    img_ct:<url>      image content type                    TTL 60 minutes

An image is two keys. They are written payload first, and a reader must
find BOTH or it reports a miss. Under concurrency a reader can observe
the payload before the content type has landed; the both-or-nothing read
rule makes that window harmless.

=============================================================================
"""

import logging
import math
import time
from enum import Enum
from typing import Callable, NamedTuple, Optional

from .errors import BackendUnavailableError, CacheBackendError
from .memory import TTL, MemoryStore, ttl_seconds
from .remote import RemoteStore, mask_locator


logger = logging.getLogger(__name__)


FEED_PREFIX = "dynamic:"
IMAGE_PREFIX = "img:"
IMAGE_CONTENT_TYPE_PREFIX = "img_ct:"

FEED_CACHE_TTL = 10 * 60      # seconds
IMAGE_CACHE_TTL = 60 * 60     # seconds


class BackendMode(str, Enum):
    """Where cached bytes live. Fixed at construction."""

    REMOTE = "redis"
    MEMORY = "memory"


class CachedImage(NamedTuple):
    """A cached image: payload bytes plus the content type to serve them with."""

    data: bytes
    content_type: str


RemoteFactory = Callable[[str, Optional[float]], RemoteStore]


class Cache:
    """
    Two-tier cache: redis when reachable, process memory otherwise.

    =========================================================================
    USAGE
    =========================================================================

        cache = Cache(os.getenv("REDIS_URL", ""))

        body = cache.get_feed(uid)
        if body is None:
            body = upstream.fetch_feed(uid)
            cache.set_feed(uid, body)

        image = cache.get_image(url)
        if image is None:
            data, content_type = upstream.fetch(url)
            cache.set_image(url, data, content_type)

        cache.close()   # once, at shutdown

    =========================================================================
    ERROR CONTRACT
    =========================================================================

        get*      never raise; any backend failure is a miss (None)
        set*      raise CacheBackendError if redis rejects the write
        delete    raises CacheBackendError if redis rejects the DEL
        close     raises CacheBackendError if the pool fails to close

    In memory mode nothing raises except ValueError for a bad TTL.

    =========================================================================
    """

    def __init__(
        self,
        locator: str = "",
        timeout: Optional[float] = 5.0,
        clock: Callable[[], float] = time.monotonic,
        remote_factory: RemoteFactory = RemoteStore.from_locator,
    ):
        """
        Args:
            locator: Redis URL or bare host:port. Empty selects memory mode.
            timeout: Per-command socket timeout for redis, in seconds.
            clock: Monotonic clock for the memory tier.
            remote_factory: Builds the RemoteStore. Tests swap this out.
        """
        self._memory: Optional[MemoryStore] = None
        self._remote: Optional[RemoteStore] = None
        self._closed = False

        if locator:
            self._remote = self._connect(locator, timeout, remote_factory)

        if self._remote is None:
            self._memory = MemoryStore(clock=clock)
            logger.info("Cache backend: in-process memory")

    @staticmethod
    def _connect(
        locator: str,
        timeout: Optional[float],
        factory: RemoteFactory,
    ) -> Optional[RemoteStore]:
        masked = mask_locator(locator)
        try:
            store = factory(locator, timeout)
        except ValueError as e:
            logger.warning(f"Redis locator {masked!r} is invalid, using memory cache: {e}")
            return None

        try:
            store.ping()
        except BackendUnavailableError as e:
            logger.warning(f"Redis connection failed ({masked}), using memory cache: {e}")
            try:
                store.close()
            except CacheBackendError as close_error:
                logger.debug(f"Discarding redis client failed: {close_error}")
            return None

        logger.info(f"Redis connected successfully: {store.address}")
        return store

    # =========================================================================
    # MODE
    # =========================================================================

    @property
    def mode(self) -> BackendMode:
        return BackendMode.REMOTE if self._remote is not None else BackendMode.MEMORY

    def is_remote_enabled(self) -> bool:
        """True if redis answered PING at construction."""
        return self._remote is not None

    # =========================================================================
    # GENERIC OPERATIONS
    # =========================================================================

    def get(self, key: str) -> Optional[bytes]:
        """Return cached bytes for key, or None on miss."""
        if self._remote is not None:
            return self._remote.get(key)
        return self._memory.load(key)

    def set(self, key: str, value: bytes, ttl: TTL) -> None:
        """
        Store value under key for ttl seconds (or a timedelta).

        Raises:
            ValueError: If ttl is not positive.
            CacheBackendError: If the redis write fails.
        """
        seconds = ttl_seconds(ttl)
        if self._remote is not None:
            # Round up so a sub-millisecond TTL never becomes PX 0.
            ttl_ms = max(1, math.ceil(seconds * 1000))
            self._remote.set(key, bytes(value), ttl_ms)
        else:
            self._memory.store(key, value, seconds)

    def delete(self, key: str) -> None:
        """
        Remove key.

        Raises:
            CacheBackendError: If the redis DEL fails.
        """
        if self._remote is not None:
            self._remote.delete(key)
        else:
            self._memory.delete(key)

    def close(self) -> None:
        """
        Release the redis connection pool. No-op in memory mode.

        Call exactly once at process shutdown; extra calls are ignored.
        """
        if self._closed:
            return
        self._closed = True
        if self._remote is not None:
            self._remote.close()
            logger.info("Redis connection closed")

    def __enter__(self) -> "Cache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # =========================================================================
    # FEED ENTRIES
    # =========================================================================

    def get_feed(self, uid: str) -> Optional[bytes]:
        """Cached feed JSON for one upstream user, or None."""
        return self.get(FEED_PREFIX + uid)

    def set_feed(self, uid: str, data: bytes) -> None:
        """Cache feed JSON for uid for FEED_CACHE_TTL seconds."""
        self.set(FEED_PREFIX + uid, data, FEED_CACHE_TTL)

    # =========================================================================
    # IMAGES
    # =========================================================================

    def get_image(self, url: str) -> Optional[CachedImage]:
        """
        Cached image for url, or None.

        Both the payload and the content type must be present; finding
        only one of them is a miss.
        """
        data = self.get(IMAGE_PREFIX + url)
        if data is None:
            return None
        content_type = self.get(IMAGE_CONTENT_TYPE_PREFIX + url)
        if content_type is None:
            return None
        return CachedImage(data=data, content_type=content_type.decode("utf-8", errors="replace"))

    def set_image(self, url: str, data: bytes, content_type: str) -> None:
        """
        Cache an image payload and its content type for IMAGE_CACHE_TTL.

        The payload is written first. If that write fails the content
        type is never written and the error propagates.

        Raises:
            CacheBackendError: If either redis write fails.
        """
        self.set(IMAGE_PREFIX + url, data, IMAGE_CACHE_TTL)
        self.set(IMAGE_CONTENT_TYPE_PREFIX + url, content_type.encode("utf-8"), IMAGE_CACHE_TTL)
