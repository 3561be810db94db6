"""
=============================================================================
CACHE PACKAGE
=============================================================================

Two-tier key/value cache for upstream feed responses and proxied images.

    Cache            facade; picks redis or memory once, at construction
    MemoryStore      in-process fallback with lazy TTL expiry
    RemoteStore      redis adapter; reads never raise, writes do

    from feedserver.cache import Cache

    cache = Cache("redis://127.0.0.1:6379/0")
    cache.is_remote_enabled()   # False if redis did not answer PING

=============================================================================
"""

from .cache import (
    BackendMode,
    Cache,
    CachedImage,
    FEED_CACHE_TTL,
    FEED_PREFIX,
    IMAGE_CACHE_TTL,
    IMAGE_CONTENT_TYPE_PREFIX,
    IMAGE_PREFIX,
)
from .errors import BackendUnavailableError, CacheBackendError, CacheError
from .memory import CacheEntry, MemoryStore
from .remote import RemoteStore, mask_locator, parse_address, ping_timeout

__all__ = [
    # Facade
    "Cache",
    "BackendMode",
    "CachedImage",

    # Backends
    "MemoryStore",
    "CacheEntry",
    "RemoteStore",
    "mask_locator",
    "parse_address",
    "ping_timeout",

    # Errors
    "CacheError",
    "CacheBackendError",
    "BackendUnavailableError",

    # Key namespaces and TTLs
    "FEED_PREFIX",
    "IMAGE_PREFIX",
    "IMAGE_CONTENT_TYPE_PREFIX",
    "FEED_CACHE_TTL",
    "IMAGE_CACHE_TTL",
]
