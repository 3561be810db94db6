"""
Cache error types.

Only write-path failures ever reach callers. Read failures are misses,
and an unreachable backend at startup downgrades the cache to memory.
"""


class CacheError(Exception):
    """Base class for cache errors."""


class CacheBackendError(CacheError):
    """
    A remote SET/DEL/CLOSE failed.

    The original redis exception is chained as ``__cause__``.

    Attributes:
        operation: The command that failed ("SET", "DEL", "CLOSE").
        key: The key involved, or "" for CLOSE.
    """

    def __init__(self, operation: str, key: str, error: Exception):
        target = f" {key!r}" if key else ""
        super().__init__(f"redis {operation}{target} failed: {error}")
        self.operation = operation
        self.key = key


class BackendUnavailableError(CacheError):
    """The remote store did not answer PING. Never escapes the facade."""
