"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Every tunable in one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line flags        python -m feedserver --port 3000     │
    │   2. Environment variables     HTTP_PORT=3000 python -m feedserver  │
    │   3. Defaults below                                                  │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ENVIRONMENT VARIABLES
=============================================================================

    HTTP_HOST           bind address                    127.0.0.1
    HTTP_PORT           listen port                     8080
    HTTP_STATIC_DIR     static site root                web/out
    HTTP_WORKERS        worker threads                  16
    HTTP_TIMEOUT        first-request read timeout (s)  30
    HTTP_GZIP_LEVEL     gzip level 1-9                  6
    HTTP_LOG_LEVEL      DEBUG / INFO / WARNING / ...    INFO
    HTTP_LOG_FORMAT     access log: text or json        text
    REDIS_URL           redis URL or host:port          "" (memory cache)
    REDIS_TIMEOUT       redis command timeout (s)       5
    CORS_ORIGINS        comma-separated allowlist       the three viewer origins

=============================================================================
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .middleware.cors import DEFAULT_ALLOWED_ORIGINS


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def parse_origins(value: str) -> List[str]:
    """
    Split a comma-separated origin list.

        >>> parse_origins("https://a.example, https://b.example")
        ['https://a.example', 'https://b.example']
    """
    return [origin.strip() for origin in value.split(",")]


@dataclass
class ServerConfig:
    """
    Configuration for the feed server.

        config = ServerConfig.from_env()
        config.validate()
    """

    # Network
    host: str = "127.0.0.1"
    port: int = 8080
    backlog: int = 128
    buffer_size: int = 8192
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024

    # Workers
    max_workers: int = 16

    # Static site
    static_dir: str = "web/out"
    static_cache_max_age: int = 3600

    # Cache
    redis_url: str = ""
    redis_timeout: float = 5.0

    # Middleware
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    compression_level: int = 6

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Build a config from environment variables, defaults for the rest.

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        origins = env.get("CORS_ORIGINS")
        return cls(
            host=env.get("HTTP_HOST", defaults.host),
            port=int(env.get("HTTP_PORT", defaults.port)),
            timeout=float(env.get("HTTP_TIMEOUT", defaults.timeout)),
            max_workers=int(env.get("HTTP_WORKERS", defaults.max_workers)),
            static_dir=env.get("HTTP_STATIC_DIR", defaults.static_dir),
            redis_url=env.get("REDIS_URL", defaults.redis_url),
            redis_timeout=float(env.get("REDIS_TIMEOUT", defaults.redis_timeout)),
            allowed_origins=parse_origins(origins) if origins else defaults.allowed_origins,
            compression_level=int(env.get("HTTP_GZIP_LEVEL", defaults.compression_level)),
            log_level=env.get("HTTP_LOG_LEVEL", defaults.log_level).upper(),
            log_format=env.get("HTTP_LOG_FORMAT", defaults.log_format),
        )

    def validate(self) -> None:
        """
        Fail fast on bad values, at startup rather than first use.

        Port 0 is accepted: the OS picks a free port.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 1-65535 (or 0 for any).")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.timeout <= 0 or self.keep_alive_timeout <= 0:
            raise ValueError("timeout and keep_alive_timeout must be > 0")
        if self.redis_timeout <= 0:
            raise ValueError(f"redis_timeout must be > 0, got {self.redis_timeout}")
        if not 1 <= self.compression_level <= 9:
            raise ValueError(f"compression_level must be 1-9, got {self.compression_level}")
        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")
        if any(not origin for origin in self.allowed_origins):
            raise ValueError("allowed_origins contains an empty entry")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")
        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level.upper())
