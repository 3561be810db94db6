"""
=============================================================================
FEED SERVER CLI ENTRY POINT
=============================================================================

    # Defaults: 127.0.0.1:8080, ./web/out, memory cache
    python -m feedserver

    # Listen on all interfaces with a shared redis cache
    python -m feedserver --host 0.0.0.0 --redis-url redis://cache:6379/0

    # Serve another build directory
    python -m feedserver --static-dir ./dist

    # Extra CORS origins (repeatable; replaces the default allowlist)
    python -m feedserver --cors-origin https://viewer.example.com

Flags override environment variables, which override the defaults in
ServerConfig. See config.py for the variable names.

=============================================================================
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import LOG_LEVELS, ServerConfig
from .server import FeedServer, configure_logging


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedserver",
        description="Static site and feed cache server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m feedserver                                   # Run with defaults
  python -m feedserver --port 3000                       # Custom port
  python -m feedserver --redis-url redis://cache:6379/0  # Shared cache
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", help="Host to bind to (env HTTP_HOST)")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on (env HTTP_PORT)")
    parser.add_argument("--workers", "-w", type=int, help="Worker threads (env HTTP_WORKERS)")

    # ─────────────────────────────────────────────────────────────────────
    # FEATURE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--static-dir", "-s", help="Static site root (env HTTP_STATIC_DIR)")
    parser.add_argument("--redis-url", help="Redis URL or host:port (env REDIS_URL)")
    parser.add_argument(
        "--cors-origin",
        action="append",
        dest="cors_origins",
        metavar="ORIGIN",
        help="Allowed CORS origin, repeatable (env CORS_ORIGINS)",
    )
    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Logging level (env HTTP_LOG_LEVEL)",
    )

    parser.add_argument("--version", "-v", action="version", version=f"feedserver {__version__}")
    return parser


def load_config(argv: Optional[List[str]] = None) -> ServerConfig:
    """
    Layer command-line flags over ServerConfig.from_env().

    Raises:
        SystemExit: On bad flags (argparse) or invalid values.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        parser.error(f"invalid environment: {e}")

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.workers is not None:
        config.max_workers = args.workers
    if args.static_dir is not None:
        config.static_dir = args.static_dir
    if args.redis_url is not None:
        config.redis_url = args.redis_url
    if args.cors_origins:
        config.allowed_origins = args.cors_origins
    if args.log_level is not None:
        config.log_level = args.log_level

    try:
        config.validate()
    except ValueError as e:
        parser.error(str(e))
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    config = load_config(argv)
    configure_logging(config.log_level)

    try:
        server = FeedServer(config)
    except ValueError as e:
        # Missing static directory and friends
        logger.error(f"Cannot start: {e}")
        return 1

    try:
        server.run()
    except OSError as e:
        logger.error(f"Server error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
