"""
=============================================================================
FEEDSERVER - Static Site Host With a Shared Feed Cache
=============================================================================

Serves a pre-built static web application and keeps a two-tier cache
(redis, or process memory as a fallback) for upstream feed responses and
proxied images.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    feedserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m feedserver)
    ├── server.py            # FeedServer: wiring and the keep-alive loop
    ├── config.py            # ServerConfig dataclass
    ├── cache/               # Cache facade, memory and redis tiers
    ├── core/                # Socket accept loop, client connections
    ├── http/                # Request parsing, responses, routing, MIME
    ├── middleware/          # Logging, CORS, gzip, the chain itself
    └── handlers/            # Static files, /healthz

=============================================================================
QUICK START
=============================================================================

    from feedserver import FeedServer, ServerConfig

    server = FeedServer(ServerConfig(static_dir="web/out", port=8080))
    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .cache import Cache
from .config import ServerConfig
from .server import FeedServer, create_app

__all__ = ["FeedServer", "ServerConfig", "Cache", "create_app", "__version__"]
