"""
=============================================================================
MIDDLEWARE PACKAGE
=============================================================================

Cross-cutting request/response processing, composed with chain() or
MiddlewarePipeline:

    Middleware              Purpose
    ─────────────────────   ──────────────────────────────────────────────
    LoggingMiddleware       access log, X-Request-ID
    CORSMiddleware          allowlisted cross-origin access, preflight
    CompressionMiddleware   gzip for clients that accept it

    from feedserver.middleware import chain, LoggingMiddleware, CORSMiddleware

    handler = chain(router.handle, LoggingMiddleware(), CORSMiddleware())

The first middleware listed is the outermost.

=============================================================================
"""

from .base import (
    FunctionMiddleware,
    Middleware,
    MiddlewarePipeline,
    NextHandler,
    chain,
    function_middleware,
)
from .compression import CompressionMiddleware, GzipEncoder, GzipStream, accepts_gzip
from .cors import DEFAULT_ALLOWED_ORIGINS, CORSConfig, CORSMiddleware
from .logging import LoggingMiddleware, RequestLog

__all__ = [
    # Composition
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "chain",
    "FunctionMiddleware",
    "function_middleware",

    # Compression
    "CompressionMiddleware",
    "GzipEncoder",
    "GzipStream",
    "accepts_gzip",

    # CORS
    "CORSMiddleware",
    "CORSConfig",
    "DEFAULT_ALLOWED_ORIGINS",

    # Logging
    "LoggingMiddleware",
    "RequestLog",
]
