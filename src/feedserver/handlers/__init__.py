"""
Request handlers.

    StaticFileHandler   the exported site, with .html fallback and 404 page
    HealthHandler       GET /healthz
"""

from .health import HealthHandler
from .static import FileStream, StaticFileHandler

__all__ = [
    "StaticFileHandler",
    "FileStream",
    "HealthHandler",
]
