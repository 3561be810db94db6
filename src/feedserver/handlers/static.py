"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Serves a static site export (Next.js `output: "export"`) from a directory,
with extensionless URLs and a custom 404 page.

=============================================================================
RESOLUTION ORDER
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  GET /about                                                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. normalize: collapse "." and "..", climbing above root → 404     │
    │  2. <root>/about is a regular file         → serve it                │
    │  3. <root>/about/ holds index.html         → serve the index         │
    │                                              (301 to "/about/" first │
    │                                              if the slash is missing)│
    │  4. <root>/about.html is a regular file    → serve it                │
    │  5. otherwise                              → 404 page                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The 404 page is <root>/404.html, read fresh on every miss and served with
status 404 and text/html. A site without one gets the plain-text
"404 page not found". Directories are never listed.

=============================================================================
ESCAPES
=============================================================================

The request parser has already percent-decoded the path once, so
"/%2e%2e/etc/passwd" arrives here as "/../etc/passwd". Normalization is
done on URL segments, not by the filesystem:

    /a/b/../c          → a/c
    /./a               → a
    /../etc/passwd     → escape (404)
    /a/../../x         → escape (404)
    /a%00b             → escape (404)

Every candidate is then resolved with symlinks followed and must still
sit under the root. A symlink pointing outside the root is a 404 too.
Escapes are answered with the same 404 page as a missing file, so a
client learns nothing about what exists outside.

=============================================================================
CACHING
=============================================================================

    ETag: "<mtime>-<size>"            Last-Modified: <mtime>
    Cache-Control: public, max-age=<cache_max_age>

    If-None-Match matching the ETag           → 304
    If-Modified-Since not older than mtime    → 304 (only without If-None-Match)

Files above stream_threshold are streamed from disk in chunks; the file
is closed when the response is closed.

=============================================================================
"""

import logging
import os
import stat
from datetime import datetime, timezone
from http import HTTPStatus
from pathlib import Path
from typing import Iterator, Optional

from ..http.mime_types import get_content_type
from ..http.request import HTTPRequest
from ..http.response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,
    format_http_date,
    method_not_allowed,
    not_found_text,
    parse_http_date,
    redirect,
)


logger = logging.getLogger(__name__)


DEFAULT_STREAM_THRESHOLD = 256 * 1024
DEFAULT_CHUNK_SIZE = 64 * 1024


class FileStream:
    """
    Reads a file in chunks for a streamed response.

    Reads at most ``length`` bytes, so a file that grows after its size
    was sent in Content-Length cannot overrun the framing.
    """

    def __init__(self, path: Path, length: int, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._file = open(path, "rb")
        self._remaining = length
        self.chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        while self._remaining > 0:
            chunk = self._file.read(min(self.chunk_size, self._remaining))
            if not chunk:
                break
            self._remaining -= len(chunk)
            yield chunk

    def close(self) -> None:
        self._file.close()

    @property
    def closed(self) -> bool:
        return self._file.closed


class StaticFileHandler:
    """
    Serves files under root_dir with .html fallback and a custom 404.

        static = StaticFileHandler("web/out", cache_max_age=3600)
        router = Router(fallback=static.handle)
    """

    ALLOWED_METHODS = ["GET", "HEAD"]

    def __init__(
        self,
        root_dir: str | Path,
        index_file: str = "index.html",
        not_found_file: str = "404.html",
        cache_max_age: int = 3600,
        stream_threshold: int = DEFAULT_STREAM_THRESHOLD,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.root_dir = Path(root_dir).resolve()
        self.index_file = index_file
        self.not_found_file = not_found_file
        self.cache_max_age = cache_max_age
        self.stream_threshold = stream_threshold
        self.chunk_size = chunk_size

        if not self.root_dir.is_dir():
            raise ValueError(f"Static root directory does not exist: {root_dir}")

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        if request.method not in self.ALLOWED_METHODS:
            return method_not_allowed(self.ALLOWED_METHODS)

        candidate = self.resolve(request.path)
        if candidate is None:
            logger.warning(f"Path escape attempt from {request.client_address[0]}: {request.path!r}")
            return self.serve_404()

        info = self._stat(candidate)
        if info is not None and stat.S_ISREG(info.st_mode):
            return self._serve_file(candidate, info, request)

        if info is not None and stat.S_ISDIR(info.st_mode):
            index = candidate / self.index_file
            index_info = self._stat(index)
            if index_info is not None and stat.S_ISREG(index_info.st_mode):
                if not request.path.endswith("/"):
                    return self._redirect_to_directory(request)
                return self._serve_file(index, index_info, request)

        if candidate != self.root_dir:
            html = candidate.with_name(candidate.name + ".html")
            html_info = self._stat(html)
            if html_info is not None and stat.S_ISREG(html_info.st_mode):
                return self._serve_file(html, html_info, request)

        return self.serve_404()

    __call__ = handle

    def resolve(self, url_path: str) -> Optional[Path]:
        """
        Map a decoded URL path to a path under root_dir.

        Returns None for an escape: a NUL byte, or ".." above the root.
        Symlinks are not followed here; _stat() checks containment.
        """
        if "\x00" in url_path:
            return None

        parts: list[str] = []
        for segment in url_path.replace("\\", "/").split("/"):
            if segment in ("", "."):
                continue
            if segment == "..":
                if not parts:
                    return None
                parts.pop()
            else:
                parts.append(segment)
        return self.root_dir.joinpath(*parts)

    def is_contained(self, path: Path) -> bool:
        """True if path, with symlinks followed, is root_dir or below it."""
        try:
            path.resolve().relative_to(self.root_dir)
        except (OSError, RuntimeError, ValueError):
            return False
        return True

    def _stat(self, path: Path) -> Optional[os.stat_result]:
        """stat() that treats missing, unreadable and escaping paths alike."""
        if not self.is_contained(path):
            if path.exists():
                logger.warning(f"Symlink leads outside static root: {path}")
            return None
        try:
            return path.stat()
        except OSError:
            return None

    def _redirect_to_directory(self, request: HTTPRequest) -> HTTPResponse:
        location = request.raw_path + "/"
        if request.query_string:
            location += "?" + request.query_string
        return redirect(location, permanent=True)

    # =========================================================================
    # FILES
    # =========================================================================

    def _serve_file(self, path: Path, info: os.stat_result, request: HTTPRequest) -> HTTPResponse:
        size = info.st_size
        mtime = int(info.st_mtime)
        etag = f'"{mtime}-{size}"'
        last_modified = format_http_date(datetime.fromtimestamp(mtime, tz=timezone.utc))
        cache_control = f"public, max-age={self.cache_max_age}"

        if self._not_modified(request, etag, mtime):
            return (ResponseBuilder()
                .status(HTTPStatus.NOT_MODIFIED)
                .header("ETag", etag)
                .header("Last-Modified", last_modified)
                .header("Cache-Control", cache_control)
                .build())

        builder = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .content_type(get_content_type(path))
            .header("Content-Length", str(size))
            .header("ETag", etag)
            .header("Last-Modified", last_modified)
            .header("Cache-Control", cache_control))

        if request.method == "HEAD":
            return builder.build()

        try:
            if size > self.stream_threshold:
                builder.stream(FileStream(path, size, self.chunk_size), length=size)
            else:
                builder.body(path.read_bytes())
        except PermissionError:
            logger.warning(f"Permission denied reading {path}")
            return error_response(HTTPStatus.FORBIDDEN, "Permission denied")
        except OSError as e:
            logger.error(f"Error serving file {path}: {e}")
            return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, "Failed to read file")
        return builder.build()

    @staticmethod
    def _not_modified(request: HTTPRequest, etag: str, mtime: int) -> bool:
        if_none_match = request.get_header("if-none-match")
        if if_none_match:
            tags = [tag.strip() for tag in if_none_match.split(",")]
            return any(tag == "*" or tag.removeprefix("W/") == etag for tag in tags)

        since = parse_http_date(request.get_header("if-modified-since"))
        if since is None:
            return False
        return mtime <= since.timestamp()

    # =========================================================================
    # 404
    # =========================================================================

    def serve_404(self) -> HTTPResponse:
        """
        Custom 404 page if the site has one, the plain-text 404 otherwise.
        """
        page = self.root_dir / self.not_found_file
        info = self._stat(page)
        if info is not None and stat.S_ISREG(info.st_mode):
            try:
                content = page.read_bytes()
            except OSError as e:
                logger.warning(f"Could not read {page}: {e}")
            else:
                return (ResponseBuilder()
                    .status(HTTPStatus.NOT_FOUND)
                    .html(content)
                    .build())
        return not_found_text()
