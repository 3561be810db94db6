"""
=============================================================================
COMPRESSION MIDDLEWARE
=============================================================================

Gzips response bodies for clients that advertise gzip support.

=============================================================================
NEGOTIATION
=============================================================================

The check is a case-insensitive substring match on Accept-Encoding:

    Accept-Encoding: gzip, deflate, br     → compress
    Accept-Encoding: GZIP                  → compress
    Accept-Encoding: br                    → pass through untouched
    (absent)                               → pass through untouched

Even a negotiated response is left alone when:

    - the handler already set Content-Encoding (no double encoding)
    - the request is HEAD (there is no body to encode)
    - the status never carries a body (1xx, 204, 304)
    - the Content-Type is already compressed (png, jpeg, mp4, zip, woff2)

No Vary header is added.

=============================================================================
THE ENCODER LIFECYCLE
=============================================================================

Every negotiated request gets its own GzipEncoder (zlib with gzip
framing, wbits=31). The encoder is created BEFORE the downstream handler
runs and must be finished or released on every path out:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   handler raises          → release(), re-raise                     │
    │   response skipped        → release()                               │
    │   buffered body           → compress + finish in one pass,          │
    │                             Content-Length rewritten                │
    │   streamed body           → GzipStream: chunks compressed as the    │
    │                             socket pulls them, finish() after the   │
    │                             last one; close() releases early        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A stream's compressed length is unknown up front, so its Content-Length
is dropped and the connection falls back to chunked framing.

=============================================================================
"""

import logging
import zlib
from typing import FrozenSet, Iterable, Iterator, Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, is_bodyless_status


logger = logging.getLogger(__name__)


# 16 + MAX_WBITS: emit a gzip header and trailer instead of a zlib one
GZIP_WBITS = 16 + zlib.MAX_WBITS


def accepts_gzip(accept_encoding: str) -> bool:
    return "gzip" in accept_encoding.lower()


class GzipEncoder:
    """
    A one-shot streaming gzip encoder.

        encoder = GzipEncoder(level=6)
        out = encoder.compress(b"part one") + encoder.compress(b"part two")
        out += encoder.finish()          # trailer (CRC32 + size)
        gzip.decompress(out)             # b"part onepart two"

    After finish() or release() the encoder is spent; release() is a
    no-op on a spent encoder.
    """

    def __init__(self, level: int = 6):
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, GZIP_WBITS)
        self.finished = False

    @property
    def active(self) -> bool:
        return self._compressor is not None

    def compress(self, data: bytes) -> bytes:
        if self._compressor is None:
            raise ValueError("gzip encoder already finished")
        return self._compressor.compress(data)

    def finish(self) -> bytes:
        if self._compressor is None:
            raise ValueError("gzip encoder already finished")
        tail = self._compressor.flush(zlib.Z_FINISH)
        self._compressor = None
        self.finished = True
        return tail

    def release(self) -> None:
        """Drop the encoder without producing a trailer."""
        self._compressor = None

    def encode(self, data: bytes) -> bytes:
        return self.compress(data) + self.finish()


class GzipStream:
    """
    Iterable that gzips another iterable of byte chunks on the fly.

    close() releases the encoder and closes the inner stream, whether
    iteration finished, failed halfway, or never started.
    """

    def __init__(self, chunks: Iterable[bytes], encoder: GzipEncoder):
        self._chunks = chunks
        self._encoder = encoder

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            compressed = self._encoder.compress(chunk)
            if compressed:
                yield compressed
        yield self._encoder.finish()

    def close(self) -> None:
        self._encoder.release()
        close = getattr(self._chunks, "close", None)
        if close is not None:
            close()


class CompressionMiddleware(Middleware):
    """
    Gzip response bodies for clients that accept it.

        pipeline.add(CompressionMiddleware(level=6))
    """

    # Content types that are already compressed. image/svg+xml is text
    # and is deliberately absent.
    PRECOMPRESSED_TYPES: FrozenSet[str] = frozenset({
        "image/png",
        "image/jpeg",
        "image/gif",
        "image/webp",
        "image/avif",
        "image/x-icon",
        "audio/mpeg",
        "audio/ogg",
        "video/mp4",
        "video/webm",
        "font/woff",
        "font/woff2",
        "application/zip",
        "application/gzip",
        "application/wasm",
    })

    def __init__(self, level: int = 6, precompressed_types: Optional[Iterable[str]] = None):
        """
        Args:
            level: zlib compression level, 1 (fastest) to 9 (smallest).
            precompressed_types: Content types never compressed.
        """
        if not 1 <= level <= 9:
            raise ValueError(f"gzip level must be 1-9, got {level}")
        self.level = level
        self.precompressed_types = (
            frozenset(precompressed_types) if precompressed_types is not None
            else self.PRECOMPRESSED_TYPES
        )

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not accepts_gzip(request.accept_encoding):
            return next(request)

        encoder = GzipEncoder(self.level)
        try:
            response = next(request)
        except BaseException:
            encoder.release()
            raise

        if not self._should_compress(request, response):
            encoder.release()
            return response

        try:
            self._apply(response, encoder)
        except BaseException:
            encoder.release()
            response.close()
            raise
        return response

    def _apply(self, response: HTTPResponse, encoder: GzipEncoder) -> None:
        response.set_header("Content-Encoding", "gzip")
        if response.stream is None:
            response.body = encoder.encode(response.body)
            response.set_header("Content-Length", str(len(response.body)))
        else:
            response.stream = GzipStream(response.stream, encoder)
            response.remove_header("Content-Length")

    def _should_compress(self, request: HTTPRequest, response: HTTPResponse) -> bool:
        if response.has_header("Content-Encoding"):
            return False
        if request.method == "HEAD":
            return False
        if is_bodyless_status(response.status):
            return False

        base_type = response.get_header("Content-Type").split(";")[0].strip().lower()
        if base_type in self.precompressed_types:
            logger.debug(f"Skipping gzip for pre-compressed type {base_type}")
            return False
        return True
