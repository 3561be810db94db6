"""
=============================================================================
HTTP RESPONSE
=============================================================================

HTTPResponse is what every handler and middleware returns. It has one of
two body shapes:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        RESPONSE BODY SHAPES                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  BUFFERED     body=b"..."       Content-Length computed on the way  │
    │                                 out                                  │
    │                                                                      │
    │  STREAMED     stream=iter(...)  Content-Length if the producer knew │
    │                                 it, otherwise chunked framing:       │
    │                                                                      │
    │                   Transfer-Encoding: chunked\r\n                     │
    │                   \r\n                                               │
    │                   1f40\r\n <8000 bytes> \r\n                         │
    │                   0\r\n\r\n                                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A streamed response owns resources (an open file, a live gzip encoder).
Whoever ends up holding the response calls close() exactly when it is
done, whether the write finished, failed, or never started. close()
is idempotent.

=============================================================================
BODYLESS STATUSES
=============================================================================

1xx, 204 and 304 never carry a body (RFC 7230 §3.3.3). HEAD responses
keep their headers (including the Content-Length a GET would have had)
but send no body bytes.

=============================================================================
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from http import HTTPStatus
from typing import Any, Dict, Iterable, Iterator, Optional, Union

from .mime_types import get_content_type


SERVER_NAME = "feedserver"

NOT_FOUND_BODY = b"404 page not found\n"


def is_bodyless_status(status: int) -> bool:
    return 100 <= status < 200 or status in (204, 304)


@dataclass
class HTTPResponse:
    """
    A response on its way to the client.

    Handlers normally build these with ResponseBuilder or the helper
    functions at the bottom of this module.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"
    stream: Optional[Iterable[bytes]] = None

    def __post_init__(self):
        self.status = HTTPStatus(self.status)
        self._closed = False

    @property
    def status_line(self) -> str:
        return f"{self.version} {self.status.value} {self.status.phrase}"

    @property
    def is_streamed(self) -> bool:
        return self.stream is not None

    # =========================================================================
    # HEADERS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def has_header(self, name: str) -> bool:
        lowered = name.lower()
        return any(key.lower() == lowered for key in self.headers)

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a header, replacing any existing one regardless of case."""
        self.remove_header(name)
        self.headers[name] = value
        return self

    def remove_header(self, name: str) -> None:
        lowered = name.lower()
        for key in [key for key in self.headers if key.lower() == lowered]:
            del self.headers[key]

    def add_vary(self, value: str) -> None:
        """
        Merge value into the Vary header without duplicating it.

            Vary: Accept-Encoding  +  Origin  →  Vary: Accept-Encoding, Origin
        """
        existing = [v.strip() for v in self.get_header("Vary").split(",") if v.strip()]
        if any(v == "*" or v.lower() == value.lower() for v in existing):
            return
        existing.append(value)
        self.set_header("Vary", ", ".join(existing))

    # =========================================================================
    # BODY
    # =========================================================================

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        self.body = body.encode("utf-8") if isinstance(body, str) else bytes(body)
        self.stream = None
        return self

    def iter_body(self) -> Iterator[bytes]:
        """Body bytes, buffered or streamed, with no transfer framing."""
        if self.stream is None:
            if self.body:
                yield self.body
            return
        for chunk in self.stream:
            if chunk:
                yield chunk

    def read_body(self) -> bytes:
        """
        Drain the whole body into memory and close the response.

        Used by tests and by callers that need the payload, never on the
        hot path for large files.
        """
        try:
            return b"".join(self.iter_body())
        finally:
            self.close()

    def close(self) -> None:
        """Release whatever the stream holds. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        close = getattr(self.stream, "close", None)
        if close is not None:
            close()

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def prepare_headers(self, server_name: str = SERVER_NAME, chunked_ok: bool = True) -> Dict[str, str]:
        """
        Final header set for the wire.

        Adds Date, Server, and the framing header: Content-Length for a
        buffered body, Transfer-Encoding: chunked for a stream of unknown
        length (only if the client speaks HTTP/1.1).
        """
        headers = dict(self.headers)
        lowered = {name.lower() for name in headers}

        if is_bodyless_status(self.status):
            if self.status != HTTPStatus.NOT_MODIFIED:
                for name in [n for n in headers if n.lower() in ("content-length", "transfer-encoding")]:
                    del headers[name]
        elif self.stream is None:
            if "content-length" not in lowered:
                headers["Content-Length"] = str(len(self.body))
        elif "content-length" not in lowered and chunked_ok:
            headers["Transfer-Encoding"] = "chunked"

        if "date" not in lowered:
            headers["Date"] = format_http_date(datetime.now(timezone.utc))
        if "server" not in lowered:
            headers["Server"] = server_name
        return headers

    def head_bytes(self, headers: Dict[str, str]) -> bytes:
        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        lines.append("")
        return "\r\n".join(lines).encode("latin-1") + b"\r\n"

    def iter_wire(
        self,
        server_name: str = SERVER_NAME,
        include_body: bool = True,
        chunked_ok: bool = True,
    ) -> Iterator[bytes]:
        """
        Yield the response as wire bytes: the head, then the framed body.

        Does not close the response; the caller owns that.
        """
        headers = self.prepare_headers(server_name, chunked_ok)
        yield self.head_bytes(headers)

        if not include_body or is_bodyless_status(self.status):
            return

        chunked = any(
            name.lower() == "transfer-encoding" and value.lower() == "chunked"
            for name, value in headers.items()
        )
        if not chunked:
            yield from self.iter_body()
            return

        for chunk in self.iter_body():
            yield f"{len(chunk):x}\r\n".encode("ascii") + chunk + b"\r\n"
        yield b"0\r\n\r\n"

    def to_bytes(self, server_name: str = SERVER_NAME, include_body: bool = True) -> bytes:
        """Serialize the whole response and close it."""
        try:
            return b"".join(self.iter_wire(server_name, include_body))
        finally:
            self.close()


class ResponseBuilder:
    """
    Fluent builder for HTTPResponse.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .json({"status": "ok"})
            .no_store()
            .build())
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""
        self._stream: Optional[Iterable[bytes]] = None

    def status(self, status: Union[HTTPStatus, int]) -> "ResponseBuilder":
        self._status = HTTPStatus(status)
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = content_type
        return self

    def html(self, html: Union[str, bytes]) -> "ResponseBuilder":
        self._body = html.encode("utf-8") if isinstance(html, str) else html
        self._headers["Content-Type"] = "text/html; charset=utf-8"
        return self

    def json(self, data: Any, pretty: bool = False) -> "ResponseBuilder":
        indent = 2 if pretty else None
        self._body = json.dumps(data, indent=indent, ensure_ascii=False).encode("utf-8")
        self._headers["Content-Type"] = "application/json; charset=utf-8"
        return self

    def file(self, content: bytes, filename: str) -> "ResponseBuilder":
        self._body = content
        self._headers["Content-Type"] = get_content_type(filename)
        return self

    def stream(self, chunks: Iterable[bytes], length: Optional[int] = None) -> "ResponseBuilder":
        """
        Stream the body from an iterable of byte chunks.

        Args:
            chunks: The producer. Its close() (if any) is called when the
                response is closed.
            length: Total size if known; omitted means chunked framing.
        """
        self._stream = chunks
        self._body = b""
        if length is not None:
            self._headers["Content-Length"] = str(length)
        return self

    def redirect(self, location: str, permanent: bool = False) -> "ResponseBuilder":
        self._status = HTTPStatus.MOVED_PERMANENTLY if permanent else HTTPStatus.FOUND
        self._headers["Location"] = location
        return self

    def no_store(self) -> "ResponseBuilder":
        self._headers["Cache-Control"] = "no-store"
        return self

    def cache(self, max_age: int = 3600) -> "ResponseBuilder":
        self._headers["Cache-Control"] = f"public, max-age={max_age}"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
            stream=self._stream,
        )


# =============================================================================
# HTTP DATES
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an IMF-fixdate (RFC 7231 §7.1.1.1).

        >>> format_http_date(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        'Thu, 01 Jan 2026 12:00:00 GMT'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return format_datetime(dt.astimezone(timezone.utc), usegmt=True)


def parse_http_date(value: str) -> Optional[datetime]:
    """Parse an HTTP-date header value. Returns None if it is not one."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def ok(body: Union[str, bytes, dict, list] = "", content_type: Optional[str] = None) -> HTTPResponse:
    """
    200 OK. dict/list become JSON, str becomes text/plain, bytes pass through.
    """
    builder = ResponseBuilder().status(HTTPStatus.OK)
    if isinstance(body, (dict, list)):
        builder.json(body)
    elif isinstance(body, str):
        builder.text(body, content_type or "text/plain; charset=utf-8")
    else:
        builder.body(body)
        if content_type:
            builder.content_type(content_type)
    return builder.build()


def redirect(location: str, permanent: bool = False) -> HTTPResponse:
    return ResponseBuilder().redirect(location, permanent).build()


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    return ResponseBuilder().status(HTTPStatus.BAD_REQUEST).json({"error": message}).build()


def not_found_text() -> HTTPResponse:
    """
    The plain 404 used when a site ships no custom 404 page:

        HTTP/1.1 404 Not Found
        Content-Type: text/plain; charset=utf-8
        X-Content-Type-Options: nosniff

        404 page not found
    """
    return (ResponseBuilder()
        .status(HTTPStatus.NOT_FOUND)
        .content_type("text/plain; charset=utf-8")
        .header("X-Content-Type-Options", "nosniff")
        .body(NOT_FOUND_BODY)
        .build())


def method_not_allowed(allowed_methods: list[str]) -> HTTPResponse:
    """405 with the Allow header RFC 7231 §6.5.5 requires."""
    return (ResponseBuilder()
        .status(HTTPStatus.METHOD_NOT_ALLOWED)
        .header("Allow", ", ".join(allowed_methods))
        .json({"error": "Method Not Allowed", "allowed": allowed_methods})
        .build())


def error_response(status: Union[HTTPStatus, int], message: Optional[str] = None) -> HTTPResponse:
    """JSON error body for any status: {"error": "..."}."""
    status = HTTPStatus(status)
    return ResponseBuilder().status(status).json({"error": message or status.phrase}).build()


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)
