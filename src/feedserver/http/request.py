"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.x request bytes into HTTPRequest objects.

    GET /about?lang=en HTTP/1.1\r\n        ← request line
    Host: pjsk.moe\r\n                     ← headers (names lowercased)
    Accept-Encoding: gzip, deflate\r\n
    Origin: https://pjsk.moe\r\n
    \r\n                                   ← end of headers
    <body, Content-Length bytes>

The path is percent-decoded exactly once here. It is NOT sanitized:
".." segments are passed through untouched and the static file handler
decides what an escape attempt means (a 404, in our case).

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import parse_qs, unquote, urlsplit


class HTTPParseError(Exception):
    """
    Raised when a request cannot be parsed.

    Carries the status code the server should answer with:

        400 Bad Request                  malformed syntax
        405 Method Not Allowed           unknown method
        413 Payload Too Large            request exceeds the size limit
        505 HTTP Version Not Supported   anything but HTTP/1.0 or 1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Headers are stored with lowercase names, so ``get_header`` lookups
    are case-insensitive. ``raw_path`` keeps the undecoded request target
    path for redirects.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    query_string: str = ""
    raw_path: str = ""
    body: bytes = b""
    client_address: tuple[str, int] = ("", 0)

    def __post_init__(self):
        self.headers = {name.lower(): value for name, value in self.headers.items()}
        if not self.raw_path:
            self.raw_path = self.path

    @property
    def origin(self) -> str:
        return self.headers.get("origin", "")

    @property
    def accept_encoding(self) -> str:
        return self.headers.get("accept-encoding", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection open unless told to close;
        HTTP/1.0 closes unless told to keep it alive.
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses raw request bytes.

    Usage:
        parser = RequestParser(max_request_size=1024 * 1024)
        request = parser.parse(data, ("203.0.113.7", 50123))
    """

    VALID_METHODS = {"GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"}

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:\s]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Parse one complete request.

        Raises:
            HTTPParseError: If the request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, uri, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", "0"))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")
        if content_length < 0 or len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        target = urlsplit(uri)
        raw_path = target.path or "/"
        return HTTPRequest(
            method=method,
            path=unquote(raw_path),
            version=version,
            headers=headers,
            query_params=parse_qs(target.query, keep_blank_values=True),
            query_string=target.query,
            raw_path=raw_path,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line[:100]}")

        method, uri, version = match.groups()
        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)
        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)
        if not (uri.startswith("/") or uri == "*"):
            raise HTTPParseError(f"Unsupported request target: {uri[:100]}")
        return method, uri, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Header lines → dict with lowercase names.

        A repeated header is joined with ", " (RFC 7230 §3.2.2):
            Accept-Encoding: gzip
            Accept-Encoding: br      →  {"accept-encoding": "gzip, br"}
        """
        headers: Dict[str, str] = {}
        for line in lines:
            if not line:
                continue
            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Malformed header line: {line[:100]}")
            name, value = match.groups()
            name = name.lower()
            value = value.strip()
            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value
        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 1024 * 1024,
) -> HTTPRequest:
    """Parse one request with a throwaway RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
