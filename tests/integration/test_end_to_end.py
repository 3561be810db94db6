"""
Integration tests against a real server on a free port.
"""

import gzip
import socket

import pytest


def split_response(raw: bytes):
    """Split raw response bytes into (status_code, headers, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


def dechunk(body: bytes) -> bytes:
    out = b""
    while True:
        size_line, _, rest = body.partition(b"\r\n")
        size = int(size_line, 16)
        if size == 0:
            return out
        out += rest[:size]
        body = rest[size + 2:]


class TestServerOverSockets:
    """End-to-end requests over TCP."""

    def test_get_page(self, running_server):
        raw = running_server.request(b"GET /about HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
        status, headers, body = split_response(raw)

        assert status == 200
        assert headers["content-type"] == "text/html; charset=utf-8"
        assert headers["connection"] == "close"
        assert body == b"<h1>about</h1>"

    def test_gzip_over_the_wire(self, running_server, static_root):
        raw = running_server.request(
            b"GET /app.js HTTP/1.1\r\nHost: x\r\nAccept-Encoding: gzip\r\nConnection: close\r\n\r\n"
        )
        status, headers, body = split_response(raw)

        assert status == 200
        assert headers["content-encoding"] == "gzip"
        assert int(headers["content-length"]) == len(body)
        assert gzip.decompress(body) == (static_root / "app.js").read_bytes()

    def test_streamed_gzip_is_chunked(self, running_server, static_root):
        """A large file under gzip has no known length, so it is chunked."""
        raw = running_server.request(
            b"GET /big.txt HTTP/1.1\r\nHost: x\r\nAccept-Encoding: gzip\r\nConnection: close\r\n\r\n"
        )
        status, headers, body = split_response(raw)

        assert status == 200
        assert headers["transfer-encoding"] == "chunked"
        assert gzip.decompress(dechunk(body)) == (static_root / "big.txt").read_bytes()

    def test_streamed_file_http10(self, running_server, static_root):
        raw = running_server.request(b"GET /big.txt HTTP/1.0\r\n\r\n")
        status, headers, body = split_response(raw)

        assert status == 200
        assert body == (static_root / "big.txt").read_bytes()

    def test_head(self, running_server):
        raw = running_server.request(b"HEAD /about HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
        status, headers, body = split_response(raw)

        assert status == 200
        assert headers["content-length"] == str(len(b"<h1>about</h1>"))
        assert body == b""

    def test_preflight(self, running_server):
        raw = running_server.request(
            b"OPTIONS / HTTP/1.1\r\nHost: x\r\nOrigin: https://pjsk.moe\r\nConnection: close\r\n\r\n"
        )
        status, headers, body = split_response(raw)

        assert status == 200
        assert headers["access-control-allow-origin"] == "https://pjsk.moe"
        assert body == b""

    def test_keep_alive_serves_two_requests(self, running_server):
        """Two pipelined requests on one connection both get answers."""
        raw = running_server.request(
            b"GET /about HTTP/1.1\r\nHost: x\r\n\r\n"
            b"GET /healthz HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n"
        )

        assert raw.count(b"HTTP/1.1 200 OK") == 2
        assert b'"status": "ok"' in raw

    def test_malformed_request(self, running_server):
        raw = running_server.request(b"NOT A REQUEST\r\n\r\n")
        status, headers, _ = split_response(raw)

        assert status == 400
        assert headers["connection"] == "close"

    def test_unknown_method(self, running_server):
        raw = running_server.request(b"BREW / HTTP/1.1\r\n\r\n")
        assert split_response(raw)[0] == 405

    def test_traversal_is_404(self, running_server):
        raw = running_server.request(
            b"GET /%2e%2e/%2e%2e/etc/passwd HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n"
        )
        assert split_response(raw)[0] == 404


def test_stop_closes_cache(config):
    """After stop() the server shuts down and the cache is closed."""
    from unittest.mock import MagicMock

    from feedserver import FeedServer
    from feedserver.cache import BackendMode, Cache

    from conftest import RunningServer

    cache = MagicMock(spec=Cache)
    cache.mode = BackendMode.MEMORY
    running = RunningServer(FeedServer(config, cache=cache))
    running.start()
    running.stop()

    cache.close.assert_called_once()
    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", running.port), timeout=1.0)
