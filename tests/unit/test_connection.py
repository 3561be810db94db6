"""
Unit tests for client connections, over a local socket pair.
"""

import socket

import pytest

from feedserver.core import Connection, ConnectionState
from feedserver.http import HTTPParseError, HTTPResponse


@pytest.fixture
def pair():
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    client_side.close()
    server_side.close()


def make_connection(sock, **kwargs) -> Connection:
    kwargs.setdefault("timeout", 2.0)
    kwargs.setdefault("keep_alive_timeout", 0.2)
    return Connection(socket=sock, address=("127.0.0.1", 50000), **kwargs)


class TestReadRequest:
    """Tests for Connection.read_request."""

    def test_reads_headers_and_body(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.sendall(b"POST /x HTTP/1.1\r\nContent-Length: 3\r\n\r\nabc")

        assert conn.read_request().endswith(b"\r\n\r\nabc")
        assert conn.requests_handled == 1

    def test_pipelined_requests_are_kept(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.sendall(b"GET /a HTTP/1.1\r\n\r\nGET /b HTTP/1.1\r\n\r\n")

        assert conn.read_request().startswith(b"GET /a")
        assert conn.read_request().startswith(b"GET /b")

    def test_client_close_returns_none(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.shutdown(socket.SHUT_WR)

        assert conn.read_request() is None

    def test_first_request_timeout_raises(self, pair):
        server_side, _ = pair
        conn = make_connection(server_side, timeout=0.1)

        with pytest.raises(TimeoutError):
            conn.read_request()

    def test_idle_keep_alive_returns_none(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.sendall(b"GET / HTTP/1.1\r\n\r\n")
        conn.read_request()

        assert conn.read_request() is None

    def test_too_large(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side, max_request_size=32)
        client_side.sendall(b"GET / HTTP/1.1\r\nX-Pad: " + b"a" * 64 + b"\r\n\r\n")

        with pytest.raises(HTTPParseError) as exc_info:
            conn.read_request()
        assert exc_info.value.status_code == 413

    def test_bad_content_length(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        client_side.sendall(b"POST / HTTP/1.1\r\nContent-Length: -5\r\n\r\n")

        with pytest.raises(HTTPParseError):
            conn.read_request()


class TestSendResponse:
    """Tests for Connection.send_response."""

    def test_writes_and_closes_response(self, pair):
        server_side, client_side = pair
        conn = make_connection(server_side)
        response = HTTPResponse(body=b"hello")

        assert conn.send_response(response)
        assert response.closed

        client_side.settimeout(1.0)
        data = client_side.recv(65536)
        assert data.startswith(b"HTTP/1.1 200 OK\r\n")
        assert data.endswith(b"hello")

    def test_failing_stream_still_closes(self, pair):
        server_side, _ = pair
        conn = make_connection(server_side)

        class Broken:
            closed = False

            def __iter__(self):
                raise RuntimeError("disk gone")

            def close(self):
                Broken.closed = True

        response = HTTPResponse(stream=Broken())
        with pytest.raises(RuntimeError):
            conn.send_response(response)
        assert Broken.closed

    def test_close_is_idempotent(self, pair):
        server_side, _ = pair
        conn = make_connection(server_side)
        conn.close()
        conn.close()
        assert conn.state is ConnectionState.CLOSED
