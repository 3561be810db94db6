"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps one accepted socket: buffered request reads, incremental response
writes, keep-alive timeouts and a clean TCP close.

    NEW ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE ──┐
              ▲                                                  │
              └──────────────────────────────────────────────────┘
     any state ──► CLOSING ──► CLOSED

=============================================================================
WRITING A RESPONSE
=============================================================================

Responses are written piece by piece from HTTPResponse.iter_wire(), so a
streamed file or a gzip stream never sits in memory whole. Whatever
happens during the write (the client hangs up, the stream raises) the
response is closed afterwards, releasing its file handle or encoder.

=============================================================================
"""

import logging
import socket
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..http.request import HTTPParseError
from ..http.response import HTTPResponse, SERVER_NAME


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    A client connection.

    Attributes:
        socket: The client socket.
        address: Client (ip, port).
        id: Short identifier for log lines.
        requests_handled: Requests read so far on this connection.
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024
    server_name: str = SERVER_NAME

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def idle_time(self) -> float:
        return time.time() - self.last_activity

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request (headers plus Content-Length body).

        Bytes past the end of this request stay buffered for the next
        call, so pipelined requests are not lost.

        Returns:
            The request bytes, or None if the client closed the connection
            or went quiet on an idle keep-alive connection.

        Raises:
            TimeoutError: The first request did not arrive in time.
            HTTPParseError: The request exceeds max_request_size (413)
                or has a malformed Content-Length (400).
        """
        self.state = ConnectionState.READING
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                self._check_size()

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break
                self._buffer += chunk
                self._check_size()

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.state = ConnectionState.PROCESSING
            return request_data

        except socket.timeout:
            if self.requests_handled > 0 and not self._buffer:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            self.socket.settimeout(self.timeout)

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""
        self.last_activity = time.time()
        return data

    def _check_size(self) -> None:
        if len(self._buffer) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(self._buffer)} bytes", status_code=413)

    @staticmethod
    def _parse_content_length(headers: bytes) -> int:
        for line in headers.decode("latin-1").lower().split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    length = int(line.split(":", 1)[1].strip())
                except ValueError:
                    raise HTTPParseError("Invalid Content-Length header")
                if length < 0:
                    raise HTTPParseError("Invalid Content-Length header")
                return length
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(
        self,
        response: HTTPResponse,
        include_body: bool = True,
        chunked_ok: bool = True,
    ) -> bool:
        """
        Write a response and close it.

        Args:
            response: The response to send. Closed on return, always.
            include_body: False for HEAD.
            chunked_ok: False for HTTP/1.0 clients; a stream of unknown
                length is then sent raw and the connection must close.

        Returns:
            True if every byte was written, False if the client went away.
        """
        self.state = ConnectionState.WRITING
        try:
            for piece in response.iter_wire(self.server_name, include_body, chunked_ok):
                self.socket.sendall(piece)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False
        finally:
            response.close()

    def send_bytes(self, data: bytes) -> bool:
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False
        return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close gracefully: send FIN, drain what the client still sends,
        then release the descriptor. Safe to call twice.
        """
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
