"""
pytest configuration and fixtures.
"""

import socket
import threading
from pathlib import Path
from typing import Generator, Optional

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from feedserver import Cache, FeedServer, ServerConfig
from feedserver.http import HTTPRequest


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[dict] = None,
    version: str = "HTTP/1.1",
    query_string: str = "",
) -> HTTPRequest:
    """Helper to create a request for testing."""
    return HTTPRequest(
        method=method,
        path=path,
        version=version,
        headers=headers or {},
        query_string=query_string,
        client_address=("127.0.0.1", 50000),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def static_root(tmp_path: Path) -> Path:
    """
    A small exported site:

        index.html  about.html  404.html  app.js  logo.png
        docs/index.html  big.txt (300 KiB)
    """
    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_text("<h1>home</h1>")
    (root / "about.html").write_text("<h1>about</h1>")
    (root / "404.html").write_text("<h1>custom not found</h1>")
    (root / "app.js").write_text("console.log('hello from the app bundle');\n" * 50)
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64)
    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_text("<h1>docs</h1>")
    (root / "big.txt").write_bytes(b"0123456789abcdef" * (300 * 1024 // 16))
    return root


@pytest.fixture
def config(static_root: Path) -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=1.0,
        static_dir=str(static_root),
        log_level="WARNING",
    )


@pytest.fixture
def app(config: ServerConfig) -> FeedServer:
    """A server that is never started; drive it with app.handle()."""
    server = FeedServer(config, cache=Cache(""))
    yield server
    server.close()


class RunningServer:
    """Test server helper that runs in a background thread."""

    def __init__(self, server: FeedServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()
        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    def request(self, raw: bytes) -> bytes:
        """Send raw request bytes, read until the server closes."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=5.0) as sock:
            sock.sendall(raw)
            chunks = []
            while True:
                data = sock.recv(65536)
                if not data:
                    break
                chunks.append(data)
        return b"".join(chunks)


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[RunningServer, None, None]:
    server = FeedServer(config, cache=Cache(""))
    running = RunningServer(server)
    running.start()
    yield running
    running.stop()
