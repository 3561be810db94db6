"""
=============================================================================
FEED SERVER
=============================================================================

Ties everything together: socket server, worker pool, request parser,
middleware pipeline, router, and the shared cache.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         REQUEST FLOW                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   SocketServer.accept()                                              │
    │        │                                                             │
    │        ▼                                                             │
    │   ThreadPoolExecutor ──► _process_connection(conn)   (keep-alive)   │
    │                              │                                       │
    │                              ├──► conn.read_request()                │
    │                              ├──► RequestParser.parse()              │
    │                              ├──► handle(request)                    │
    │                              │      LoggingMiddleware                │
    │                              │        CORSMiddleware                 │
    │                              │          CompressionMiddleware        │
    │                              │            Router                     │
    │                              │              /healthz → HealthHandler │
    │                              │              *        → static files  │
    │                              └──► conn.send_response()               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ERROR BOUNDARY
=============================================================================

    malformed request        → parse error status (400/405/413/505), close
    request read timeout     → 408, close
    handler raised           → 500 JSON, logged with traceback
    client went away         → connection dropped quietly

=============================================================================
SHUTDOWN
=============================================================================

SIGINT/SIGTERM (or stop()) ends the accept loop. In-flight connections
finish their current request, the worker pool drains, and the cache is
closed exactly once.

=============================================================================
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .cache import Cache, CacheError
from .config import ServerConfig
from .core import Connection, SocketServer
from .handlers import HealthHandler, StaticFileHandler
from .http import (
    HTTPParseError,
    HTTPRequest,
    HTTPResponse,
    RequestParser,
    Router,
    error_response,
    internal_error,
)
from .middleware import (
    CompressionMiddleware,
    CORSMiddleware,
    LoggingMiddleware,
    Middleware,
    MiddlewarePipeline,
)


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup for the process. Later calls only adjust the level."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    logging.getLogger("feedserver").setLevel(numeric)


class FeedServer:
    """
    The feed server process.

        server = FeedServer(ServerConfig.from_env())
        server.run()          # blocks until SIGINT/SIGTERM

    Tests drive it without sockets:

        response = server.handle(HTTPRequest("GET", "/about"))
    """

    def __init__(self, config: Optional[ServerConfig] = None, cache: Optional[Cache] = None):
        """
        Args:
            config: Server configuration; defaults if omitted.
            cache: A ready cache facade. Built from config.redis_url if omitted.
                The server closes it on shutdown either way.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        # Checked before the cache exists so a bad root leaves nothing to close.
        self.static = StaticFileHandler(
            self.config.static_dir,
            cache_max_age=self.config.static_cache_max_age,
        )

        self.cache = cache if cache is not None else Cache(
            self.config.redis_url,
            timeout=self.config.redis_timeout,
        )
        try:
            self._build(self.config)
        except Exception:
            self._discard_cache()
            raise

        self._executor: Optional[ThreadPoolExecutor] = None
        self._handler: Optional[Callable[[HTTPRequest], HTTPResponse]] = None
        self._running = False
        self._closed = False
        self._close_lock = threading.Lock()

    def _build(self, config: ServerConfig) -> None:
        self.health = HealthHandler(self.cache)

        self.router = Router(fallback=self.static.handle)
        self.router.get("/healthz", name="health")(self.health.handle)

        self.pipeline = MiddlewarePipeline().use(
            LoggingMiddleware(log_format=config.log_format),
            CORSMiddleware(config.allowed_origins),
            CompressionMiddleware(level=config.compression_level),
        )

        self._parser = RequestParser(max_request_size=config.max_request_size)
        self._socket_server = SocketServer(config)

    def _discard_cache(self) -> None:
        try:
            self.cache.close()
        except CacheError as e:
            logger.debug(f"Closing cache after failed startup: {e}")

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def use(self, middleware: Middleware) -> "FeedServer":
        """Append middleware innermost, just outside the router."""
        self.pipeline.add(middleware)
        self._handler = None
        return self

    def get(self, path: str, name: Optional[str] = None):
        return self.router.get(path, name)

    @property
    def handler(self) -> Callable[[HTTPRequest], HTTPResponse]:
        if self._handler is None:
            self._handler = self.pipeline.wrap(self.router.handle)
        return self._handler

    @property
    def address(self) -> tuple[str, int]:
        return self._socket_server.address

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Run one request through the full middleware stack."""
        try:
            return self.handler(request)
        except Exception as e:
            logger.exception(f"Handler error for {request.method} {request.path}: {e}")
            return internal_error()

    def _handle_connection(self, conn: Connection):
        try:
            self._executor.submit(self._process_connection, conn)
        except RuntimeError:
            logger.debug(f"[{conn.id}] Worker pool is shut down, dropping connection")
            conn.close()

    def _process_connection(self, conn: Connection):
        """Keep-alive loop for one connection (runs on a worker thread)."""
        with conn:
            while self._running:
                try:
                    raw_request = conn.read_request()
                    if raw_request is None:
                        break
                    request = self._parser.parse(raw_request, conn.address)
                except TimeoutError:
                    self._send_error(conn, 408, "Request timeout")
                    break
                except HTTPParseError as e:
                    self._send_error(conn, e.status_code, str(e))
                    break
                except OSError as e:
                    logger.debug(f"[{conn.id}] Read failed: {e}")
                    break

                try:
                    if not self._respond(conn, request):
                        break
                except Exception as e:
                    logger.exception(f"[{conn.id}] Connection error: {e}")
                    break
                conn.set_keep_alive()

    def _respond(self, conn: Connection, request: HTTPRequest) -> bool:
        """Send the response for request. Returns True to keep the connection."""
        response = self.handle(request)

        chunked_ok = request.version == "HTTP/1.1"
        keep_alive = request.is_keep_alive and self._running
        if response.stream is not None and not response.has_header("Content-Length") and not chunked_ok:
            # An HTTP/1.0 client only sees the end of this body when we close.
            keep_alive = False

        if keep_alive:
            response.set_header("Connection", "keep-alive")
            response.set_header("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
        else:
            response.set_header("Connection", "close")

        sent = conn.send_response(
            response,
            include_body=request.method != "HEAD",
            chunked_ok=chunked_ok,
        )
        return sent and keep_alive

    def _send_error(self, conn: Connection, status: int, message: str):
        response = error_response(status, message)
        response.set_header("Connection", "close")
        conn.send_response(response)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """Serve until shutdown. Blocks."""
        configure_logging(self.config.log_level)
        self._handler = self.pipeline.wrap(self.router.handle)
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="feedserver-worker",
        )
        self._running = True

        logger.info(
            f"Starting feed server on {self.config.host}:{self.config.port} "
            f"(static={self.static.root_dir}, cache={self.cache.mode.value}, "
            f"workers={self.config.max_workers})"
        )
        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listening socket is bound. For tests and embedding."""
        return self._socket_server.ready.wait(timeout)

    def stop(self):
        """Ask a running server to shut down. Safe from any thread."""
        self._socket_server.shutdown()

    def _shutdown(self):
        logger.info("Shutting down server...")
        self._running = False
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.close()
        logger.info("Server stopped")

    def close(self):
        """Release the cache. Runs once no matter how often it is called."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.cache.close()


def create_app(config: Optional[ServerConfig] = None, cache: Optional[Cache] = None) -> FeedServer:
    """
    Build a FeedServer with the default routes and middleware.

        app = create_app(ServerConfig(static_dir="web/out"))
        app.run()
    """
    return FeedServer(config, cache=cache)
