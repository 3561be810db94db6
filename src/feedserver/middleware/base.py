"""
=============================================================================
MIDDLEWARE COMPOSITION
=============================================================================

A middleware wraps a handler. It sees the request on the way in and the
response on the way out, and may answer on its own without calling the
rest of the chain (CORS preflight does).

    ┌─────────────────────────────────────────────────────────────────────┐
    │          chain(router, Logging, CORS, Compression)                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Request ───────────────────────────────────────────►               │
    │                                                                      │
    │   ┌──────────┐    ┌──────────┐    ┌─────────────┐    ┌──────────┐   │
    │   │ Logging  │───►│   CORS   │───►│ Compression │───►│  router  │   │
    │   └──────────┘    └──────────┘    └─────────────┘    └──────────┘   │
    │                                                                      │
    │   ◄─────────────────────────────────────────────────── Response     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The FIRST middleware listed is the OUTERMOST one: it runs first on the
way in and last on the way out. chain(h, A, B, C) is A(B(C(h))).

To build that, wrap in reverse:

    current = h
    current = C around current
    current = B around current
    current = A around current      → A → B → C → h

Wrapping in list order instead would silently produce C(B(A(h))), which
would, for example, log requests after CORS had already short-circuited
them.

=============================================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    Base class for middleware.

        class ServerTiming(Middleware):
            def __call__(self, request, next):
                started = time.perf_counter()
                response = next(request)        # continue the chain
                response.set_header("Server-Timing", f"app;dur={...}")
                return response

    Not calling ``next`` short-circuits everything inside this layer.
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """Process the request, usually by calling next(request)."""

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def wrap(self, next_handler: NextHandler) -> NextHandler:
        """Bind this middleware around next_handler, giving a plain handler."""
        def wrapped(request: HTTPRequest) -> HTTPResponse:
            return self(request, next_handler)

        wrapped.__name__ = f"{self.name}_wrapped"
        return wrapped


def chain(terminal: NextHandler, *middleware: Middleware) -> NextHandler:
    """
    Compose middleware around a terminal handler.

    The first middleware is the outermost:

        chain(h, A, B, C)(request)  ==  A(B(C(h)))(request)

    With no middleware the terminal handler is returned unchanged.
    """
    current = terminal
    for mw in reversed(middleware):
        current = mw.wrap(current)
    return current


class MiddlewarePipeline:
    """
    Builder form of chain().

        pipeline = MiddlewarePipeline()
        pipeline.add(LoggingMiddleware())      # outermost
        pipeline.add(CORSMiddleware(origins))
        pipeline.add(CompressionMiddleware())  # innermost
        handler = pipeline.wrap(router.handle)

    Same order contract as chain(): first added runs first.
    """

    def __init__(self, middleware: Optional[Iterable[Middleware]] = None):
        self._middleware: List[Middleware] = list(middleware or [])

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def use(self, *middleware: Middleware) -> "MiddlewarePipeline":
        for mw in middleware:
            self.add(mw)
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        return chain(handler, *self._middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self):
        return iter(self._middleware)


class FunctionMiddleware(Middleware):
    """
    A plain function used as middleware.

        @function_middleware
        def server_header(request, next):
            response = next(request)
            response.set_header("X-Served-By", "feedserver")
            return response
    """

    def __init__(
        self,
        func: Callable[[HTTPRequest, NextHandler], HTTPResponse],
        name: Optional[str] = None,
    ):
        self._func = func
        self._name = name or func.__name__

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        return self._func(request, next)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(
    func: Callable[[HTTPRequest, NextHandler], HTTPResponse]
) -> FunctionMiddleware:
    return FunctionMiddleware(func)
