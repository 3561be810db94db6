"""
=============================================================================
ROUTER
=============================================================================

Exact-path routing with a fallback handler.

The application has very few routes of its own (/healthz); everything
else is the static site. So instead of pattern matching, routes are a
plain dict lookup and unmatched paths go to the fallback:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   GET /healthz        ──► routes["/healthz"]["GET"]                 │
    │   POST /healthz       ──► 405, Allow: GET, HEAD                     │
    │   GET /about          ──► fallback (StaticFileHandler)              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A GET route also answers HEAD; the connection layer drops the body.

=============================================================================
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .request import HTTPRequest
from .response import HTTPResponse, method_not_allowed, not_found_text


Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass
class Route:
    path: str
    method: str
    handler: Handler
    name: Optional[str] = None


class Router:
    """
    Maps (method, exact path) to a handler.

        router = Router(fallback=static_handler)

        @router.get("/healthz")
        def healthz(request):
            return ok({"status": "ok"})
    """

    def __init__(self, fallback: Optional[Handler] = None):
        self._routes: Dict[str, Dict[str, Route]] = {}
        self.fallback = fallback

    def add_route(self, path: str, handler: Handler, method: str = "GET", name: Optional[str] = None) -> Route:
        route = Route(path=path, method=method.upper(), handler=handler, name=name)
        self._routes.setdefault(path, {})[route.method] = route
        return route

    def route(self, path: str, method: str = "GET", name: Optional[str] = None) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method, name)
            return handler
        return decorator

    def get(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, "GET", name)

    def post(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, "POST", name)

    def match(self, method: str, path: str) -> Optional[Route]:
        by_method = self._routes.get(path)
        if not by_method:
            return None
        method = method.upper()
        route = by_method.get(method)
        if route is None and method == "HEAD":
            route = by_method.get("GET")
        return route

    def get_allowed_methods(self, path: str) -> List[str]:
        methods = set(self._routes.get(path, {}))
        if "GET" in methods:
            methods.add("HEAD")
        return sorted(methods)

    def routes(self) -> List[Route]:
        return [route for by_method in self._routes.values() for route in by_method.values()]

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """
        Dispatch a request.

            matched route     → its handler
            known path        → 405 with Allow
            anything else     → fallback, or a plain 404 without one
        """
        route = self.match(request.method, request.path)
        if route is not None:
            return route.handler(request)

        allowed = self.get_allowed_methods(request.path)
        if allowed:
            return method_not_allowed(allowed)

        if self.fallback is not None:
            return self.fallback(request)
        return not_found_text()

    __call__ = handle
