"""
=============================================================================
CORS MIDDLEWARE
=============================================================================

Lets the viewer front-ends call this server from their own origins.

The policy is a fixed allowlist. There is no wildcard: a matching origin
is echoed back, anything else gets no Access-Control-Allow-Origin at all
and the browser blocks the read.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  Origin: https://pjsk.moe          (in allowlist)                   │
    │                                                                      │
    │      Access-Control-Allow-Origin: https://pjsk.moe                  │
    │      Vary: Origin                                                    │
    │      Access-Control-Allow-Methods: GET, OPTIONS                      │
    │      Access-Control-Allow-Headers: Content-Type                      │
    ├─────────────────────────────────────────────────────────────────────┤
    │  Origin: https://evil.example      (not in allowlist)  or absent    │
    │                                                                      │
    │      Access-Control-Allow-Methods: GET, OPTIONS                      │
    │      Access-Control-Allow-Headers: Content-Type                      │
    └─────────────────────────────────────────────────────────────────────┘

The methods and headers lines are sent on every response regardless of
origin. They grant nothing without a matching Allow-Origin.

=============================================================================
PREFLIGHT
=============================================================================

Any OPTIONS request is answered right here with 200 and an empty body.
The rest of the chain never sees it, so the static handler does not
have to know about OPTIONS.

=============================================================================
"""

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import List, Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder


DEFAULT_ALLOWED_ORIGINS = (
    "https://pjsk.moe",
    "https://www.pjsk.moe",
    "https://snowyviewer.exmeaning.com",
)


@dataclass
class CORSConfig:
    """
    CORS policy.

    Origins are compared as exact strings, scheme and port included.
    """

    allow_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    allow_methods: List[str] = field(default_factory=lambda: ["GET", "OPTIONS"])
    allow_headers: List[str] = field(default_factory=lambda: ["Content-Type"])

    def __post_init__(self):
        if "*" in self.allow_origins:
            raise ValueError("Wildcard origin is not supported; list origins explicitly")

    def is_origin_allowed(self, origin: str) -> bool:
        return bool(origin) and origin in self.allow_origins


class CORSMiddleware(Middleware):
    """
    Allowlist CORS.

        pipeline.add(CORSMiddleware())                              # default origins
        pipeline.add(CORSMiddleware(["http://localhost:3000"]))     # custom
    """

    def __init__(
        self,
        allowed_origins: Optional[List[str]] = None,
        config: Optional[CORSConfig] = None,
    ):
        if config is None:
            config = CORSConfig() if allowed_origins is None else CORSConfig(list(allowed_origins))
        self.config = config
        self._allowed = frozenset(config.allow_origins)
        self._methods = ", ".join(config.allow_methods)
        self._headers = ", ".join(config.allow_headers)

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        origin = request.origin

        if request.method == "OPTIONS":
            response = ResponseBuilder().status(HTTPStatus.OK).build()
        else:
            response = next(request)

        self._add_cors_headers(response, origin)
        return response

    def _add_cors_headers(self, response: HTTPResponse, origin: str) -> None:
        if origin and origin in self._allowed:
            response.set_header("Access-Control-Allow-Origin", origin)
            response.add_vary("Origin")
        response.set_header("Access-Control-Allow-Methods", self._methods)
        response.set_header("Access-Control-Allow-Headers", self._headers)
