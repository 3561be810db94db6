"""
Health endpoint.

    GET /healthz

    200 OK
    Cache-Control: no-store

    {"status": "ok", "cache": "redis", "uptime_seconds": 3600}

"cache" reports which backend the cache facade settled on at startup.
"memory" is not a failure: the server is fully functional, it just is
not sharing its cache with other instances. So the endpoint never
answers 503 for it.
"""

import time
from http import HTTPStatus
from typing import Any, Callable, Dict

from ..cache import Cache
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder


class HealthHandler:
    """
    Liveness plus cache-mode report.

        health = HealthHandler(cache)
        router.get("/healthz")(health.handle)
    """

    def __init__(self, cache: Cache, clock: Callable[[], float] = time.monotonic):
        self.cache = cache
        self._clock = clock
        self._started = clock()

    @property
    def uptime(self) -> float:
        return self._clock() - self._started

    def status(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "cache": self.cache.mode.value,
            "uptime_seconds": int(self.uptime),
        }

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        return (ResponseBuilder()
            .status(HTTPStatus.OK)
            .json(self.status())
            .no_store()
            .build())

    __call__ = handle
