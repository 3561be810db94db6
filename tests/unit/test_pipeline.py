"""
Unit tests for middleware composition.
"""

from feedserver.http import HTTPRequest, HTTPResponse, ok
from feedserver.middleware import (
    Middleware,
    MiddlewarePipeline,
    chain,
    function_middleware,
)

from conftest import make_request


class Recorder(Middleware):
    """Appends its tag to a shared list on the way in and out."""

    def __init__(self, tag: str, events: list):
        self.tag = tag
        self.events = events

    def __call__(self, request, next):
        self.events.append(f"{self.tag}>")
        response = next(request)
        self.events.append(f"<{self.tag}")
        return response


class ShortCircuit(Middleware):
    def __call__(self, request, next):
        return ok("stopped")


class TestChain:
    """Tests for chain()."""

    def test_first_middleware_is_outermost(self):
        """chain(h, A, B, C) runs A, B, C in, then C, B, A out."""
        events = []

        def handler(request: HTTPRequest) -> HTTPResponse:
            events.append("h")
            return ok("done")

        composed = chain(
            handler,
            Recorder("A", events),
            Recorder("B", events),
            Recorder("C", events),
        )
        composed(make_request())

        assert events == ["A>", "B>", "C>", "h", "<C", "<B", "<A"]

    def test_no_middleware_returns_terminal(self):
        def handler(request):
            return ok("done")

        assert chain(handler) is handler

    def test_short_circuit_skips_inner_layers(self):
        """A middleware that does not call next hides everything inside it."""
        events = []

        def handler(request):
            events.append("h")
            return ok("done")

        composed = chain(handler, Recorder("A", events), ShortCircuit(), Recorder("C", events))
        response = composed(make_request())

        assert response.read_body() == b"stopped"
        assert events == ["A>", "<A"]


class TestMiddlewarePipeline:
    """Tests for the builder form."""

    def test_same_order_as_chain(self):
        events = []
        pipeline = MiddlewarePipeline()
        pipeline.add(Recorder("A", events)).add(Recorder("B", events))

        pipeline.wrap(lambda request: ok("x"))(make_request())

        assert events == ["A>", "B>", "<B", "<A"]
        assert len(pipeline) == 2

    def test_use_adds_many(self):
        events = []
        pipeline = MiddlewarePipeline().use(Recorder("A", events), Recorder("B", events))
        assert [mw.tag for mw in pipeline] == ["A", "B"]

    def test_function_middleware(self):
        @function_middleware
        def served_by(request, next):
            response = next(request)
            response.set_header("X-Served-By", "test")
            return response

        handler = MiddlewarePipeline([served_by]).wrap(lambda request: ok("x"))
        response = handler(make_request())

        assert response.get_header("X-Served-By") == "test"
        assert served_by.name == "served_by"
