"""
HTTP protocol layer: request parsing, responses, MIME types, routing.
"""

from .mime_types import get_content_type, get_mime_type
from .request import HTTPParseError, HTTPRequest, RequestParser, parse_request
from .response import (
    NOT_FOUND_BODY,
    HTTPResponse,
    ResponseBuilder,
    bad_request,
    error_response,
    format_http_date,
    internal_error,
    is_bodyless_status,
    method_not_allowed,
    not_found_text,
    ok,
    parse_http_date,
    redirect,
)
from .router import Handler, Route, Router

__all__ = [
    # Request
    "HTTPRequest",
    "HTTPParseError",
    "RequestParser",
    "parse_request",

    # Response
    "HTTPResponse",
    "ResponseBuilder",
    "NOT_FOUND_BODY",
    "ok",
    "redirect",
    "bad_request",
    "not_found_text",
    "method_not_allowed",
    "error_response",
    "internal_error",
    "is_bodyless_status",
    "format_http_date",
    "parse_http_date",

    # MIME
    "get_content_type",
    "get_mime_type",

    # Routing
    "Handler",
    "Route",
    "Router",
]
