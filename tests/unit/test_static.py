"""
Unit tests for static file serving.
"""

import os

import pytest

from feedserver.handlers import FileStream, StaticFileHandler
from feedserver.http import NOT_FOUND_BODY

from conftest import make_request


@pytest.fixture
def static(static_root) -> StaticFileHandler:
    return StaticFileHandler(static_root)


class TestResolution:
    """Tests for URL → file mapping."""

    def test_exact_file(self, static, static_root):
        response = static.handle(make_request(path="/app.js"))

        assert response.status == 200
        assert response.get_header("Content-Type") == "text/javascript; charset=utf-8"
        assert response.read_body() == (static_root / "app.js").read_bytes()

    def test_html_fallback(self, static):
        """/about serves about.html."""
        response = static.handle(make_request(path="/about"))

        assert response.status == 200
        assert response.get_header("Content-Type") == "text/html; charset=utf-8"
        assert response.read_body() == b"<h1>about</h1>"

    def test_root_serves_index(self, static):
        response = static.handle(make_request(path="/"))
        assert response.read_body() == b"<h1>home</h1>"

    def test_directory_index(self, static):
        """/docs/ serves docs/index.html."""
        response = static.handle(make_request(path="/docs/"))

        assert response.status == 200
        assert response.read_body() == b"<h1>docs</h1>"

    def test_directory_without_slash_redirects(self, static):
        response = static.handle(make_request(path="/docs", query_string="tab=1"))

        assert response.status == 301
        assert response.get_header("Location") == "/docs/?tab=1"

    def test_resolve_collapses_dot_segments(self, static, static_root):
        assert static.resolve("/a/./b/../c") == static_root.resolve() / "a" / "c"

    @pytest.mark.parametrize("path", ["/../etc/passwd", "/a/../../x", "/a\x00b", "/..\\..\\x"])
    def test_resolve_rejects_escapes(self, static, path):
        assert static.resolve(path) is None


class TestNotFound:
    """Tests for the 404 page."""

    def test_custom_404(self, static, static_root):
        """A missing path gets 404.html with status 404."""
        response = static.handle(make_request(path="/nope"))

        assert response.status == 404
        assert response.get_header("Content-Type") == "text/html; charset=utf-8"
        assert response.read_body() == (static_root / "404.html").read_bytes()

    def test_builtin_404(self, static_root):
        (static_root / "404.html").unlink()
        static = StaticFileHandler(static_root)

        response = static.handle(make_request(path="/nope"))

        assert response.status == 404
        assert response.get_header("Content-Type") == "text/plain; charset=utf-8"
        assert response.read_body() == NOT_FOUND_BODY

    def test_escape_gets_404(self, static):
        """Traversal attempts look exactly like a missing file."""
        response = static.handle(make_request(path="/../../etc/passwd"))

        assert response.status == 404
        assert response.read_body() == b"<h1>custom not found</h1>"

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="needs symlinks")
    def test_symlink_outside_root_is_404(self, static_root, tmp_path):
        secret = tmp_path / "secret.txt"
        secret.write_text("top secret")
        (static_root / "leak.txt").symlink_to(secret)
        static = StaticFileHandler(static_root)

        response = static.handle(make_request(path="/leak.txt"))

        assert response.status == 404
        assert b"top secret" not in response.read_body()

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="needs symlinks")
    def test_symlink_inside_root_is_served(self, static_root):
        (static_root / "home.html").symlink_to(static_root / "index.html")
        static = StaticFileHandler(static_root)

        response = static.handle(make_request(path="/home"))

        assert response.status == 200
        assert response.read_body() == b"<h1>home</h1>"


class TestCaching:
    """Tests for validators and conditional requests."""

    def test_validators_present(self, static):
        response = static.handle(make_request(path="/app.js"))

        assert response.get_header("ETag").startswith('"')
        assert response.get_header("Last-Modified").endswith("GMT")
        assert response.get_header("Cache-Control") == "public, max-age=3600"

    def test_if_none_match(self, static):
        etag = static.handle(make_request(path="/app.js")).get_header("ETag")

        response = static.handle(make_request(path="/app.js", headers={"If-None-Match": etag}))

        assert response.status == 304
        assert response.read_body() == b""

    def test_weak_etag_matches(self, static):
        etag = static.handle(make_request(path="/app.js")).get_header("ETag")
        response = static.handle(make_request(path="/app.js", headers={"If-None-Match": f"W/{etag}"}))
        assert response.status == 304

    def test_if_modified_since(self, static):
        last_modified = static.handle(make_request(path="/app.js")).get_header("Last-Modified")
        response = static.handle(make_request(path="/app.js", headers={"If-Modified-Since": last_modified}))
        assert response.status == 304

    def test_stale_etag_is_served(self, static):
        response = static.handle(make_request(path="/app.js", headers={"If-None-Match": '"0-0"'}))
        assert response.status == 200


class TestMethodsAndStreaming:
    """Tests for HEAD, 405 and large files."""

    def test_head_has_length_but_no_body(self, static, static_root):
        response = static.handle(make_request("HEAD", "/app.js"))

        assert response.status == 200
        assert response.get_header("Content-Length") == str((static_root / "app.js").stat().st_size)
        assert response.read_body() == b""

    def test_post_not_allowed(self, static):
        response = static.handle(make_request("POST", "/app.js"))

        assert response.status == 405
        assert response.get_header("Allow") == "GET, HEAD"

    def test_large_file_is_streamed(self, static, static_root):
        expected = (static_root / "big.txt").read_bytes()

        response = static.handle(make_request(path="/big.txt"))

        assert isinstance(response.stream, FileStream)
        assert response.get_header("Content-Length") == str(len(expected))
        stream = response.stream
        assert response.read_body() == expected
        assert stream.closed

    def test_missing_root_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            StaticFileHandler(tmp_path / "does-not-exist")
