"""
Unit tests for response writers and headers.
"""

import json

import pytest

from httpkit.http.response import (
    CONTENT_TYPE_JSON,
    CONTENT_TYPE_TEXT,
    BufferedResponseWriter,
    Headers,
    ResponseWriterWrapper,
    Unwrapper,
    format_http_date,
    write_json,
    write_text,
)
from httpkit.http.status_codes import HTTPStatus, status_text


class TestHeaders:
    """Tests for the case-insensitive header map."""

    def test_lookup_ignores_case(self):
        headers = Headers({"Content-Type": "text/plain"})

        assert headers.get("content-type") == "text/plain"
        assert "CONTENT-TYPE" in headers
        assert headers.get("X-Missing") == ""
        assert headers.get("X-Missing", "default") == "default"

    def test_add_keeps_values(self):
        headers = Headers()
        headers.add("Vary", "Origin")
        headers.add("vary", "Accept-Encoding")

        assert headers.values("VARY") == ["Origin", "Accept-Encoding"]
        assert headers.items() == [("Vary", "Origin"), ("Vary", "Accept-Encoding")]

    def test_set_replaces_values(self):
        headers = Headers()
        headers.add("X-Trace", "a")
        headers.add("X-Trace", "b")
        headers.set("x-trace", "c")

        assert headers.values("X-Trace") == ["c"]
        # first casing wins
        assert list(headers) == ["X-Trace"]

    def test_setdefault_and_delete(self):
        headers = Headers()
        assert headers.setdefault("Server", "one") == "one"
        assert headers.setdefault("server", "two") == "one"

        headers.delete("SERVER")
        assert "Server" not in headers
        assert len(headers) == 0

    @pytest.mark.parametrize("name, value", [
        ("Location", "/a\r\nSet-Cookie: evil=1"),
        ("Location", "/a\nX: y"),
        ("X-Bad\r\nSet-Cookie", "1"),
        ("X-Bad:", "1"),
    ])
    def test_rejects_header_splitting(self, name, value):
        headers = Headers()

        with pytest.raises(ValueError):
            headers.set(name, value)
        with pytest.raises(ValueError):
            headers.add(name, value)

        assert len(headers) == 0


class TestBufferedResponseWriter:
    """Tests for the in-memory writer used by the server and by tests."""

    def test_initial_state(self):
        w = BufferedResponseWriter()
        assert w.status == 0
        assert w.committed is False
        assert w.body == b""

    def test_write_commits_200(self):
        w = BufferedResponseWriter()
        assert w.write(b"hello") == 5

        assert w.status == 200
        assert w.body == b"hello"

    def test_first_write_header_wins(self):
        w = BufferedResponseWriter()
        w.write_header(HTTPStatus.CREATED)
        w.write_header(HTTPStatus.BAD_REQUEST)

        assert w.status == 201

    def test_write_header_after_implicit_200_is_ignored(self):
        w = BufferedResponseWriter()
        w.write(b"x")
        w.write_header(404)

        assert w.status == 200

    def test_to_bytes(self):
        w = BufferedResponseWriter()
        w.headers.set("X-Custom", "value")
        w.write_header(201)
        w.write(b"test")

        result = w.to_bytes(server_name="unit")

        assert result.startswith(b"HTTP/1.1 201 Created\r\n")
        assert b"X-Custom: value\r\n" in result
        assert b"Content-Length: 4\r\n" in result
        assert b"Server: unit\r\n" in result
        assert b"Date: " in result
        assert result.endswith(b"\r\n\r\ntest")

    def test_to_bytes_without_body(self):
        """HEAD responses keep Content-Length but drop the body."""
        w = BufferedResponseWriter()
        w.write(b"hello world")

        result = w.to_bytes(include_body=False)

        assert b"Content-Length: 11\r\n" in result
        assert result.endswith(b"\r\n\r\n")

    def test_to_bytes_uncommitted_defaults_to_200(self):
        assert BufferedResponseWriter().to_bytes().startswith(b"HTTP/1.1 200 OK\r\n")

    def test_to_bytes_does_not_mutate_headers(self):
        w = BufferedResponseWriter()
        w.to_bytes()
        assert "Content-Length" not in w.headers


class TestWriterWrapper:
    """Tests for the unwrap capability."""

    def test_wrapper_delegates_and_unwraps(self):
        inner = BufferedResponseWriter()
        outer = ResponseWriterWrapper(inner)

        outer.headers.set("X-A", "1")
        outer.write_header(202)
        outer.write(b"ok")

        assert isinstance(outer, Unwrapper)
        assert outer.unwrap() is inner
        assert inner.status == 202
        assert inner.body == b"ok"
        assert inner.headers.get("X-A") == "1"

    def test_plain_writer_is_not_unwrapper(self):
        assert not isinstance(BufferedResponseWriter(), Unwrapper)


class TestHelpers:
    """Tests for the write_json / write_text helpers."""

    def test_write_json(self):
        w = BufferedResponseWriter()
        data = {"name": "John", "age": 30}
        write_json(w, data, HTTPStatus.CREATED)

        assert w.status == 201
        assert w.headers.get("Content-Type") == CONTENT_TYPE_JSON
        assert json.loads(w.body) == data
        assert w.json() == data

    def test_write_text(self):
        w = BufferedResponseWriter()
        write_text(w, "héllo")

        assert w.status == 200
        assert w.headers.get("Content-Type") == CONTENT_TYPE_TEXT
        assert w.text == "héllo"

    def test_format_http_date(self):
        from datetime import datetime, timezone

        dt = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)
        assert format_http_date(dt) == "Mon, 15 Jan 2024 10:30:00 GMT"


class TestStatusCodes:
    """Tests for HTTPStatus."""

    def test_phrases(self):
        assert HTTPStatus.NOT_FOUND.phrase == "Not Found"
        assert status_text(405) == "Method Not Allowed"
        assert status_text(799) == "Unknown"

    def test_is_error(self):
        assert HTTPStatus.BAD_REQUEST.is_error
        assert not HTTPStatus.TEMPORARY_REDIRECT.is_error
