"""
Integration tests: a real HTTPServer on a real socket.
"""

import json
import socket
import threading
import time
from typing import Dict, Tuple

import pytest

from httpkit import HTTPServer, ServerClosed
from httpkit.__main__ import build_app
from httpkit.http.response import write_json, write_text


def parse_response(raw: bytes) -> Tuple[int, Dict[str, str], bytes]:
    """Split a raw response into (status, lowercase headers, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


def read_response(sock: socket.socket) -> Tuple[int, Dict[str, str], bytes]:
    """Read exactly one response off a keep-alive connection."""
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(4096)
        if not chunk:
            break
        data += chunk
    status, headers, body = parse_response(data)
    length = int(headers.get("content-length", "0"))
    while len(body) < length:
        chunk = sock.recv(4096)
        if not chunk:
            break
        body += chunk
    return status, headers, body


def hello(w, r):
    write_text(w, f"hello {r.path}")


class TestServing:
    """Basic request / response behaviour."""

    def test_simple_get(self, serve):
        srv = serve(hello)

        status, headers, body = parse_response(
            srv.request(b"GET /world HTTP/1.1\r\nHost: test\r\nConnection: close\r\n\r\n")
        )

        assert status == 200
        assert body == b"hello /world"
        assert headers["content-length"] == "12"
        assert headers["connection"] == "close"
        assert headers["server"] == "httpkit/1.0"
        assert "date" in headers

    def test_keep_alive(self, serve):
        srv = serve(hello)

        with srv.connect() as sock:
            sock.sendall(b"GET /one HTTP/1.1\r\nHost: test\r\n\r\n")
            first = read_response(sock)
            sock.sendall(b"GET /two HTTP/1.1\r\nHost: test\r\n\r\n")
            second = read_response(sock)

        assert first[0] == second[0] == 200
        assert first[1]["connection"] == "keep-alive"
        assert first[2] == b"hello /one"
        assert second[2] == b"hello /two"

    def test_pipelined_requests(self, serve):
        srv = serve(hello)

        with srv.connect() as sock:
            sock.sendall(
                b"GET /a HTTP/1.1\r\nHost: test\r\n\r\n"
                b"GET /b HTTP/1.1\r\nHost: test\r\nConnection: close\r\n\r\n"
            )
            assert read_response(sock)[2] == b"hello /a"
            assert read_response(sock)[2] == b"hello /b"

    def test_head_has_no_body(self, serve):
        srv = serve(hello)

        raw = srv.request(b"HEAD /x HTTP/1.1\r\nHost: test\r\nConnection: close\r\n\r\n")
        status, headers, body = parse_response(raw)

        assert status == 200
        assert headers["content-length"] == "8"
        assert body == b""

    def test_post_body(self, serve):
        def echo(w, r):
            write_json(w, {"got": r.read_json()}, 201)

        srv = serve(echo)
        payload = b'{"a": 1}'

        status, _, body = parse_response(srv.request(
            b"POST /echo HTTP/1.1\r\nHost: test\r\nConnection: close\r\n"
            + f"Content-Length: {len(payload)}\r\n\r\n".encode() + payload
        ))

        assert status == 201
        assert json.loads(body) == {"got": {"a": 1}}

    def test_malformed_request(self, serve):
        srv = serve(hello)

        status, headers, body = parse_response(srv.request(b"NONSENSE\r\n\r\n"))

        assert status == 400
        assert headers["connection"] == "close"
        assert "error" in json.loads(body)

    def test_unsupported_version(self, serve):
        srv = serve(hello)
        status, _, _ = parse_response(srv.request(b"GET / HTTP/2.0\r\n\r\n"))
        assert status == 505

    def test_request_too_large(self, serve):
        srv = serve(hello, max_request_size=2048)

        status, _, _ = parse_response(srv.request(
            b"GET / HTTP/1.1\r\nX-Big: " + b"a" * 4096 + b"\r\n\r\n"
        ))
        assert status == 413

    def test_handler_exception_is_500(self, serve):
        def broken(w, r):
            raise RuntimeError("boom")

        srv = serve(broken)

        status, _, body = parse_response(
            srv.request(b"GET / HTTP/1.1\r\nConnection: close\r\n\r\n")
        )

        assert status == 500
        assert json.loads(body) == {"error": "Internal Server Error"}

    def test_handler_can_close_connection(self, serve):
        def closing(w, r):
            w.headers.set("Connection", "close")
            write_text(w, "bye")

        srv = serve(closing)

        # No Connection: close from the client, yet the server closes.
        status, headers, body = parse_response(srv.request(b"GET / HTTP/1.1\r\n\r\n"))

        assert status == 200
        assert headers["connection"] == "close"
        assert body == b"bye"


class TestLifecycle:
    """shutdown() and close() behaviour."""

    def test_shutdown_raises_server_closed(self, config):
        server = HTTPServer(hello, config)
        outcome = []

        def run():
            try:
                server.listen_and_serve()
            except ServerClosed as e:
                outcome.append(e)

        thread = threading.Thread(target=run, daemon=True)
        thread.start()
        assert server.wait_ready(5.0)

        server.shutdown(2.0)
        thread.join(5.0)

        assert len(outcome) == 1
        with pytest.raises(ServerClosed):
            server.listen_and_serve()

    def test_shutdown_waits_for_in_flight_request(self, serve):
        started = threading.Event()

        def slow(w, r):
            started.set()
            time.sleep(0.3)
            write_text(w, "done")

        srv = serve(slow)
        responses = []

        def client():
            responses.append(parse_response(srv.request(b"GET / HTTP/1.1\r\n\r\n")))

        thread = threading.Thread(target=client)
        thread.start()
        assert started.wait(5.0)

        srv.server.shutdown(2.0)
        thread.join(5.0)

        status, headers, body = responses[0]
        assert status == 200
        assert body == b"done"
        assert headers["connection"] == "close"

    def test_shutdown_closes_idle_keep_alive(self, serve):
        srv = serve(hello, keep_alive_timeout=30.0)

        with srv.connect() as sock:
            sock.sendall(b"GET / HTTP/1.1\r\n\r\n")
            assert read_response(sock)[0] == 200

            started = time.monotonic()
            srv.server.shutdown(2.0)

            assert sock.recv(1024) == b""
            assert time.monotonic() - started < 2.0

    def test_shutdown_deadline(self, serve):
        release = threading.Event()
        started = threading.Event()

        def stuck(w, r):
            started.set()
            release.wait(5.0)

        srv = serve(stuck)
        sock = srv.connect()
        try:
            sock.sendall(b"GET / HTTP/1.1\r\n\r\n")
            assert started.wait(5.0)

            with pytest.raises(TimeoutError):
                srv.server.shutdown(0.2)
        finally:
            release.set()
            sock.close()


class TestDemoApp:
    """The demo application wired through the real server."""

    @pytest.fixture
    def app(self, serve, config):
        return serve(build_app(config))

    def test_echo_param(self, app):
        status, _, body = parse_response(
            app.request(b"GET /echo/bob HTTP/1.1\r\nConnection: close\r\n\r\n")
        )
        assert status == 200
        assert json.loads(body) == {"name": "bob"}

    def test_catch_all(self, app):
        status, _, body = parse_response(
            app.request(b"GET /files/a/b.txt HTTP/1.1\r\nConnection: close\r\n\r\n")
        )
        assert status == 200
        assert json.loads(body) == {"filepath": "/a/b.txt"}

    def test_bad_json_is_400(self, app):
        status, _, body = parse_response(app.request(
            b"POST /echo HTTP/1.1\r\nConnection: close\r\nContent-Length: 5\r\n\r\n{nope"
        ))
        assert status == 400
        assert "Invalid JSON body" in json.loads(body)["error"]

    def test_health(self, app):
        status, _, body = parse_response(
            app.request(b"GET /system/health HTTP/1.1\r\nConnection: close\r\n\r\n")
        )
        assert status == 200
        assert json.loads(body) == [{"name": "HTTP Server", "status": "healthy"}]

    def test_not_found(self, app):
        status, _, body = parse_response(
            app.request(b"GET /nope HTTP/1.1\r\nConnection: close\r\n\r\n")
        )
        assert status == 404
        assert body == b"default not found handler: method: GET, path: /nope"

    def test_redirect(self, app):
        status, headers, _ = parse_response(
            app.request(b"GET /system/info/?x=1 HTTP/1.1\r\nConnection: close\r\n\r\n")
        )
        assert status == 301
        assert headers["location"] == "/system/info?x=1"

    def test_cors_preflight(self, app):
        status, headers, _ = parse_response(app.request(
            b"OPTIONS /echo HTTP/1.1\r\nConnection: close\r\n"
            b"Origin: https://app.example\r\n"
            b"Access-Control-Request-Method: POST\r\n\r\n"
        ))
        assert status == 204
        assert headers["access-control-allow-origin"] == "*"
        assert headers["access-control-allow-methods"] == "POST"
