"""
Unit tests for the PathRouter engine.
"""

import pytest

from httpkit.http.params import Param
from httpkit.http.request import HTTPRequest
from httpkit.http.response import BufferedResponseWriter, ResponseWriter, write_text
from httpkit.http.router import PathRouter, compile_route


def make_request(method: str, path: str, query_string: str = "") -> HTTPRequest:
    """Helper to create a request for testing."""
    return HTTPRequest(method=method, path=path, query_string=query_string)


def serve(router: PathRouter, method: str, path: str, query_string: str = "") -> BufferedResponseWriter:
    w = BufferedResponseWriter()
    router(w, make_request(method, path, query_string))
    return w


def named(name: str):
    """Handler that answers with its own name."""
    def handler(w: ResponseWriter, r: HTTPRequest) -> None:
        write_text(w, name)
    return handler


class TestCompileRoute:
    """Tests for pattern compilation."""

    def test_static(self):
        route = compile_route("GET", "/users", named("x"))
        assert route.match("/users") == []
        assert route.match("/users/") is None
        assert route.match("/user") is None

    def test_param(self):
        route = compile_route("GET", "/users/:id/posts/:post", named("x"))
        params = route.match("/users/42/posts/7")

        assert params == [Param("id", "42"), Param("post", "7")]
        assert params.by_name("post") == "7"
        assert route.match("/users//posts/7") is None

    def test_catch_all_keeps_leading_slash(self):
        route = compile_route("GET", "/static/*filepath", named("x"))

        assert route.match("/static/css/app.css").by_name("filepath") == "/css/app.css"
        assert route.match("/static/").by_name("filepath") == "/"
        assert route.match("/static") is None

    def test_special_characters_are_literal(self):
        route = compile_route("GET", "/v1.0/items", named("x"))
        assert route.match("/v1.0/items") is not None
        assert route.match("/v1x0/items") is None

    @pytest.mark.parametrize("pattern", [
        "users",            # not rooted
        "/users/:",         # empty name
        "/a/:id/b/:id",     # duplicate name
        "/files/*path/x",   # catch-all not last
    ])
    def test_invalid_patterns(self, pattern: str):
        with pytest.raises(ValueError):
            compile_route("GET", pattern, named("x"))

    def test_match_canonical(self):
        route = compile_route("GET", "/Users/:id", named("x"))
        assert route.match_canonical("/users/AbC") == "/Users/AbC"
        assert route.match_canonical("/posts/1") is None


class TestPathRouterMatching:
    """Tests for route matching and dispatch."""

    def test_dispatch_sets_path_params(self):
        router = PathRouter()
        seen = {}

        def handler(w, r):
            seen["params"] = r.path_params

        router.handle("GET", "/users/:id", handler)
        serve(router, "GET", "/users/42")

        assert seen["params"].by_name("id") == "42"

    def test_method_routing(self):
        router = PathRouter()
        router.handle("GET", "/users", named("list"))
        router.handle("POST", "/users", named("create"))

        assert serve(router, "GET", "/users").text == "list"
        assert serve(router, "POST", "/users").text == "create"

    def test_first_registered_wins(self):
        router = PathRouter()
        router.handle("GET", "/users/me", named("me"))
        router.handle("GET", "/users/:id", named("by-id"))

        assert serve(router, "GET", "/users/me").text == "me"
        assert serve(router, "GET", "/users/7").text == "by-id"

    def test_duplicate_route_rejected(self):
        router = PathRouter()
        router.handle("GET", "/users", named("a"))
        with pytest.raises(ValueError):
            router.handle("GET", "/users", named("b"))

    def test_method_is_uppercased(self):
        router = PathRouter()
        router.handle("get", "/x", named("x"))
        assert serve(router, "GET", "/x").text == "x"

    def test_lookup_reports_trailing_slash(self):
        router = PathRouter()
        router.handle("GET", "/users", named("x"))

        route, params, tsr = router.lookup("GET", "/users/")
        assert route is None
        assert tsr is True

    def test_routes_listing(self):
        router = PathRouter()
        router.handle("GET", "/a", named("a"))
        router.handle("POST", "/b", named("b"))
        assert [(r.method, r.pattern) for r in router.routes()] == [("GET", "/a"), ("POST", "/b")]


class TestPathRouterFallbacks:
    """Tests for redirects, OPTIONS, 405 and 404."""

    def test_trailing_slash_redirect_safe_method(self):
        router = PathRouter()
        router.handle("GET", "/users", named("x"))

        w = serve(router, "GET", "/users/", query_string="page=2")

        assert w.status == 301
        assert w.headers.get("Location") == "/users?page=2"

    def test_trailing_slash_redirect_unsafe_method(self):
        router = PathRouter()
        router.handle("POST", "/users/", named("x"))

        w = serve(router, "POST", "/users")

        assert w.status == 307
        assert w.headers.get("Location") == "/users/"

    def test_trailing_slash_redirect_disabled(self):
        router = PathRouter(redirect_trailing_slash=False, redirect_fixed_path=False)
        router.handle("GET", "/users", named("x"))

        assert serve(router, "GET", "/users/").status == 404

    def test_fixed_path_redirect(self):
        router = PathRouter()
        router.handle("GET", "/Users/:id", named("x"))

        w = serve(router, "GET", "//users/../users/./42")

        assert w.status == 301
        assert w.headers.get("Location") == "/Users/42"

    def test_fixed_path_redirect_case_only(self):
        router = PathRouter()
        router.handle("GET", "/docs", named("x"))

        w = serve(router, "GET", "/DOCS")
        assert w.status == 301
        assert w.headers.get("Location") == "/docs"

    def test_redirect_reescapes_decoded_crlf(self):
        router = PathRouter()
        router.handle("GET", "/users/:id", named("x"))

        w = serve(router, "GET", "/users/abc\r\nSet-Cookie: evil=1/")
        raw = w.to_bytes()

        assert w.status == 301
        assert w.headers.get("Location") == "/users/abc%0D%0ASet-Cookie:%20evil=1"
        assert b"\r\nSet-Cookie" not in raw

    def test_redirect_reescapes_decoded_query_mark(self):
        router = PathRouter()
        router.handle("GET", "/docs/:name", named("x"))

        w = serve(router, "GET", "/docs/a b?q/", query_string="x=1")

        assert w.status == 301
        assert w.headers.get("Location") == "/docs/a%20b%3Fq?x=1"

    def test_no_redirect_for_connect(self):
        router = PathRouter()
        router.handle("CONNECT", "/tunnel", named("x"))
        assert serve(router, "CONNECT", "/tunnel/").status == 404

    def test_method_not_allowed(self):
        router = PathRouter()
        router.handle("POST", "/data", named("x"))
        router.handle("PUT", "/data", named("x"))

        w = serve(router, "GET", "/data")

        assert w.status == 405
        assert w.headers.get("Allow") == "OPTIONS, POST, PUT"

    def test_method_not_allowed_custom_handler(self):
        router = PathRouter(method_not_allowed=named("custom-405"))
        router.handle("POST", "/data", named("x"))

        w = serve(router, "GET", "/data")

        assert w.text == "custom-405"
        assert w.headers.get("Allow") == "OPTIONS, POST"

    def test_method_not_allowed_disabled_falls_to_404(self):
        router = PathRouter(handle_method_not_allowed=False)
        router.handle("POST", "/data", named("x"))
        assert serve(router, "GET", "/data").status == 404

    def test_options_auto_answer(self):
        router = PathRouter()
        router.handle("GET", "/data", named("x"))
        router.handle("DELETE", "/data", named("x"))

        w = serve(router, "OPTIONS", "/data")

        assert w.status == 200
        assert w.headers.get("Allow") == "DELETE, GET, OPTIONS"
        assert w.body == b""

    def test_options_global_handler_sees_allow(self):
        seen = {}

        def global_options(w, r):
            seen["allow"] = w.headers.get("Allow")
            w.write_header(204)

        router = PathRouter(global_options=global_options)
        router.handle("GET", "/data", named("x"))

        w = serve(router, "OPTIONS", "/data")

        assert w.status == 204
        assert seen["allow"] == "GET, OPTIONS"

    def test_options_server_wide(self):
        router = PathRouter()
        router.handle("GET", "/a", named("x"))
        router.handle("POST", "/b", named("x"))

        w = serve(router, "OPTIONS", "*")
        assert w.headers.get("Allow") == "GET, OPTIONS, POST"

    def test_explicit_options_route_wins(self):
        router = PathRouter()
        router.handle("GET", "/data", named("get"))
        router.handle("OPTIONS", "/data", named("explicit"))

        assert serve(router, "OPTIONS", "/data").text == "explicit"

    def test_not_found(self):
        router = PathRouter()
        router.handle("POST", "/data", named("x"))

        w = serve(router, "POST", "/data/1")
        assert w.status == 404

    def test_not_found_custom_handler(self):
        router = PathRouter(not_found=named("custom-404"))
        assert serve(router, "GET", "/nothing").text == "custom-404"

    def test_panic_handler_catches(self):
        caught = {}

        def boom(w, r):
            raise RuntimeError("boom")

        def panic_handler(w, r, exc):
            caught["exc"] = exc
            w.write_header(500)

        router = PathRouter(panic_handler=panic_handler)
        router.handle("GET", "/boom", boom)

        w = serve(router, "GET", "/boom")

        assert w.status == 500
        assert str(caught["exc"]) == "boom"

    def test_without_panic_handler_exceptions_propagate(self):
        def boom(w, r):
            raise RuntimeError("boom")

        router = PathRouter()
        router.handle("GET", "/boom", boom)

        with pytest.raises(RuntimeError):
            serve(router, "GET", "/boom")
