"""Tests for the Request and Response views."""

from datetime import datetime, timezone

import pytest

from forge_express.app import App
from forge_express.config import Config
from forge_express.cookies import CookieOptions, SameSite
from forge_express.errors import ForgeExpressError, HttpError, ResponseAlreadySentError, UnrecognizedValueError
from forge_express.request import HttpMethod, Protocol, Request
from forge_express.response import Response
from forge_express.status import StatusCode


def test_request_basic_accessors(raw_factory):
    """Test the structural fields of a request."""
    raw, _ = raw_factory(
        "get",
        "/search/a%20b?q=forge&tag=x&tag=y",
        headers={"Host": "example.com:8080", "X-Requested-With": "XMLHttpRequest"},
    )
    request = Request(raw)

    assert request.method_raw == "get"
    assert request.http_method is HttpMethod.GET
    assert request.path == "/search/a%20b"
    assert request.original_url == "/search/a%20b?q=forge&tag=x&tag=y"
    assert request.base_url == ""
    assert request.query == {"q": "forge", "tag": ["x", "y"]}
    assert request.params == {}
    assert request.hostname == "example.com"
    assert request.ip == ""
    assert request.xhr is True
    assert request.protocol is Protocol.HTTP
    assert request.secure is False


def test_request_secure_protocol(raw_factory):
    """Test that the https scheme is reported as secure."""
    raw, _ = raw_factory(scheme="https")
    request = Request(raw)
    assert request.protocol is Protocol.HTTPS
    assert request.secure is True


def test_unrecognized_method(raw_factory):
    """Test that an unknown method string is rejected with a ValueError."""
    raw, _ = raw_factory("PROPFIND")
    request = Request(raw)
    assert request.method_raw == "PROPFIND"
    with pytest.raises(UnrecognizedValueError):
        request.http_method
    with pytest.raises(ValueError):
        HttpMethod.from_string("BREW")
    assert HttpMethod.from_string("patch") is HttpMethod.PATCH


def test_unrecognized_protocol():
    """Test that only http and https are known protocols."""
    assert Protocol.from_string("HTTPS") is Protocol.HTTPS
    with pytest.raises(UnrecognizedValueError):
        Protocol.from_string("ws")


def test_request_header_lookup(raw_factory):
    """Test case-insensitive header lookup and the referrer alias."""
    raw, _ = raw_factory(headers={"Referer": "https://example.com/", "X-Trace": "abc"})
    request = Request(raw)
    assert request.get("x-trace") == "abc"
    assert request.get("Referrer") == "https://example.com/"
    assert request.get("X-Missing") is None


def test_request_accepts(raw_factory):
    """Test content negotiation against the Accept header."""
    raw, _ = raw_factory(headers={"Accept": "application/json;q=0.5, text/html"})
    request = Request(raw)
    assert request.accepts(["json", "html"]) == "html"
    assert request.accepts(["application/json"]) == "application/json"
    assert request.accepts(["image/png"]) is None

    raw, _ = raw_factory()
    assert Request(raw).accepts(["json", "html"]) == "json"

    raw, _ = raw_factory(headers={"Accept": "text/*"})
    assert Request(raw).accepts(["json", "text/plain"]) == "text/plain"


def test_request_accepts_charsets(raw_factory):
    """Test charset negotiation."""
    raw, _ = raw_factory(headers={"Accept-Charset": "iso-8859-1;q=0.2, utf-8"})
    request = Request(raw)
    assert request.accepts_charsets(["iso-8859-1", "utf-8"]) == "utf-8"
    assert request.accepts_charsets(["utf-16"]) is None


def test_request_body_payloads(raw_factory):
    """Test that only the payload of the parser that ran is visible."""
    raw, _ = raw_factory("POST")
    request = Request(raw)
    assert request.body_json is None
    assert request.body_text is None

    raw.body = {"name": "forge"}
    raw.body_kind = "json"
    assert request.body_json == {"name": "forge"}
    assert request.body_text is None
    assert request.body_raw is None
    assert request.body_url_encoded is None


def test_request_cookies_absent_without_parser(raw_factory):
    """Test that cookies are None until a cookie parser runs."""
    raw, _ = raw_factory(headers={"Cookie": "a=1"})
    request = Request(raw)
    assert request.cookies is None
    assert request.signed_cookies is None


def test_request_freshness(raw_factory):
    """Test that a matching If-None-Match makes a GET fresh."""
    raw, raw_response = raw_factory(headers={"If-None-Match": '"v1"'})
    raw_response.headers["ETag"] = '"v1"'
    request = Request(raw)
    assert request.fresh is True
    assert request.stale is False

    raw_response.headers["ETag"] = '"v2"'
    assert request.fresh is False


def test_send_string(raw_factory):
    """Test sending an HTML string."""
    _, raw_response = raw_factory()
    Response(raw_response).send_string("pong")

    assert raw_response.finished is True
    assert raw_response.status_code == 200
    assert raw_response.body == b"pong"
    assert raw_response.headers["Content-Type"] == "text/html; charset=utf-8"
    assert raw_response.headers["ETag"].startswith('W/"4-')


def test_mutators_chain(raw_factory):
    """Test that mutators return the view and the last write wins."""
    _, raw_response = raw_factory()
    response = Response(raw_response)

    result = (
        response.set_header("X-Version", "1")
        .set_header("X-Version", "2")
        .status(StatusCode.CREATED)
        .set_type("json")
        .set_links({"next": "/page/2", "last": "/page/9"})
    )
    assert result is response
    assert raw_response.headers["X-Version"] == "2"
    assert raw_response.status_code == 201
    assert raw_response.headers["Content-Type"] == "application/json"
    assert raw_response.headers["Link"] == '</page/2>; rel="next", </page/9>; rel="last"'
    assert response.headers_sent is False


def test_send_json_and_array(raw_factory):
    """Test JSON finalizers."""
    _, raw_response = raw_factory()
    Response(raw_response).send_json({"ok": True})
    assert raw_response.body == b'{"ok":true}'
    assert raw_response.headers["Content-Type"] == "application/json; charset=utf-8"

    _, raw_response = raw_factory()
    Response(raw_response).send_array([1, "two", None])
    assert raw_response.body == b'[1,"two",null]'


def test_send_buffer(raw_factory):
    """Test sending bytes."""
    _, raw_response = raw_factory()
    Response(raw_response).send_buffer(bytearray(b"\x00\x01"))
    assert raw_response.body == b"\x00\x01"
    assert raw_response.headers["Content-Type"] == "application/octet-stream"


def test_send_status(raw_factory):
    """Test that send_status answers with the reason phrase."""
    _, raw_response = raw_factory()
    Response(raw_response).send_status(StatusCode.NOT_FOUND)
    assert raw_response.status_code == 404
    assert raw_response.body == b"Not Found"
    assert raw_response.headers["Content-Type"] == "text/plain; charset=utf-8"

    _, raw_response = raw_factory()
    Response(raw_response).send_raw_status(299)
    assert raw_response.status_code == 299
    assert raw_response.body == b"299"


def test_raw_status_then_send(raw_factory):
    """Test that raw_status followed by a finalizer keeps the status."""
    _, raw_response = raw_factory()
    Response(raw_response).raw_status(404).send_string("missing")
    assert raw_response.status_code == 404
    assert raw_response.body == b"missing"


def test_redirects(raw_factory):
    """Test redirect finalizers."""
    _, raw_response = raw_factory()
    Response(raw_response).redirect("/login")
    assert raw_response.status_code == 302
    assert raw_response.headers["Location"] == "/login"

    _, raw_response = raw_factory()
    Response(raw_response).redirect_code(301, "/new")
    assert raw_response.status_code == 301
    assert raw_response.body == b"Moved Permanently. Redirecting to /new"


def test_double_finalization_is_rejected(raw_factory):
    """Test that the engine refuses to finalize a response twice."""
    _, raw_response = raw_factory()
    response = Response(raw_response)
    response.send_string("first")
    with pytest.raises(ResponseAlreadySentError):
        response.send_string("second")
    assert raw_response.body == b"first"


def test_fresh_get_is_answered_not_modified(raw_factory):
    """Test that a body matching the client's ETag turns into a 304."""
    _, raw_response = raw_factory()
    Response(raw_response).send_string("cached")
    etag = raw_response.headers["ETag"]

    _, raw_response = raw_factory(headers={"If-None-Match": etag})
    Response(raw_response).send_string("cached")
    assert raw_response.status_code == 304
    assert raw_response.body == b""


def test_cookies(raw_factory):
    """Test setting and clearing cookies."""
    _, raw_response = raw_factory()
    Response(raw_response).cookie(
        "session",
        "abc 123",
        CookieOptions(http_only=True, same_site=SameSite.LAX, path="/app"),
    ).cookie("prefs", {"theme": "dark"}).clear_cookie("old")

    cookies = raw_response.headers.getall("Set-Cookie")
    assert cookies[0] == "session=abc%20123; Path=/app; HttpOnly; SameSite=Lax"
    assert cookies[1].startswith("prefs=j%3A%7B%22theme%22%3A%22dark%22%7D; Path=/")
    assert cookies[2] == "old=; Path=/; Expires=Thu, 01 Jan 1970 00:00:00 GMT"


def test_cookie_max_age(raw_factory):
    """Test that max_age is given in milliseconds and also sets Expires."""
    _, raw_response = raw_factory()
    Response(raw_response).cookie("a", "1", CookieOptions(max_age=60000))
    header = raw_response.headers["Set-Cookie"]
    assert "Max-Age=60; " in header
    assert "Expires=" in header


def test_signed_cookie_uses_app_secret(raw_factory):
    """Test that signed cookies are signed with the configured secret."""
    config = Config()
    config.set("secret_key", "s3cret")
    app = App(config=config)
    _, raw_response = raw_factory(app=app)
    Response(raw_response).cookie("user", "tobi", CookieOptions(signed=True))
    assert raw_response.headers["Set-Cookie"].startswith("user=s%3Atobi.")


def test_signed_cookie_without_secret(raw_factory):
    """Test that signing without any secret is an error."""
    _, raw_response = raw_factory()
    with pytest.raises(ForgeExpressError):
        Response(raw_response).cookie("user", "tobi", CookieOptions(signed=True))


def test_send_file(raw_factory, tmp_path):
    """Test sending a file from disk."""
    path = tmp_path / "hello.txt"
    path.write_text("hello")
    _, raw_response = raw_factory()
    Response(raw_response).send_file(str(path), max_age=3600000)

    assert raw_response.file_path == path
    assert raw_response.headers["Content-Type"].startswith("text/plain")
    assert raw_response.headers["Cache-Control"] == "public, max-age=3600"
    assert "Last-Modified" in raw_response.headers
    assert raw_response.headers["ETag"].startswith('W/"5-')


def test_send_file_requires_absolute_path(raw_factory, tmp_path):
    """Test that relative paths need a root and cannot escape it."""
    _, raw_response = raw_factory()
    response = Response(raw_response)
    with pytest.raises(TypeError):
        response.send_file("hello.txt")
    with pytest.raises(HttpError) as excinfo:
        response.send_file("../etc/passwd", root=tmp_path)
    assert excinfo.value.status == 403
    with pytest.raises(HttpError) as excinfo:
        response.send_file("missing.txt", root=tmp_path)
    assert excinfo.value.status == 404


def test_render_uses_app_renderer(raw_factory):
    """Test that render delegates to the application's renderer."""
    app = App()
    app.set_renderer(lambda view, context: f"<h1>{view}:{context['name']}</h1>")
    _, raw_response = raw_factory(app=app)
    Response(raw_response).render("index", {"name": "forge"})
    assert raw_response.body == b"<h1>index:forge</h1>"
    assert raw_response.headers["Content-Type"] == "text/html; charset=utf-8"


def test_render_default_template(raw_factory, tmp_path):
    """Test the file-based default renderer."""
    (tmp_path / "hello.html").write_text("<p>Hello $name</p>")
    config = Config()
    config.set("views__path", str(tmp_path))
    app = App(config=config)
    _, raw_response = raw_factory(app=app)
    Response(raw_response).render("hello", {"name": "world"})
    assert raw_response.body == b"<p>Hello world</p>"


def test_cookie_expires(raw_factory):
    """Test an absolute expiry time."""
    _, raw_response = raw_factory()
    moment = datetime(2030, 5, 1, 12, 0, tzinfo=timezone.utc)
    Response(raw_response).cookie("a", "1", CookieOptions(expires_gmt=moment, secure=True))
    assert raw_response.headers["Set-Cookie"] == "a=1; Path=/; Expires=Wed, 01 May 2030 12:00:00 GMT; Secure"
