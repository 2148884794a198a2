"""Typed write access to outgoing responses.

Mutators return the view itself so calls can be chained. Finalizers write
the body, hand the response to the engine and return ``Complete``; the
engine rejects a second finalization with ``ResponseAlreadySentError``.
"""

import mimetypes
import os
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import orjson

from forge_express.complete import Complete, _complete
from forge_express.cookies import CookieOptions, encode_value, expired_options, serialize, sign
from forge_express.engine import OutgoingResponse
from forge_express.errors import ForgeExpressError, HttpError
from forge_express.status import StatusCode, phrase_for

JSON_TYPE = "application/json; charset=utf-8"
HTML_TYPE = "text/html; charset=utf-8"
TEXT_TYPE = "text/plain; charset=utf-8"
BINARY_TYPE = "application/octet-stream"


def lookup_type(value: str) -> str:
    """Resolve a MIME type from a type or a file extension."""
    if "/" in value:
        return value
    guessed, _ = mimetypes.guess_type(f"file.{value.lstrip('.')}")
    return guessed or BINARY_TYPE


def apply_file_headers(
    raw: OutgoingResponse,
    path: Path,
    stat: os.stat_result,
    *,
    etag: bool = True,
    last_modified: bool = True,
    max_age: int = 0,
    immutable: bool = False,
) -> None:
    """Set the headers that describe a file body.

    Args:
        raw: Response to modify.
        path: The file being sent.
        stat: The file's stat result.
        etag: Whether to set a weak ETag from size and mtime.
        last_modified: Whether to set Last-Modified.
        max_age: Cache lifetime in milliseconds.
        immutable: Whether to add the immutable Cache-Control directive.
    """
    if "Content-Type" not in raw.headers:
        guessed, _ = mimetypes.guess_type(path.name)
        raw.headers["Content-Type"] = guessed or BINARY_TYPE
    if "Cache-Control" not in raw.headers:
        cache_control = f"public, max-age={max(0, int(max_age // 1000))}"
        if immutable:
            cache_control += ", immutable"
        raw.headers["Cache-Control"] = cache_control
    if last_modified and "Last-Modified" not in raw.headers:
        moment = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        raw.headers["Last-Modified"] = format_datetime(moment, usegmt=True)
    if etag and "ETag" not in raw.headers:
        raw.headers["ETag"] = f'W/"{stat.st_size:x}-{int(stat.st_mtime * 1000):x}"'


class Response:
    """Chainable view over an outgoing response."""

    __slots__ = ("_raw",)

    def __init__(self, raw: OutgoingResponse) -> None:
        self._raw = raw

    @property
    def raw(self) -> OutgoingResponse:
        """The engine's underlying response object."""
        return self._raw

    @property
    def headers_sent(self) -> bool:
        return self._raw.headers_sent

    @property
    def status_code(self) -> int:
        return self._raw.status_code

    def get_header(self, name: str) -> Optional[str]:
        return self._raw.headers.get(name)

    # Mutators

    def set_header(self, name: str, value: str) -> "Response":
        """Set a header, replacing any previous value."""
        self._raw.headers[name] = value
        return self

    def status(self, code: StatusCode) -> "Response":
        self._raw.status_code = int(code)
        return self

    def raw_status(self, code: int) -> "Response":
        """Set the status from a bare integer."""
        self._raw.status_code = code
        return self

    def set_type(self, type_: str) -> "Response":
        """Set Content-Type from a MIME type or an extension such as ``"json"``."""
        self._raw.headers["Content-Type"] = lookup_type(type_)
        return self

    def set_links(self, links: Mapping[str, str]) -> "Response":
        """Add a Link header, e.g. ``{"next": "/page/2"}``."""
        value = ", ".join(f'<{url}>; rel="{rel}"' for rel, url in links.items())
        existing = self._raw.headers.get("Link")
        self._raw.headers["Link"] = f"{existing}, {value}" if existing else value
        return self

    def cookie(self, name: str, value: Any, options: Optional[CookieOptions] = None) -> "Response":
        """Set a cookie.

        Non-string values are stored as JSON. Signed cookies need the secret
        given to ``cookie_parser`` or the ``secret_key`` setting.

        Raises:
            ForgeExpressError: If a signed cookie is requested without a secret.
        """
        options = options or CookieOptions()
        encoded = encode_value(value)
        if options.signed:
            secret = self._secret()
            if not secret:
                raise ForgeExpressError("cookie_parser(secret) required for signed cookies")
            encoded = "s:" + sign(encoded, secret)
        self._raw.headers.add("Set-Cookie", serialize(name, encoded, options))
        return self

    def clear_cookie(self, name: str, options: Optional[CookieOptions] = None) -> "Response":
        """Expire a cookie; scope options must match those it was set with."""
        cleared = expired_options(options or CookieOptions())
        self._raw.headers.add("Set-Cookie", serialize(name, "", cleared))
        return self

    def _secret(self) -> Optional[str]:
        request = self._raw.request
        if request.secret:
            return request.secret
        app = request.app
        if app is not None:
            return app.config.secret_key or None
        return None

    # Finalizers

    def _send(self, body: bytes, default_type: Optional[str]) -> Complete:
        if default_type and "Content-Type" not in self._raw.headers:
            self._raw.headers["Content-Type"] = default_type
        self._raw.finish(body)
        return _complete()

    def send_string(self, body: str) -> Complete:
        return self._send(body.encode("utf-8"), HTML_TYPE)

    def send_json(self, value: Any) -> Complete:
        return self._send(orjson.dumps(value), JSON_TYPE)

    def send_buffer(self, data: Union[bytes, bytearray, memoryview]) -> Complete:
        return self._send(bytes(data), BINARY_TYPE)

    def send_array(self, values: Sequence[Any]) -> Complete:
        return self._send(orjson.dumps(list(values)), JSON_TYPE)

    def send_status(self, code: StatusCode) -> Complete:
        """Set the status and send its reason phrase as the body."""
        return self.send_raw_status(int(code))

    def send_raw_status(self, code: int) -> Complete:
        self._raw.status_code = code
        self._raw.headers["Content-Type"] = TEXT_TYPE
        return self._send(phrase_for(code).encode("utf-8"), None)

    def redirect(self, url: str) -> Complete:
        return self.redirect_code(302, url)

    def redirect_code(self, code: int, url: str) -> Complete:
        """Redirect with an explicit status code."""
        self._raw.status_code = code
        self._raw.headers["Location"] = url
        self._raw.headers["Content-Type"] = TEXT_TYPE
        return self._send(f"{phrase_for(code)}. Redirecting to {url}".encode("utf-8"), None)

    def end(self) -> Complete:
        """Finalize with an empty body."""
        self._raw.finish(b"")
        return _complete()

    def send_file(
        self,
        path: Union[str, Path],
        *,
        root: Optional[Union[str, Path]] = None,
        headers: Optional[Dict[str, str]] = None,
        max_age: int = 0,
        last_modified: bool = True,
    ) -> Complete:
        """Send a file from disk.

        Args:
            path: File to send. Must be absolute unless ``root`` is given.
            root: Directory that a relative ``path`` is resolved against.
            headers: Extra headers to set.
            max_age: Cache lifetime in milliseconds.
            last_modified: Whether to send Last-Modified.

        Raises:
            TypeError: If ``path`` is relative and no root is given.
            HttpError: 404 when the file does not exist.
        """
        path = Path(path)
        if root is not None:
            base = Path(root).resolve()
            path = (base / path).resolve()
            if base != path and base not in path.parents:
                raise HttpError(403, "Forbidden")
        elif not path.is_absolute():
            raise TypeError("path must be absolute or specify root to send_file")

        if not path.is_file():
            raise HttpError(404, "Not Found")

        for name, value in (headers or {}).items():
            self._raw.headers[name] = value
        apply_file_headers(
            self._raw,
            path,
            path.stat(),
            etag=self._raw.etag,
            last_modified=last_modified,
            max_age=max_age,
        )
        self._raw.finish_file(path)
        return _complete()

    def render(self, view: str, context: Optional[Dict[str, Any]] = None) -> Complete:
        """Render a view with the application's renderer and send it as HTML."""
        app = self._raw.request.app
        if app is None:
            raise ForgeExpressError("render requires a response owned by an App")
        return self.send_string(app.render(view, context or {}))

    def __repr__(self) -> str:
        return f"<Response {self._raw.status_code}>"
