"""Typed read access to incoming requests.

The ``Request`` view holds no state of its own; every accessor reads the
engine's ``IncomingRequest`` at call time. Values that may legitimately be
missing come back as ``None``; structural fields are always present.
"""

import enum
import mimetypes
from typing import Any, Dict, List, Optional, Sequence, Tuple

from forge_express.engine import IncomingRequest, request_is_fresh
from forge_express.errors import UnrecognizedValueError


class HttpMethod(enum.Enum):
    """HTTP methods the pipeline recognizes."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    CONNECT = "CONNECT"
    PATCH = "PATCH"

    @classmethod
    def from_string(cls, value: str) -> "HttpMethod":
        """Convert a raw method string by exact, case-insensitive match.

        Raises:
            UnrecognizedValueError: If the string is not one of the known methods.
        """
        try:
            return cls(value.upper())
        except ValueError:
            raise UnrecognizedValueError(f"Unrecognized HTTP method: {value!r}") from None


class Protocol(enum.Enum):
    """Request protocol."""

    HTTP = "http"
    HTTPS = "https"

    @classmethod
    def from_string(cls, value: str) -> "Protocol":
        """Convert a raw scheme string by exact, case-insensitive match.

        Raises:
            UnrecognizedValueError: If the scheme is neither http nor https.
        """
        try:
            return cls(value.lower())
        except ValueError:
            raise UnrecognizedValueError(f"Unrecognized protocol: {value!r}") from None


def _parse_accept(header: str) -> List[Tuple[str, float, int]]:
    """Parse an Accept-style header into (value, quality, position) entries."""
    entries = []
    for position, part in enumerate(header.split(",")):
        pieces = [piece.strip() for piece in part.split(";")]
        value = pieces[0].lower()
        if not value:
            continue
        quality = 1.0
        for parameter in pieces[1:]:
            key, _, raw = parameter.partition("=")
            if key.strip().lower() == "q":
                try:
                    quality = float(raw)
                except ValueError:
                    quality = 0.0
        if quality > 0:
            entries.append((value, quality, position))
    entries.sort(key=lambda entry: (-entry[1], entry[2]))
    return entries


def _media_type_matches(accepted: str, offered: str) -> bool:
    if accepted == "*/*" or accepted == offered:
        return True
    accepted_type, _, accepted_sub = accepted.partition("/")
    offered_type, _, offered_sub = offered.partition("/")
    return accepted_sub == "*" and accepted_type == offered_type


def _normalize_type(value: str) -> str:
    if "/" in value:
        return value.lower()
    guessed, _ = mimetypes.guess_type(f"file.{value.lstrip('.')}")
    return (guessed or value).lower()


class Request:
    """Read-only view over an incoming request."""

    __slots__ = ("_raw",)

    def __init__(self, raw: IncomingRequest) -> None:
        self._raw = raw

    @property
    def raw(self) -> IncomingRequest:
        """The engine's underlying request object."""
        return self._raw

    @property
    def app(self) -> Any:
        """The application handling this request."""
        return self._raw.app

    @property
    def params(self) -> Dict[str, str]:
        """Path parameters captured by the matched route."""
        return dict(self._raw.params)

    @property
    def query(self) -> Dict[str, Any]:
        """Query string parameters; repeated keys map to a list of values."""
        return dict(self._raw.query)

    @property
    def base_url(self) -> str:
        """The path prefix under which the current router was mounted."""
        return self._raw.base_url

    @property
    def original_url(self) -> str:
        return self._raw.original_url

    @property
    def path(self) -> str:
        """The percent-encoded request path relative to the current mount point."""
        return self._raw.path

    @property
    def method_raw(self) -> str:
        return self._raw.method_raw

    @property
    def http_method(self) -> HttpMethod:
        return HttpMethod.from_string(self._raw.method_raw)

    @property
    def protocol(self) -> Protocol:
        return Protocol.from_string(self._raw.scheme)

    @property
    def secure(self) -> bool:
        return self.protocol is Protocol.HTTPS

    @property
    def hostname(self) -> str:
        host = self._raw.headers.get("host", "")
        if host.startswith("["):
            return host[: host.find("]") + 1]
        return host.split(":", 1)[0]

    @property
    def ip(self) -> str:
        return self._raw.client or ""

    @property
    def fresh(self) -> bool:
        """Whether the client's cached response is still valid."""
        return request_is_fresh(self._raw)

    @property
    def stale(self) -> bool:
        return not self.fresh

    @property
    def xhr(self) -> bool:
        requested_with = self._raw.headers.get("x-requested-with", "")
        return requested_with.lower() == "xmlhttprequest"

    @property
    def cookies(self) -> Optional[Dict[str, Any]]:
        """Parsed cookies, or None when no cookie parser ran."""
        return self._raw.cookies

    @property
    def signed_cookies(self) -> Optional[Dict[str, Any]]:
        """Cookies whose signatures verified, or None when no cookie parser ran."""
        return self._raw.signed_cookies

    def _body_of(self, kind: str) -> Any:
        if self._raw.body_kind == kind:
            return self._raw.body
        return None

    @property
    def body_json(self) -> Any:
        """The JSON body, or None when the JSON parser did not parse this request."""
        return self._body_of("json")

    @property
    def body_raw(self) -> Optional[bytes]:
        return self._body_of("raw")

    @property
    def body_text(self) -> Optional[str]:
        return self._body_of("text")

    @property
    def body_url_encoded(self) -> Optional[Dict[str, Any]]:
        return self._body_of("urlencoded")

    def get(self, header: str) -> Optional[str]:
        """Get a request header by case-insensitive name.

        ``Referer`` and ``Referrer`` are interchangeable.
        """
        name = header.lower()
        if name in ("referer", "referrer"):
            return self._raw.headers.get("referer", self._raw.headers.get("referrer"))
        return self._raw.headers.get(name)

    def accepts(self, types: Sequence[str]) -> Optional[str]:
        """Pick the offered content type the client prefers.

        Args:
            types: Offered types, as MIME types ("application/json") or
                extensions ("json").

        Returns:
            The best offered value as given, or None when none is acceptable.
        """
        if not types:
            return None
        header = self._raw.headers.get("accept")
        if not header:
            return types[0]
        offered = [(value, _normalize_type(value)) for value in types]
        for accepted, _, _ in _parse_accept(header):
            for original, normalized in offered:
                if _media_type_matches(accepted, normalized):
                    return original
        return None

    def accepts_charsets(self, charsets: Sequence[str]) -> Optional[str]:
        """Pick the offered charset the client prefers."""
        if not charsets:
            return None
        header = self._raw.headers.get("accept-charset")
        if not header:
            return charsets[0]
        for accepted, _, _ in _parse_accept(header):
            for charset in charsets:
                if accepted == "*" or accepted == charset.lower():
                    return charset
        return None

    def __repr__(self) -> str:
        return f"<Request {self._raw.method} {self._raw.original_url}>"
