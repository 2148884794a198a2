"""Cookie serialization, signing and parsing."""

import base64
import enum
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, unquote

import orjson


class SameSite(enum.Enum):
    """Values of the SameSite cookie attribute."""

    LAX = "Lax"
    STRICT = "Strict"
    NONE = "None"


@dataclass(frozen=True)
class CookieOptions:
    """Options for setting or clearing a cookie.

    A field left as None is not sent, so the client (or engine) default
    applies. The only engine default is ``path``, which becomes ``/``.

    Attributes:
        max_age: Lifetime in milliseconds. Also sets ``Expires``.
        expires_gmt: Absolute expiry time.
        http_only: Hide the cookie from client-side scripts.
        secure: Only send the cookie over HTTPS.
        signed: Sign the value with the application secret.
        path: Path scope of the cookie.
        same_site: SameSite policy.
        domain: Domain scope of the cookie.
    """

    max_age: Optional[int] = None
    expires_gmt: Optional[datetime] = None
    http_only: Optional[bool] = None
    secure: Optional[bool] = None
    signed: Optional[bool] = None
    path: Optional[str] = None
    same_site: Optional[SameSite] = None
    domain: Optional[str] = None


_SAFE = "!~*'()"


def sign(value: str, secret: str) -> str:
    """Append an HMAC-SHA256 signature to a value."""
    mac = hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).digest()
    return f"{value}.{base64.b64encode(mac).decode('ascii').rstrip('=')}"


def unsign(signed_value: str, secret: str) -> Optional[str]:
    """Verify a signed value and return the original, or None if tampered."""
    value, separator, _ = signed_value.rpartition(".")
    if not separator:
        return None
    if hmac.compare_digest(sign(value, secret), signed_value):
        return value
    return None


def _http_date(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def encode_value(value: Any) -> str:
    """Encode a cookie value; non-string values are stored as ``j:<json>``."""
    if isinstance(value, str):
        return value
    return "j:" + orjson.dumps(value).decode("utf-8")


def serialize(name: str, value: str, options: CookieOptions, now: Optional[datetime] = None) -> str:
    """Build a Set-Cookie header value.

    Args:
        name: Cookie name.
        value: Already-encoded (and, if requested, signed) value.
        options: Cookie attributes.
        now: Reference time for ``max_age``; defaults to the current time.

    Returns:
        The header value.
    """
    parts = [f"{name}={quote(value, safe=_SAFE)}"]

    expires = options.expires_gmt
    if options.max_age is not None:
        moment = now or datetime.now(timezone.utc)
        expires = moment + timedelta(milliseconds=options.max_age)
        parts.append(f"Max-Age={int(options.max_age // 1000)}")

    if options.domain:
        parts.append(f"Domain={options.domain}")
    parts.append(f"Path={options.path if options.path is not None else '/'}")
    if expires is not None:
        parts.append(f"Expires={_http_date(expires)}")
    if options.http_only:
        parts.append("HttpOnly")
    if options.secure:
        parts.append("Secure")
    if options.same_site is not None:
        parts.append(f"SameSite={options.same_site.value}")
    return "; ".join(parts)


def parse_cookie_header(header: str) -> Dict[str, str]:
    """Parse a Cookie request header; the first occurrence of a name wins."""
    cookies: Dict[str, str] = {}
    for pair in header.split(";"):
        name, separator, value = pair.partition("=")
        name = name.strip()
        if not separator or not name or name in cookies:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        cookies[name] = unquote(value)
    return cookies


def decode_json_cookie(value: str) -> Any:
    """Decode a ``j:`` prefixed cookie, leaving other values untouched."""
    if not value.startswith("j:"):
        return value
    try:
        return orjson.loads(value[2:])
    except orjson.JSONDecodeError:
        return value


def split_signed(cookies: Dict[str, str], secret: Optional[str]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Separate signed cookies from plain ones.

    Signed cookies (``s:`` prefix) that verify land in the second mapping
    with their original value; ones that fail verification map to False.
    Without a secret, nothing is treated as signed.
    """
    plain: Dict[str, Any] = {}
    signed: Dict[str, Any] = {}
    for name, value in cookies.items():
        if secret and value.startswith("s:"):
            original = unsign(value[2:], secret)
            signed[name] = decode_json_cookie(original) if original is not None else False
        else:
            plain[name] = decode_json_cookie(value)
    return plain, signed


def expired_options(options: CookieOptions) -> CookieOptions:
    """Options that make a client drop a cookie, keeping its scope attributes."""
    return CookieOptions(
        expires_gmt=datetime(1970, 1, 1, tzinfo=timezone.utc),
        http_only=options.http_only,
        secure=options.secure,
        path=options.path,
        same_site=options.same_site,
        domain=options.domain,
    )
