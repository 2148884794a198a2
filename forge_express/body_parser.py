"""Request body parsers.

Each factory returns a promise middleware that reads the body of matching
requests, stores the parsed payload on the request and continues. A parser
leaves a request alone when another parser already handled it, when the
request has no body, or when its Content-Type does not match ``type``, so
at most one body payload is ever present.

Failures are reported through the error chain as ``HttpError``: 413 for a
body over the limit, 400 for a malformed body, 415 for an unsupported
encoding or charset.
"""

import codecs
import zlib
from fnmatch import fnmatchcase
from typing import Any, Callable, List, Optional, Sequence, Union
from urllib.parse import parse_qsl

import orjson

from forge_express.byte_limit import ByteLimit, Kb, to_bytes
from forge_express.complete import Complete
from forge_express.continuation import Next
from forge_express.engine import IncomingRequest
from forge_express.errors import HttpError
from forge_express.middleware import Middleware, promise_middleware
from forge_express.request import Request
from forge_express.response import Response, lookup_type

DEFAULT_LIMIT = Kb(100)

TypeMatch = Union[str, Sequence[str]]
Decoder = Callable[[bytes, Optional[str]], Any]


def _patterns(type_: TypeMatch) -> List[str]:
    values = [type_] if isinstance(type_, str) else list(type_)
    return [lookup_type(value).lower() for value in values]


def _has_body(request: IncomingRequest) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    length = request.headers.get("content-length")
    return length is not None and length.strip().isdigit()


def _content_type(request: IncomingRequest):
    header = request.headers.get("content-type", "")
    media_type, _, rest = header.partition(";")
    charset = None
    for param in rest.split(";"):
        key, _, value = param.strip().partition("=")
        if key.lower() == "charset" and value:
            charset = value.strip('"').lower()
    return media_type.strip().lower(), charset


def _inflate(data: bytes, encoding: str, inflate: bool) -> bytes:
    if encoding == "identity":
        return data
    if encoding not in ("gzip", "deflate"):
        raise HttpError(415, f'unsupported content encoding "{encoding}"')
    if not inflate:
        raise HttpError(415, f'content encoding "{encoding}" not allowed')
    try:
        # Automatic header detection accepts both gzip and zlib streams.
        return zlib.decompress(data, 32 + zlib.MAX_WBITS)
    except zlib.error as exc:
        raise HttpError(400, "invalid compressed request body") from exc


def _decode_text(data: bytes, charset: str) -> str:
    try:
        codecs.lookup(charset)
    except LookupError as exc:
        raise HttpError(415, f'unsupported charset "{charset.upper()}"') from exc
    try:
        return data.decode(charset)
    except UnicodeDecodeError as exc:
        raise HttpError(400, f"request body is not valid {charset}") from exc


def _parser(kind: str, limit: ByteLimit, inflate: bool, type_: TypeMatch, decode: Decoder) -> Middleware:
    limit_bytes = to_bytes(limit)
    patterns = _patterns(type_)

    async def parse(next: Next, request: Request, response: Response) -> Complete:
        raw = request.raw
        if raw.body_kind is not None or not _has_body(raw):
            return next()
        media_type, charset = _content_type(raw)
        if not media_type or not any(fnmatchcase(media_type, pattern) for pattern in patterns):
            return next()

        data = await raw.read_body(limit_bytes)
        encoding = raw.headers.get("content-encoding", "identity").strip().lower()
        data = _inflate(data, encoding, inflate)
        if len(data) > limit_bytes:
            raise HttpError(413, "request entity too large")

        raw.body = decode(data, charset)
        raw.body_kind = kind
        return next()

    parse.__qualname__ = f"{kind}_parser"
    return promise_middleware.from_(parse)


def json(
    limit: ByteLimit = DEFAULT_LIMIT,
    inflate: bool = True,
    strict: bool = True,
    type: TypeMatch = "application/json",
) -> Middleware:
    """Parse JSON bodies into ``Request.body_json``.

    Args:
        limit: Maximum body size.
        inflate: Whether gzip and deflate bodies are decompressed.
        strict: Only accept objects and arrays at the top level.
        type: Media type pattern(s) to parse.
    """

    def decode(data: bytes, charset: Optional[str]) -> Any:
        if charset is not None and not charset.startswith("utf-"):
            raise HttpError(415, f'unsupported charset "{charset.upper()}"')
        if not data.strip():
            return {}
        if strict and data.lstrip()[:1] not in (b"{", b"["):
            raise HttpError(400, "JSON body must be an object or an array")
        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as exc:
            raise HttpError(400, f"invalid JSON body: {exc}") from exc

    return _parser("json", limit, inflate, type, decode)


def urlencoded(
    limit: ByteLimit = DEFAULT_LIMIT,
    inflate: bool = True,
    parameter_limit: int = 1000,
    type: TypeMatch = "application/x-www-form-urlencoded",
) -> Middleware:
    """Parse form bodies into ``Request.body_url_encoded``.

    Repeated keys become lists.

    Args:
        limit: Maximum body size.
        inflate: Whether gzip and deflate bodies are decompressed.
        parameter_limit: Maximum number of parameters.
        type: Media type pattern(s) to parse.
    """

    def decode(data: bytes, charset: Optional[str]) -> Any:
        text = _decode_text(data, charset or "utf-8")
        if text.count("&") + 1 > parameter_limit:
            raise HttpError(413, "too many parameters")
        result = {}
        for key, value in parse_qsl(text, keep_blank_values=True):
            if key not in result:
                result[key] = value
            elif isinstance(result[key], list):
                result[key].append(value)
            else:
                result[key] = [result[key], value]
        return result

    return _parser("urlencoded", limit, inflate, type, decode)


def raw(
    limit: ByteLimit = DEFAULT_LIMIT,
    inflate: bool = True,
    type: TypeMatch = "application/octet-stream",
) -> Middleware:
    """Keep bodies as bytes in ``Request.body_raw``."""
    return _parser("raw", limit, inflate, type, lambda data, charset: data)


def text(
    limit: ByteLimit = DEFAULT_LIMIT,
    inflate: bool = True,
    default_charset: str = "utf-8",
    type: TypeMatch = "text/plain",
) -> Middleware:
    """Decode bodies into ``Request.body_text``.

    The charset from the Content-Type header wins over ``default_charset``.
    """
    return _parser("text", limit, inflate, type, lambda data, charset: _decode_text(data, charset or default_charset))
