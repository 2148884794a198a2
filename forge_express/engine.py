"""Pipeline engine for Forge Express.

This module holds the raw request/response objects the views wrap and the
layer stack that dispatches them. Everything here speaks in raw objects and
untyped ``next`` callables; the typed surface lives in ``request``,
``response``, ``continuation`` and ``middleware``.

Dispatch is synchronous: calling ``next`` runs the next matching layer
immediately, so a chain of handlers that each call ``next`` nests on the
call stack until one of them finalizes the response. Past
``MAX_SYNC_DEPTH`` nested continuations the chain resumes from the event
loop instead.

``IncomingRequest.path`` stays percent-encoded; route parameters are
decoded once, when a layer matches.
"""

import asyncio
import base64
import hashlib
import re
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Pattern, Sequence, Set, Tuple, Union
from urllib.parse import parse_qs, unquote, urlsplit

from multidict import CIMultiDict, CIMultiDictProxy

from forge_express.errors import Error, HttpError, ResponseAlreadySentError

if TYPE_CHECKING:
    from forge_express.middleware import Middleware


class _RouteSignal:
    """Sentinel passed to ``next`` to skip the rest of the current route."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "ROUTE"


ROUTE = _RouteSignal()

NextArg = Union[None, _RouteSignal, Error]
RawNext = Callable[..., Any]
Done = Callable[..., Any]

HeadersInit = Union[Dict[str, str], Sequence[Tuple[str, str]], None]


class IncomingRequest:
    """The engine's mutable representation of an incoming request.

    ``path`` and ``base_url`` change while a request travels through mounted
    routers; ``original_url`` never does.
    """

    def __init__(
        self,
        method: str,
        url: str,
        headers: HeadersInit = None,
        *,
        scheme: str = "http",
        client: Optional[str] = None,
        http_version: str = "1.1",
        receive: Optional[Callable[[], Any]] = None,
        body: Optional[bytes] = None,
        app: Any = None,
    ) -> None:
        parts = urlsplit(url)
        self.method_raw = method
        self.method = method.upper()
        self.original_url = url
        self.path = parts.path or "/"
        self.base_url = ""
        self.query_string = parts.query
        self.headers = CIMultiDictProxy(CIMultiDict(headers or {}))
        self.scheme = scheme
        self.client = client
        self.http_version = http_version
        self.app = app
        self.params: Dict[str, str] = {}
        self.query = parse_query(parts.query)
        self.response: Optional["OutgoingResponse"] = None

        # Populated by collaborator middleware.
        self.body: Any = None
        self.body_kind: Optional[str] = None
        self.cookies: Optional[Dict[str, Any]] = None
        self.signed_cookies: Optional[Dict[str, Any]] = None
        self.secret: Optional[str] = None

        self._receive = receive
        self._raw_body = body
        self._tasks: Set[asyncio.Future] = set()
        self.sync_depth = 0

    def keep(self, task: asyncio.Future) -> None:
        """Hold a reference to a task until it completes."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def read_body(self, limit: Optional[int] = None) -> bytes:
        """Read the complete request body.

        Args:
            limit: Maximum number of bytes to accept, or None for no limit.

        Returns:
            The raw body bytes.

        Raises:
            HttpError: 413 when the body exceeds the limit.
        """
        if self._raw_body is None:
            length = self.headers.get("content-length")
            if limit is not None and length is not None and length.isdigit() and int(length) > limit:
                raise HttpError(413, "request entity too large")

            chunks: List[bytes] = []
            received = 0
            more_body = self._receive is not None
            while more_body:
                message = await self._receive()
                if message["type"] == "http.disconnect":
                    break
                chunk = message.get("body", b"")
                received += len(chunk)
                if limit is not None and received > limit:
                    raise HttpError(413, "request entity too large")
                chunks.append(chunk)
                more_body = message.get("more_body", False)
            self._raw_body = b"".join(chunks)

        if limit is not None and len(self._raw_body) > limit:
            raise HttpError(413, "request entity too large")
        return self._raw_body


class OutgoingResponse:
    """The engine's mutable representation of an outgoing response.

    The response is finalized exactly once, by ``finish`` or
    ``finish_file``. The kernel waits on ``wait_finished`` before writing
    anything to the transport.
    """

    def __init__(self, request: IncomingRequest, etag: bool = True) -> None:
        self.request = request
        self.status_code = 200
        self.headers: CIMultiDict = CIMultiDict()
        self.body = b""
        self.file_path: Optional[Path] = None
        self.etag = etag
        self.finished = False
        self._finished_event = asyncio.Event()
        request.response = self

    @property
    def headers_sent(self) -> bool:
        return self.finished

    def _mark_finished(self) -> None:
        if self.finished:
            raise ResponseAlreadySentError("Cannot finalize a response that was already sent")
        self.finished = True

    def finish(self, body: bytes = b"") -> None:
        """Finalize the response with an in-memory body."""
        self._mark_finished()
        if self.etag and body and "ETag" not in self.headers:
            self.headers["ETag"] = weak_etag(body)
        if request_is_fresh(self.request):
            self.status_code = 304
            body = b""
        self.body = body
        self._finished_event.set()

    def finish_file(self, path: Path) -> None:
        """Finalize the response with a file the kernel streams from disk."""
        self._mark_finished()
        if request_is_fresh(self.request):
            self.status_code = 304
        else:
            self.file_path = path
        self._finished_event.set()

    async def wait_finished(self) -> None:
        await self._finished_event.wait()


def weak_etag(body: bytes) -> str:
    """Compute a weak ETag from the body length and its SHA-1 digest."""
    digest = base64.b64encode(hashlib.sha1(body).digest()).decode("ascii")[:27]
    return f'W/"{len(body):x}-{digest}"'


def _parse_http_date(value: str):
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def is_fresh(request_headers, response_headers) -> bool:
    """Check conditional request headers against the response validators."""
    modified_since = request_headers.get("if-modified-since")
    none_match = request_headers.get("if-none-match")
    if not modified_since and not none_match:
        return False

    cache_control = request_headers.get("cache-control")
    if cache_control and re.search(r"(?:^|,)\s*no-cache\s*(?:,|$)", cache_control):
        return False

    if none_match and none_match != "*":
        etag = response_headers.get("etag")
        if not etag:
            return False
        tokens = [token.strip() for token in none_match.split(",")]
        if not any(token in (etag, f"W/{etag}") or f"W/{token}" == etag for token in tokens):
            return False

    if modified_since:
        last_modified = response_headers.get("last-modified")
        if not last_modified:
            return False
        last = _parse_http_date(last_modified)
        since = _parse_http_date(modified_since)
        if last is None or since is None or last > since:
            return False

    return True


def request_is_fresh(request: IncomingRequest) -> bool:
    """Whether the client's cached copy is still valid for this response."""
    response = request.response
    if response is None or request.method not in ("GET", "HEAD"):
        return False
    status = response.status_code
    if (200 <= status < 300) or status == 304:
        return is_fresh(request.headers, response.headers)
    return False


MAX_SYNC_DEPTH = 50


def bounded_next(request: IncomingRequest, step: Callable[[NextArg], Any]) -> RawNext:
    """Wrap a dispatch step so deep synchronous chains resume on the event loop.

    Every ``next`` call nests one more handler on the call stack. Once
    ``MAX_SYNC_DEPTH`` continuations are in flight for a request, the next
    one is scheduled with ``call_soon`` so the stack unwinds first.
    """

    def next_(err: NextArg = None) -> Any:
        if request.sync_depth >= MAX_SYNC_DEPTH:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                loop.call_soon(next_, err)
                return None
        request.sync_depth += 1
        try:
            return step(err)
        finally:
            request.sync_depth -= 1

    return next_


def parse_query(query_string: str) -> Dict[str, Any]:
    parsed = parse_qs(query_string, keep_blank_values=True)
    return {k: v[0] if len(v) == 1 else v for k, v in parsed.items()}


_TOKEN = re.compile(r":(\w+)(\?)?|(\*)")


def compile_path(
    path: str,
    *,
    end: bool = True,
    case_sensitive: bool = False,
    strict: bool = False,
) -> Tuple[Pattern, List[str]]:
    """Compile an Express-style path into a regex and its parameter names.

    Supported syntax is ``:name`` for a segment parameter, ``:name?`` for an
    optional one, and ``*`` for a greedy wildcard (named ``"0"``, ``"1"``...).

    Args:
        path: The path pattern.
        end: Whether the whole request path must match, or only a prefix.
        case_sensitive: Whether literal segments match case-sensitively.
        strict: Whether a trailing slash is significant.

    Returns:
        A compiled pattern and the ordered parameter names.
    """
    keys: List[str] = []
    pattern = ""
    position = 0
    wildcards = 0
    for token in _TOKEN.finditer(path):
        pattern += re.escape(path[position:token.start()])
        position = token.end()
        name, optional, star = token.groups()
        if star:
            keys.append(str(wildcards))
            wildcards += 1
            pattern += "(.*)"
        elif optional:
            keys.append(name)
            if pattern.endswith("/"):
                pattern = pattern[:-1] + "(?:/([^/]+?))?"
            else:
                pattern += "([^/]+?)?"
        else:
            keys.append(name)
            pattern += "([^/]+?)"
    pattern += re.escape(path[position:])

    if not strict:
        pattern += "?" if pattern.endswith("/") else "/?"
    if end:
        pattern += "$"
    elif not pattern.endswith("/"):
        pattern += "(?=/|$)"

    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile("^" + pattern, flags), keys


class Route:
    """An ordered group of handlers registered together for one path.

    ``next(ROUTE)`` from any of them leaves the group and resumes the
    enclosing stack.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.methods: Set[str] = set()
        self.layers: List["Layer"] = []

    def add(self, method: str, middlewares: Sequence["Middleware"]) -> None:
        method = method.upper()
        self.methods.add(method)
        for middleware in middlewares:
            self.layers.append(Layer("/", middleware, method=method))

    def handles_method(self, method: str) -> bool:
        if method in self.methods:
            return True
        return method == "HEAD" and "GET" in self.methods

    def dispatch(self, request: IncomingRequest, response: OutgoingResponse, done: Done) -> None:
        index = 0
        method = request.method
        if method == "HEAD" and "HEAD" not in self.methods:
            method = "GET"

        def step(err: NextArg = None) -> None:
            nonlocal index
            if err is ROUTE:
                return done()
            while index < len(self.layers):
                layer = self.layers[index]
                index += 1
                if layer.method != method:
                    continue
                if err is not None:
                    return layer.handle_error(err, request, response, next_)
                return layer.handle_request(request, response, next_)
            return done(err)

        next_ = bounded_next(request, step)
        next_()


class Layer:
    """A single entry of a stack: a path matcher plus a middleware or a route."""

    def __init__(
        self,
        path: str,
        middleware: Optional["Middleware"] = None,
        *,
        route: Optional[Route] = None,
        method: Optional[str] = None,
        end: bool = True,
        case_sensitive: bool = False,
        strict: bool = False,
    ) -> None:
        self.path = path
        self.middleware = middleware
        self.route = route
        self.method = method
        self._match_all = path == "/" and not end
        self.regex, self.keys = compile_path(
            path, end=end, case_sensitive=case_sensitive, strict=strict
        )

    def match(self, path: str) -> Optional[Tuple[str, Dict[str, str]]]:
        """Match a request path.

        Returns:
            The matched prefix and the decoded parameters, or None.
        """
        if self._match_all:
            return "", {}
        found = self.regex.match(path)
        if found is None:
            return None
        params = {
            key: unquote(value)
            for key, value in zip(self.keys, found.groups())
            if value is not None
        }
        return found.group(0), params

    def handle_request(self, request: IncomingRequest, response: OutgoingResponse, next_: RawNext) -> None:
        try:
            if self.route is not None:
                self.route.dispatch(request, response, next_)
            elif self.middleware.handles_errors:
                next_()
            else:
                self.middleware.invoke(next_, request, response)
        except Exception as exc:
            next_(Error.wrap(exc))

    def handle_error(
        self, error: Error, request: IncomingRequest, response: OutgoingResponse, next_: RawNext
    ) -> None:
        if self.middleware is None or not self.middleware.handles_errors:
            return next_(error)
        try:
            self.middleware.invoke_error(next_, error, request, response)
        except Exception as exc:
            next_(Error.wrap(exc))


class Stack:
    """An ordered list of layers with Express dispatch semantics.

    Layers run in registration order. While an error is in flight, only
    error-handling middleware runs; otherwise error-handling middleware is
    skipped. Mounted layers see ``path`` with their prefix stripped and
    ``base_url`` extended by it.
    """

    def __init__(self, case_sensitive: bool = False, merge_params: bool = False, strict: bool = False) -> None:
        self.case_sensitive = case_sensitive
        self.merge_params = merge_params
        self.strict = strict
        self.layers: List[Layer] = []
        self.params: Dict[str, List["Middleware"]] = {}

    def register(
        self,
        method: Optional[str],
        path: Optional[str],
        middlewares: Sequence["Middleware"],
    ) -> None:
        """Register middleware for a method and path.

        Args:
            method: HTTP method, or None for use-style registration that
                matches every method and any path below ``path``.
            path: Path pattern, or None for every path.
            middlewares: Middleware to run, in order.
        """
        path = path or "/"
        if method is None:
            for middleware in middlewares:
                self.layers.append(Layer(
                    path,
                    middleware,
                    end=False,
                    case_sensitive=self.case_sensitive,
                    strict=False,
                ))
            return

        route = Route(path)
        route.add(method, middlewares)
        self.layers.append(Layer(
            path,
            route=route,
            end=True,
            case_sensitive=self.case_sensitive,
            strict=self.strict,
        ))

    def register_param(self, name: str, middleware: "Middleware") -> None:
        """Run middleware whenever a matched layer captures parameter ``name``."""
        self.params.setdefault(name, []).append(middleware)

    def _next_match(self, start: int, path: str, method: str, error: Optional[Error]):
        index = start
        while index < len(self.layers):
            layer = self.layers[index]
            index += 1
            match = layer.match(path)
            if match is None:
                continue
            if layer.route is not None:
                if error is not None or not layer.route.handles_method(method):
                    continue
            return index, layer, match
        return index, None, None

    def handle(self, request: IncomingRequest, response: OutgoingResponse, out: Done) -> None:
        """Dispatch a request through the stack, calling ``out`` when it falls off the end."""
        index = 0
        saved_path: Optional[str] = None
        parent_url = request.base_url
        parent_path = request.path
        parent_params = request.params
        param_called: Dict[str, Dict[str, Any]] = {}

        def done(err: Optional[Error] = None) -> None:
            request.base_url = parent_url
            request.path = parent_path
            request.params = parent_params
            out(err)

        def step(err: NextArg = None) -> None:
            nonlocal index, saved_path
            layer_error = None if err is ROUTE else err

            if saved_path is not None:
                request.base_url = parent_url
                request.path = saved_path
                saved_path = None

            path = request.path
            index, layer, match = self._next_match(index, path, request.method, layer_error)
            if layer is None:
                return done(layer_error)

            matched, params = match
            request.params = {**parent_params, **params} if self.merge_params else params

            def after_params(param_err: NextArg = None) -> None:
                nonlocal saved_path
                if param_err is not None:
                    return next_(layer_error or param_err)
                if layer.route is not None:
                    return layer.handle_request(request, response, next_)

                if matched:
                    saved_path = path
                    rest = path[len(matched):]
                    request.path = rest if rest.startswith("/") else "/" + rest
                    request.base_url = parent_url + matched.rstrip("/")

                if layer_error is not None:
                    layer.handle_error(layer_error, request, response, next_)
                else:
                    layer.handle_request(request, response, next_)

            self._process_params(layer, param_called, request, response, after_params)

        next_ = bounded_next(request, step)
        next_()

    def _process_params(
        self,
        layer: Layer,
        called: Dict[str, Dict[str, Any]],
        request: IncomingRequest,
        response: OutgoingResponse,
        done: Done,
    ) -> None:
        keys = [key for key in layer.keys if key in self.params]
        if not keys:
            return done()

        key_index = 0

        def param(err: NextArg = None) -> None:
            nonlocal key_index
            if err is not None:
                return done(err)
            if key_index >= len(keys):
                return done()
            name = keys[key_index]
            key_index += 1
            value = request.params.get(name)
            if value is None:
                return param()

            previous = called.get(name)
            if previous is not None and (previous["value"] == value or previous["error"] not in (None, ROUTE)):
                return param(previous["error"])

            state = {"value": value, "error": None}
            called[name] = state
            callbacks = list(self.params[name])
            callback_index = 0

            def param_callback(err: NextArg = None) -> None:
                nonlocal callback_index
                if err is not None:
                    state["error"] = err
                    return param(err)
                if callback_index >= len(callbacks):
                    return param()
                middleware = callbacks[callback_index]
                callback_index += 1
                if middleware.handles_errors:
                    return param_callback()
                try:
                    middleware.invoke(param_callback, request, response)
                except Exception as exc:
                    param_callback(Error.wrap(exc))

            param_callback()

        param()
