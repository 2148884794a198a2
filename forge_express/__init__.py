"""Forge Express - a typed middleware pipeline for HTTP applications.

Handlers are plain or coroutine functions that must either finalize the
response or call ``next``; both produce a ``Complete`` value, so a handler
that forgets to do either fails type checking. Handlers become
``Middleware`` values through an adapter and are composed on an ``App``
or ``Router``.
"""

# Define version
__version__ = "0.1.0"

__all__ = [
    "App",
    "ApplyMiddleware",
    "BindFunctions",
    "ByteLimit",
    "Bytes",
    "Complete",
    "Config",
    "ContinuationError",
    "CookieOptions",
    "Dotfiles",
    "Error",
    "ForgeExpressError",
    "Gb",
    "HttpError",
    "HttpMethod",
    "HttpServer",
    "Kb",
    "Kernel",
    "Mb",
    "Middleware",
    "MiddlewareFactory",
    "Next",
    "PromiseAdapter",
    "Protocol",
    "Request",
    "Response",
    "ResponseAlreadySentError",
    "ROUTE",
    "Router",
    "SameSite",
    "StaticOptions",
    "StatusCode",
    "SyncAdapter",
    "UnrecognizedValueError",
    "cookie_parser",
    "express",
    "make",
    "promise_middleware",
    "static",
    "sync_middleware",
]

from forge_express.app import App, express
from forge_express.byte_limit import ByteLimit, Bytes, Gb, Kb, Mb
from forge_express.complete import Complete
from forge_express.config import Config
from forge_express.continuation import Next
from forge_express.cookie_parser import cookie_parser
from forge_express.cookies import CookieOptions, SameSite
from forge_express.engine import ROUTE
from forge_express.errors import (
    ContinuationError,
    Error,
    ForgeExpressError,
    HttpError,
    ResponseAlreadySentError,
    UnrecognizedValueError,
)
from forge_express.interfaces import ApplyMiddleware
from forge_express.kernel import HttpServer, Kernel
from forge_express.middleware import (
    Middleware,
    MiddlewareFactory,
    PromiseAdapter,
    SyncAdapter,
    make,
    promise_middleware,
    sync_middleware,
)
from forge_express.request import HttpMethod, Protocol, Request
from forge_express.response import Response
from forge_express.routable import BindFunctions
from forge_express.router import Router
from forge_express.static import Dotfiles, StaticOptions, static
from forge_express.status import StatusCode
