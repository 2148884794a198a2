"""Middleware values and the adapters that build them.

A ``Middleware`` is the opaque unit everything downstream works with:
registration, composition and dispatch never look at the handler it came
from. Handlers of a particular calling convention become middleware
through an adapter (``ApplyMiddleware``) and ``make``, which turns any
adapter into a factory with ``from_`` and ``from_error``.

Two factories ship with the package::

    sync_middleware.from_(handler)           # def handler(next, req, res) -> Complete
    promise_middleware.from_(handler)        # async def handler(next, req, res) -> Complete

Error handlers take the error value between ``next`` and the request and
are built with ``from_error``.
"""

import asyncio
import functools
from typing import Any, Awaitable, Callable, Generic, TypeVar

from typing_extensions import final

from forge_express.complete import Complete, _complete
from forge_express.continuation import Next
from forge_express.engine import IncomingRequest, OutgoingResponse, RawNext
from forge_express.errors import Error
from forge_express.interfaces import ApplyMiddleware
from forge_express.logger import logger
from forge_express.request import Request
from forge_express.response import Response

F = TypeVar("F")
EF = TypeVar("EF")

Handler = Callable[[Next, Request, Response], Complete]
ErrorHandler = Callable[[Next, Error, Request, Response], Complete]
PromiseHandler = Callable[[Next, Request, Response], Awaitable[Complete]]
PromiseErrorHandler = Callable[[Next, Error, Request, Response], Awaitable[Complete]]

Invoke = Callable[..., Any]


def _name_of(handler: Any) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


@final
class Middleware:
    """An immutable, shape-erased unit of request processing.

    Build instances with a factory (``sync_middleware``,
    ``promise_middleware`` or one returned by ``make``) rather than
    directly. The ``invoke`` methods are the engine's entry points.
    """

    __slots__ = ("_invoke", "_handles_errors", "_name")

    def __init__(self, invoke: Invoke, *, handles_errors: bool, name: str) -> None:
        object.__setattr__(self, "_invoke", invoke)
        object.__setattr__(self, "_handles_errors", handles_errors)
        object.__setattr__(self, "_name", name)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Middleware values are immutable")

    @property
    def handles_errors(self) -> bool:
        """Whether this middleware belongs to the error-handling chain."""
        return self._handles_errors

    @property
    def name(self) -> str:
        return self._name

    def invoke(self, raw_next: RawNext, request: IncomingRequest, response: OutgoingResponse) -> None:
        self._invoke(raw_next, request, response)

    def invoke_error(
        self,
        raw_next: RawNext,
        error: Error,
        request: IncomingRequest,
        response: OutgoingResponse,
    ) -> None:
        self._invoke(raw_next, error, request, response)

    def __repr__(self) -> str:
        kind = "error " if self._handles_errors else ""
        return f"<Middleware {kind}{self._name}>"


class MiddlewareFactory(Generic[F, EF]):
    """Builds ``Middleware`` values from handlers of one calling convention."""

    def __init__(self, adapter: ApplyMiddleware[F, EF]) -> None:
        self._adapter = adapter

    def from_(self, f: F) -> Middleware:
        """Wrap a normal handler."""
        adapter = self._adapter

        def invoke(raw_next: RawNext, request: IncomingRequest, response: OutgoingResponse) -> None:
            adapter.apply(f, Next(raw_next), Request(request), Response(response))

        return Middleware(invoke, handles_errors=False, name=_name_of(f))

    def from_error(self, f: EF) -> Middleware:
        """Wrap an error handler. It only ever runs while an error is in flight."""
        adapter = self._adapter

        def invoke(
            raw_next: RawNext,
            error: Error,
            request: IncomingRequest,
            response: OutgoingResponse,
        ) -> None:
            adapter.apply_with_error(f, Next(raw_next), error, Request(request), Response(response))

        return Middleware(invoke, handles_errors=True, name=_name_of(f))


def make(adapter: ApplyMiddleware[F, EF]) -> MiddlewareFactory[F, EF]:
    """Build a middleware factory from an adapter."""
    return MiddlewareFactory(adapter)


class SyncAdapter:
    """Adapter for plain functions returning ``Complete``.

    Exceptions raised by the handler are not caught here; the engine routes
    them to the error chain.
    """

    def apply(self, f: Handler, next: Next, request: Request, response: Response) -> Complete:
        return f(next, request, response)

    def apply_with_error(
        self, f: ErrorHandler, next: Next, error: Error, request: Request, response: Response
    ) -> Complete:
        return f(next, error, request, response)


class PromiseAdapter:
    """Adapter for coroutine functions resolving to ``Complete``.

    The coroutine runs as a task owned by the request. If it raises, the
    exception is passed to ``next`` so the error chain handles it.
    """

    def apply(self, f: PromiseHandler, next: Next, request: Request, response: Response) -> Complete:
        return self._settle(f(next, request, response), next, request)

    def apply_with_error(
        self, f: PromiseErrorHandler, next: Next, error: Error, request: Request, response: Response
    ) -> Complete:
        return self._settle(f(next, error, request, response), next, request)

    def _settle(self, awaitable: Awaitable[Complete], next: Next, request: Request) -> Complete:
        task = asyncio.ensure_future(awaitable)
        request.raw.keep(task)
        task.add_done_callback(functools.partial(self._on_settled, next, request))
        return _complete()

    @staticmethod
    def _on_settled(next: Next, request: Request, task: "asyncio.Future[Complete]") -> None:
        if task.cancelled():
            logger.warning("handler task cancelled", method=request.method_raw, path=request.original_url)
            return
        exception = task.exception()
        if exception is None:
            return
        if next.called:
            logger.error(
                "handler failed after calling next",
                method=request.method_raw,
                path=request.original_url,
                exc_info=exception,
            )
            return
        next(exception)


sync_middleware: MiddlewareFactory[Handler, ErrorHandler] = make(SyncAdapter())
promise_middleware: MiddlewareFactory[PromiseHandler, PromiseErrorHandler] = make(PromiseAdapter())
