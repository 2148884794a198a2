"""Tests for middleware values, adapters and the continuation."""

import asyncio

import pytest
from structlog.testing import capture_logs

from forge_express.complete import Complete
from forge_express.continuation import Next, Signal, classify
from forge_express.engine import ROUTE
from forge_express.errors import ContinuationError, Error
from forge_express.middleware import (
    Middleware,
    PromiseAdapter,
    SyncAdapter,
    make,
    promise_middleware,
    sync_middleware,
)


class RecordingAdapter:
    """Adapter for handlers that return nothing and always advance afterwards."""

    def __init__(self, events):
        self.events = events

    def apply(self, f, next, request, response) -> Complete:
        self.events.append("adapter")
        f(request)
        return next()

    def apply_with_error(self, f, next, error, request, response) -> Complete:
        f(error)
        return next(error)


def test_middleware_is_immutable():
    """Test that middleware values cannot be modified."""
    middleware = sync_middleware.from_(lambda next, req, res: next())
    with pytest.raises(AttributeError):
        middleware.name = "changed"
    with pytest.raises(AttributeError):
        middleware.extra = True


def test_factories_build_middleware():
    """Test the two constructors of a factory."""
    def handler(next, req, res):
        return next()

    def error_handler(next, err, req, res):
        return next(err)

    normal = sync_middleware.from_(handler)
    errors = sync_middleware.from_error(error_handler)

    assert isinstance(normal, Middleware)
    assert normal.handles_errors is False
    assert errors.handles_errors is True
    assert normal.name.endswith("handler")
    assert "error" in repr(errors)


def test_make_accepts_any_adapter():
    """Test that make builds a factory from an adapter object."""
    factory = make(SyncAdapter())
    assert isinstance(factory.from_(lambda next, req, res: next()), Middleware)
    assert isinstance(make(PromiseAdapter()).from_error(lambda next, err, req, res: next()), Middleware)


def test_classify_continuation_arguments():
    """Test the mapping from continuation arguments to signals."""
    assert classify(None) is Signal.ADVANCE
    assert classify(ROUTE) is Signal.SKIP_ROUTE
    assert classify(ValueError("boom")) is Signal.ERROR
    assert classify(Error(ValueError("boom"))) is Signal.ERROR
    with pytest.raises(TypeError):
        classify("route")


def test_next_forwards_signals():
    """Test what the continuation hands to the engine."""
    calls = []
    raw_next = lambda *args: calls.append(args)

    assert isinstance(Next(raw_next)(), Complete)
    Next(raw_next)(Next.route)
    error = ValueError("boom")
    Next(raw_next)(error)

    assert calls[0] == ()
    assert calls[1] == (ROUTE,)
    assert isinstance(calls[2][0], Error)
    assert calls[2][0].exception is error


def test_next_rejects_second_call():
    """Test that a continuation fires at most once."""
    next = Next(lambda *args: None)
    assert next.called is False
    next()
    assert next.called is True
    with pytest.raises(ContinuationError):
        next()


def test_error_value_wrapping():
    """Test the accessors of the error value."""
    exc = KeyError("missing")
    error = Next.error(exc)
    assert error.exception is exc
    assert error.name == "KeyError"
    assert error.message == "'missing'"
    assert error.status is None
    assert Error.wrap(error) is error
    assert Error(RuntimeError()).message is None


async def test_adapter_transparency(app, client):
    """Test that middleware from different adapters compose identically."""
    events = []

    def sync_step(next, req, res):
        events.append("sync")
        return next()

    async def promise_step(next, req, res):
        await asyncio.sleep(0)
        events.append("promise")
        return next()

    recording = make(RecordingAdapter(events))

    def finish(next, req, res):
        events.append("finish")
        return res.send_string("ok")

    app.get_with_many("/mixed", [
        sync_middleware.from_(sync_step),
        promise_middleware.from_(promise_step),
        recording.from_(lambda req: events.append("custom")),
        sync_middleware.from_(finish),
    ])

    response = await client.get("/mixed")

    assert response.status == 200
    assert response.text == "ok"
    assert events == ["sync", "promise", "adapter", "custom", "finish"]


async def test_finalization_short_circuits(app, client):
    """Test that handlers after the one that finalizes never run."""
    calls = []

    def h1(next, req, res):
        calls.append("h1")
        return next()

    def h2(next, req, res):
        calls.append("h2")
        return res.send_string("stopped")

    def h3(next, req, res):
        calls.append("h3")
        return res.send_string("unreachable")

    app.get_with_many("/chain", [
        sync_middleware.from_(h1),
        sync_middleware.from_(h2),
        sync_middleware.from_(h3),
    ])

    response = await client.get("/chain")

    assert response.text == "stopped"
    assert calls == ["h1", "h2"]


async def test_error_signal_skips_normal_middleware(app, client):
    """Test that an error goes to the next error handler with the same value."""
    failure = ValueError("bad input")
    seen = {}

    def fail(next, req, res):
        return next(failure)

    def skipped(next, req, res):
        seen["skipped"] = True
        return res.send_string("wrong")

    def handle(next, err, req, res):
        seen["error"] = err
        return res.raw_status(422).send_string(err.message)

    app.use(sync_middleware.from_(fail))
    app.use(sync_middleware.from_(skipped))
    app.use(sync_middleware.from_error(handle))

    response = await client.get("/anything")

    assert response.status == 422
    assert response.text == "bad input"
    assert "skipped" not in seen
    assert seen["error"].exception is failure


async def test_error_handlers_are_skipped_without_error(app, client):
    """Test that error middleware does not run for successful requests."""
    calls = []

    def handle(next, err, req, res):
        calls.append("error")
        return next(err)

    app.use(sync_middleware.from_error(handle))
    app.get("/ok", sync_middleware.from_(lambda next, req, res: res.send_string("fine")))

    response = await client.get("/ok")

    assert response.text == "fine"
    assert calls == []


async def test_promise_rejection_reaches_error_handler(app, client):
    """Test that a rejected coroutine is routed to the error chain."""
    failure = RuntimeError("database unavailable")
    seen = {}

    async def load(next, req, res):
        await asyncio.sleep(0)
        raise failure

    async def recover(next, err, req, res):
        seen["exception"] = err.exception
        return res.raw_status(503).send_json({"error": err.message})

    app.get("/data", promise_middleware.from_(load))
    app.use(promise_middleware.from_error(recover))

    response = await client.get("/data")

    assert response.status == 503
    assert response.json() == {"error": "database unavailable"}
    assert seen["exception"] is failure


async def test_sync_throw_reaches_error_handler(app, client):
    """Test that a synchronous exception is routed to the error chain."""
    def explode(next, req, res):
        raise LookupError("no such thing")

    def recover(next, err, req, res):
        return res.raw_status(500).send_string(f"{err.name}: {err.message}")

    app.get("/explode", sync_middleware.from_(explode))
    app.use(sync_middleware.from_error(recover))

    response = await client.get("/explode")

    assert response.status == 500
    assert response.text == "LookupError: no such thing"


async def test_error_handler_can_pass_error_on(app, client):
    """Test that error handlers can forward the error to later error handlers."""
    calls = []

    def fail(next, req, res):
        return next(ValueError("first"))

    def annotate(next, err, req, res):
        calls.append("annotate")
        res.set_header("X-Annotated", "yes")
        return next(err)

    def finish(next, err, req, res):
        calls.append("finish")
        return res.raw_status(400).send_string(err.message)

    app.use(sync_middleware.from_(fail))
    app.use(sync_middleware.from_error(annotate))
    app.use(sync_middleware.from_error(finish))

    response = await client.get("/")

    assert calls == ["annotate", "finish"]
    assert response.status == 400
    assert response.headers["X-Annotated"] == "yes"


async def test_rejection_after_next_is_logged(app, client):
    """Test that a coroutine failing after it forwarded is logged, not re-dispatched."""
    async def forward_then_fail(next, req, res):
        next()
        raise RuntimeError("late failure")

    app.use(promise_middleware.from_(forward_then_fail))
    app.get("/late", sync_middleware.from_(lambda next, req, res: res.send_string("done")))

    with capture_logs() as logs:
        response = await client.get("/late")
        await asyncio.sleep(0.01)

    assert response.text == "done"
    assert any(entry["event"] == "handler failed after calling next" for entry in logs)
