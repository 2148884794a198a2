"""HTTP kernel for Forge Express.

This module connects the pipeline to ASGI. The ``Kernel`` turns each HTTP
scope into engine objects, runs the application's stack, waits until some
middleware finalizes the response and writes it out. ``HttpServer`` serves
an application with hypercorn.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional
from urllib.parse import quote

from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from forge_express.engine import IncomingRequest, OutgoingResponse
from forge_express.errors import Error, HttpError
from forge_express.logger import logger
from forge_express.status import phrase_for

if TYPE_CHECKING:
    from forge_express.app import App

Scope = Dict[str, Any]
Receive = Callable[[], Any]
Send = Callable[[Dict[str, Any]], Any]

_BODYLESS_HEADERS = ("Content-Type", "Content-Length", "Transfer-Encoding")


class Kernel:
    """ASGI entry point for an application."""

    def __init__(self, app: "App") -> None:
        """Initialize a new kernel.

        Args:
            app: The application whose stack handles requests.
        """
        self._app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
        elif scope["type"] == "http":
            await self._handle_request(scope, receive, send)
        else:
            raise ValueError(f"Unsupported ASGI scope type: {scope['type']}")

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = self._create_request(scope, receive)
        response = OutgoingResponse(request, etag=self._app.config.get("http__etag", True))

        self._app.handle(request, response, self._final_handler(request, response))
        await response.wait_finished()
        await self._send_response(request, response, send)

        logger.debug(
            "request completed",
            method=request.method,
            path=request.original_url,
            status=response.status_code,
        )

    def _create_request(self, scope: Scope, receive: Receive) -> IncomingRequest:
        """Create a request object from an ASGI scope and receive function."""
        raw_path = scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else quote(scope.get("path", "/"))
        query_string = scope.get("query_string", b"").decode("latin-1")
        url = f"{path}?{query_string}" if query_string else path

        headers = [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in scope.get("headers", [])
        ]
        client = scope.get("client")
        return IncomingRequest(
            scope.get("method", "GET"),
            url,
            headers,
            scheme=scope.get("scheme", "http"),
            client=client[0] if client else None,
            http_version=scope.get("http_version", "1.1"),
            receive=receive,
            app=self._app,
        )

    def _final_handler(self, request: IncomingRequest, response: OutgoingResponse) -> Callable[..., None]:
        """Build the handler that runs when a request falls off the end of the stack."""

        def done(error: Optional[Error] = None) -> None:
            if error is not None:
                self._handle_error(error, request, response)
            else:
                self._handle_not_found(request, response)

        return done

    def _handle_not_found(self, request: IncomingRequest, response: OutgoingResponse) -> None:
        if response.finished:
            return
        response.status_code = 404
        response.headers.clear()
        response.headers["Content-Type"] = "text/plain; charset=utf-8"
        response.finish(f"Cannot {request.method} {request.path}".encode("utf-8"))

    def _handle_error(self, error: Error, request: IncomingRequest, response: OutgoingResponse) -> None:
        status = error.status or 500
        logger.error(
            "unhandled error",
            method=request.method,
            path=request.original_url,
            status=status,
            error=error.name,
            exc_info=error.exception,
        )
        if response.finished:
            return

        if self._app.config.debug or (isinstance(error.exception, HttpError) and status < 500):
            body = error.message or phrase_for(status)
        else:
            body = phrase_for(status)

        response.status_code = status
        response.headers.clear()
        response.headers["Content-Type"] = "text/plain; charset=utf-8"
        response.finish(body.encode("utf-8"))

    async def _send_response(self, request: IncomingRequest, response: OutgoingResponse, send: Send) -> None:
        """Write a finalized response using an ASGI send function."""
        body = response.body
        if response.file_path is not None:
            body = await asyncio.to_thread(response.file_path.read_bytes)

        status = response.status_code
        headers = response.headers.copy()
        if status in (204, 304) or 100 <= status < 200:
            for name in _BODYLESS_HEADERS:
                headers.popall(name, None)
            body = b""
        else:
            headers["Content-Length"] = str(len(body))

        if request.method == "HEAD":
            body = b""

        await send({
            "type": "http.response.start",
            "status": status,
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in headers.items()
            ],
        })
        await send({"type": "http.response.body", "body": body})


class HttpServer:
    """A running (or runnable) hypercorn server for an application.

    Events: ``listening`` once the server has started, ``close`` when it
    shuts down, ``error`` if serving fails, and ``request`` for every HTTP
    request with the raw ASGI scope.
    """

    def __init__(
        self,
        app: "App",
        hostname: str,
        port: int,
        on_listen: Optional[Callable[[Optional[BaseException]], None]] = None,
    ) -> None:
        self._app = app
        self._hostname = hostname
        self._port = port
        self._on_listen = on_listen
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}
        self._shutdown = asyncio.Event()
        self._listening = False
        self._task: Optional[asyncio.Task] = None

        self._config = HypercornConfig()
        self._config.bind = [f"{hostname}:{port}"]
        self._config.use_reloader = False

    @property
    def address(self) -> str:
        return f"{self._hostname}:{self._port}"

    @property
    def listening(self) -> bool:
        return self._listening

    def on(self, event: str, callback: Callable[..., Any]) -> "HttpServer":
        """Subscribe to a server event."""
        self._listeners.setdefault(event, []).append(callback)
        return self

    def _emit(self, event: str, *args: Any) -> None:
        for callback in self._listeners.get(event, []):
            callback(*args)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "lifespan":
            if scope["type"] == "http":
                self._emit("request", scope)
            await self._app(scope, receive, send)
            return

        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                self._listening = True
                logger.info("server listening", address=self.address)
                if self._on_listen is not None:
                    self._on_listen(None)
                self._emit("listening")
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                self._listening = False
                logger.info("server closed", address=self.address)
                self._emit("close")
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def serve(self) -> None:
        """Serve until ``close`` is called."""
        try:
            await serve(self, self._config, shutdown_trigger=self._shutdown.wait, mode="asgi")
        except Exception as exc:
            logger.error("server failed", address=self.address, exc_info=exc)
            if not self._listening and self._on_listen is not None:
                self._on_listen(exc)
            self._emit("error", exc)
            raise

    def start(self) -> "asyncio.Task":
        """Serve in the background on the running event loop."""
        self._task = asyncio.get_running_loop().create_task(self.serve())
        return self._task

    def run(self) -> None:
        """Serve in the foreground until ``close`` is called or the process is interrupted."""
        try:
            asyncio.run(self.serve())
        except KeyboardInterrupt:
            logger.info("server interrupted", address=self.address)

    def close(self) -> None:
        """Ask the server to shut down gracefully."""
        self._shutdown.set()
