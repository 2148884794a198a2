"""Core application class for Forge Express.

This module provides the App class, the entry point for every Forge Express
application. An App is a routable stack of middleware, an ASGI application
and the owner of the configuration and dependency injection container.
"""

import asyncio
from pathlib import Path
from string import Template
from typing import Any, Callable, Dict, Optional, Sequence

from kink import Container

from forge_express.config import Config
from forge_express.engine import Done, IncomingRequest, OutgoingResponse, Stack
from forge_express.kernel import HttpServer, Kernel
from forge_express.logger import LoggerConfig, LogLevel, setup_logging
from forge_express.middleware import Middleware
from forge_express.routable import BindFunctions
from forge_express.router import Router, stack_middleware

Renderer = Callable[[str, Dict[str, Any]], str]
OnListen = Callable[[Optional[BaseException]], None]


class App(BindFunctions):
    """Main application class for Forge Express.

    Besides the binding operations shared with ``Router``, an App can mount
    routers, be mounted itself (``as_middleware``), render views and listen
    for HTTP connections. It is also an ASGI 3 application, so any ASGI
    server can run it.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        container: Optional[Container] = None,
    ) -> None:
        """Initialize a new application.

        Args:
            config: Optional configuration object. If not provided, default config is used.
            container: Optional dependency injection container. If not provided, a new one is created.
        """
        self._config = config or Config()
        self._container = container or Container()
        # The container calls callable services, and an App is an ASGI callable.
        self._container.factories[App] = lambda _: self
        self._container[Config] = self._config

        setup_logging(LoggerConfig(
            debug=self._config.debug,
            log_level=LogLevel(self._config.log_level.upper()),
        ))

        router_options = self._config.router
        self._stack = Stack(
            case_sensitive=router_options.get("case_sensitive", False),
            strict=router_options.get("strict", False),
        )
        self._kernel = Kernel(self)
        self._renderer: Renderer = self._render_file

    @classmethod
    def create(cls, **kwargs: Any) -> "App":
        """Create a new application instance.

        Args:
            **kwargs: Additional arguments to pass to the App constructor.

        Returns:
            A new App instance.
        """
        return cls(**kwargs)

    def register(
        self,
        method: Optional[str],
        path: Optional[str],
        middlewares: Sequence[Middleware],
    ) -> None:
        self._stack.register(method, path, middlewares)

    def register_param(self, name: str, middleware: Middleware) -> None:
        self._stack.register_param(name, middleware)

    def use_router(self, router: Router) -> "App":
        """Mount a router for every path."""
        return self.use(router.as_middleware())

    def use_router_on_path(self, path: str, router: Router) -> "App":
        """Mount a router below ``path``.

        Inside the router, ``path`` is stripped from the request path and
        appended to ``base_url``.
        """
        return self.use_on_path(path, router.as_middleware())

    def as_middleware(self) -> Middleware:
        """Cast this application to a middleware value so it can be mounted in another."""
        return stack_middleware(self._stack, f"app {id(self):#x}")

    def handle(self, request: IncomingRequest, response: OutgoingResponse, done: Done) -> None:
        """Dispatch a raw request through the application's stack."""
        self._stack.handle(request, response, done)

    async def __call__(self, scope: Dict[str, Any], receive: Callable, send: Callable) -> None:
        await self._kernel(scope, receive, send)

    def listen(
        self,
        port: Optional[int] = None,
        hostname: Optional[str] = None,
        on_listen: Optional[OnListen] = None,
    ) -> HttpServer:
        """Start accepting HTTP connections.

        Inside a running event loop the server starts in the background and
        the handle is returned immediately. Otherwise this call serves in
        the foreground until the server is closed.

        Args:
            port: Port to bind. Defaults to ``http.port`` from the config.
            hostname: Host to bind. Defaults to ``http.host`` from the config.
            on_listen: Called with None once listening, or with the exception
                if the server could not start.

        Returns:
            The server handle.
        """
        http = self._config.http
        server = HttpServer(
            self,
            hostname or http.get("host", "0.0.0.0"),
            port if port is not None else http.get("port", 3000),
            on_listen,
        )
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            server.run()
        else:
            server.start()
        return server

    def set_renderer(self, renderer: Renderer) -> "App":
        """Replace the view renderer used by ``Response.render``."""
        self._renderer = renderer
        return self

    def render(self, view: str, context: Dict[str, Any]) -> str:
        """Render a view to a string."""
        return self._renderer(view, context)

    def _render_file(self, view: str, context: Dict[str, Any]) -> str:
        views = self._config.views
        path = Path(views.get("path", "views")) / view
        if not path.suffix:
            path = path.with_suffix("." + views.get("extension", "html"))
        return Template(path.read_text(encoding="utf-8")).safe_substitute(context)

    @property
    def config(self) -> Config:
        """Get the application configuration."""
        return self._config

    @property
    def container(self) -> Container:
        """Get the dependency injection container."""
        return self._container

    @property
    def kernel(self) -> Kernel:
        return self._kernel

    @property
    def stack(self) -> Stack:
        return self._stack

    @property
    def routes(self):
        """Paths of the routes registered directly on the application."""
        return [layer.path for layer in self._stack.layers if layer.route is not None]


def express(config: Optional[Config] = None) -> App:
    """Create an application, Express style."""
    return App.create(config=config)
