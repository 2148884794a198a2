"""Router implementation for Forge Express.

A Router is a mountable group of middleware and routes. It can be attached
to an application (``App.use_router`` / ``App.use_router_on_path``) or
turned into a plain middleware value with ``as_middleware``.
"""

from typing import List, Optional, Sequence

from forge_express.engine import Layer, Stack
from forge_express.middleware import Middleware
from forge_express.routable import BindFunctions


class Router(BindFunctions):
    """A standalone router.

    Args:
        case_sensitive: Whether ``/Foo`` and ``/foo`` are different paths.
        merge_params: Whether routes see the parameters captured by the
            path the router is mounted on.
        strict: Whether ``/foo`` and ``/foo/`` are different paths.
    """

    def __init__(
        self,
        case_sensitive: bool = False,
        merge_params: bool = False,
        strict: bool = False,
    ) -> None:
        self._stack = Stack(case_sensitive=case_sensitive, merge_params=merge_params, strict=strict)

    @property
    def stack(self) -> Stack:
        return self._stack

    @property
    def routes(self) -> List[str]:
        """Paths of the routes registered directly on this router."""
        return [layer.path for layer in self._stack.layers if layer.route is not None]

    @property
    def layers(self) -> List[Layer]:
        return list(self._stack.layers)

    def register(
        self,
        method: Optional[str],
        path: Optional[str],
        middlewares: Sequence[Middleware],
    ) -> None:
        self._stack.register(method, path, middlewares)

    def register_param(self, name: str, middleware: Middleware) -> None:
        self._stack.register_param(name, middleware)

    def as_middleware(self) -> Middleware:
        """Cast this router to a middleware value.

        Requests the router does not finish continue with the middleware
        registered after it.
        """
        return stack_middleware(self._stack, f"router {id(self):#x}")


def stack_middleware(stack: Stack, name: str) -> Middleware:
    """Wrap a stack's dispatch as a middleware value."""

    def invoke(raw_next, request, response) -> None:
        stack.handle(request, response, raw_next)

    return Middleware(invoke, handles_errors=False, name=name)
