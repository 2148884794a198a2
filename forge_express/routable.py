"""Binding operations derived from a single registration primitive.

Any class that implements ``register`` and ``register_param`` (the
``RegisterMiddleware`` protocol) can inherit ``BindFunctions`` and gets
``use``, ``use_with_many``, ``use_on_path``, ``use_on_path_with_many``,
``param`` and, for each of GET, POST, PUT, PATCH, DELETE and OPTIONS, a
single-middleware and a ``*_with_many`` binding. ``App`` and ``Router``
both get their routing surface this way.
"""

import abc
from typing import Callable, List, Optional, Sequence, TypeVar

from forge_express.middleware import Middleware

T = TypeVar("T", bound="BindFunctions")


def _checked(middlewares: Sequence[Middleware]) -> List[Middleware]:
    checked = list(middlewares)
    if not checked:
        raise ValueError("At least one middleware is required")
    for middleware in checked:
        if not isinstance(middleware, Middleware):
            raise TypeError(
                f"Expected a Middleware value, got {type(middleware).__name__}; "
                "wrap handlers with sync_middleware.from_ or promise_middleware.from_"
            )
    return checked


def _bind_one(method: str) -> Callable[..., "BindFunctions"]:
    def bind(self: T, path: str, middleware: Middleware) -> T:
        self.register(method, path, _checked([middleware]))
        return self

    bind.__name__ = method.lower()
    bind.__doc__ = f"Register middleware for {method} requests to ``path``."
    return bind


def _bind_many(method: str) -> Callable[..., "BindFunctions"]:
    def bind(self: T, path: str, middlewares: Sequence[Middleware]) -> T:
        self.register(method, path, _checked(middlewares))
        return self

    bind.__name__ = f"{method.lower()}_with_many"
    bind.__doc__ = (
        f"Register a sequence of middleware for {method} requests to ``path``. "
        "They run in order as one route; ``next(ROUTE)`` skips the rest of them."
    )
    return bind


class BindFunctions(abc.ABC):
    """Mixin deriving every binding operation from ``register``."""

    @abc.abstractmethod
    def register(
        self,
        method: Optional[str],
        path: Optional[str],
        middlewares: Sequence[Middleware],
    ) -> None:
        """Register middleware for a method (None for any) at a path (None for every path)."""

    @abc.abstractmethod
    def register_param(self, name: str, middleware: Middleware) -> None:
        """Register middleware triggered by a captured path parameter."""

    def use(self: T, middleware: Middleware) -> T:
        """Run middleware for every request."""
        self.register(None, None, _checked([middleware]))
        return self

    def use_with_many(self: T, middlewares: Sequence[Middleware]) -> T:
        self.register(None, None, _checked(middlewares))
        return self

    def use_on_path(self: T, path: str, middleware: Middleware) -> T:
        """Run middleware for every request whose path starts with ``path``."""
        self.register(None, path, _checked([middleware]))
        return self

    def use_on_path_with_many(self: T, path: str, middlewares: Sequence[Middleware]) -> T:
        self.register(None, path, _checked(middlewares))
        return self

    def param(self: T, name: str, middleware: Middleware) -> T:
        """Run middleware before any route that captures the parameter ``name``.

        It runs once per request for a given parameter value, even when
        several routes capture it.
        """
        self.register_param(name, _checked([middleware])[0])
        return self

    get = _bind_one("GET")
    get_with_many = _bind_many("GET")
    post = _bind_one("POST")
    post_with_many = _bind_many("POST")
    put = _bind_one("PUT")
    put_with_many = _bind_many("PUT")
    patch = _bind_one("PATCH")
    patch_with_many = _bind_many("PATCH")
    delete = _bind_one("DELETE")
    delete_with_many = _bind_many("DELETE")
    options = _bind_one("OPTIONS")
    options_with_many = _bind_many("OPTIONS")
