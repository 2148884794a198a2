"""Interfaces for Forge Express.

This module defines the capability protocols the generic parts of the
pipeline are written against. Handler adapters implement
``ApplyMiddleware``; anything that can hold middleware implements
``RegisterMiddleware`` and gets the full set of binding operations from
``forge_express.routable.BindFunctions``.
"""

from typing import TYPE_CHECKING, Optional, Protocol, Sequence, TypeVar, runtime_checkable

from forge_express.complete import Complete

if TYPE_CHECKING:
    from forge_express.continuation import Next
    from forge_express.errors import Error
    from forge_express.middleware import Middleware
    from forge_express.request import Request
    from forge_express.response import Response

F = TypeVar("F", contravariant=True)
EF = TypeVar("EF", contravariant=True)


class ApplyMiddleware(Protocol[F, EF]):
    """Protocol for handler adapters.

    An adapter knows how to invoke one calling convention of raw handler
    (``F`` for normal handlers, ``EF`` for error handlers) and turn the
    call into a ``Complete``.
    """

    def apply(self, f: F, next: "Next", request: "Request", response: "Response") -> Complete:
        """Invoke a normal handler."""
        ...

    def apply_with_error(
        self,
        f: EF,
        next: "Next",
        error: "Error",
        request: "Request",
        response: "Response",
    ) -> Complete:
        """Invoke an error handler."""
        ...


@runtime_checkable
class RegisterMiddleware(Protocol):
    """Protocol for objects that can register middleware."""

    def register(
        self,
        method: Optional[str],
        path: Optional[str],
        middlewares: Sequence["Middleware"],
    ) -> None:
        """Register middleware for a method (None for any) at a path (None for every path)."""
        ...

    def register_param(self, name: str, middleware: "Middleware") -> None:
        """Register middleware triggered by a captured path parameter."""
        ...
