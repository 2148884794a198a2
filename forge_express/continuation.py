"""The continuation handed to every middleware invocation."""

import enum
from typing import Union

from forge_express.complete import Complete, _complete
from forge_express.engine import ROUTE, RawNext, _RouteSignal
from forge_express.errors import ContinuationError, Error


class Signal(enum.Enum):
    """What a continuation call asks the pipeline to do."""

    ADVANCE = "advance"
    SKIP_ROUTE = "skip-route"
    ERROR = "error"


Content = Union[None, _RouteSignal, Error, BaseException]


def classify(content: Content) -> Signal:
    """Map a continuation argument to the signal it stands for.

    Raises:
        TypeError: If the argument is not None, ROUTE, an Error or an exception.
    """
    if content is None:
        return Signal.ADVANCE
    if content is ROUTE:
        return Signal.SKIP_ROUTE
    if isinstance(content, (Error, BaseException)):
        return Signal.ERROR
    raise TypeError(f"next() accepts None, ROUTE or an error, not {type(content).__name__}")


class Next:
    """Continuation for one handler activation.

    ``next()`` advances to the following middleware, ``next(Next.route)``
    skips the rest of the current route, and ``next(error)`` diverts to the
    error-handling chain. Calling it returns ``Complete``, so forwarding
    satisfies a handler's completion contract just like finalizing does.
    """

    route = ROUTE

    __slots__ = ("_raw_next", "_called")

    def __init__(self, raw_next: RawNext) -> None:
        self._raw_next = raw_next
        self._called = False

    @property
    def called(self) -> bool:
        return self._called

    def __call__(self, content: Content = None) -> Complete:
        signal = classify(content)
        if self._called:
            raise ContinuationError("next() was already called for this handler")
        self._called = True

        if signal is Signal.ADVANCE:
            self._raw_next()
        elif signal is Signal.SKIP_ROUTE:
            self._raw_next(ROUTE)
        else:
            self._raw_next(Error.wrap(content))
        return _complete()

    @staticmethod
    def error(exception: Union[BaseException, Error]) -> Error:
        """Build the error value for ``next(Next.error(exc))``."""
        return Error.wrap(exception)
