"""Completion token for the Forge Express pipeline.

A handler declared as returning ``Complete`` must, on every control path,
either finalize the response or hand control to the continuation. Both of
those are the only places a ``Complete`` value can come from, so a type
checker reports any path that does neither as a missing return.
"""

from typing_extensions import final


@final
class Complete:
    """Proof that a handler finalized its response or forwarded control.

    The class cannot be instantiated or subclassed. The only instance lives
    in this module and is handed out by response finalizers and by the
    continuation.
    """

    __slots__ = ()

    def __new__(cls, *args, **kwargs):
        raise TypeError(
            "Complete cannot be constructed; finalize the response or call next()"
        )

    def __init_subclass__(cls, **kwargs):
        raise TypeError("Complete cannot be subclassed")

    def __repr__(self) -> str:
        return "<Complete>"

    def __copy__(self) -> "Complete":
        return self

    def __deepcopy__(self, memo) -> "Complete":
        return self


_COMPLETE = object.__new__(Complete)


def _complete() -> Complete:
    # Not exported from the package. Finalizers and Next import it directly.
    return _COMPLETE
