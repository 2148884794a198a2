"""Error values and exceptions for the Forge Express pipeline.

Faults travel through the pipeline wrapped in an ``Error`` value. Error
middleware receives that wrapper, never the bare exception, so handlers can
inspect any fault the same way whether it was raised synchronously, came from
a rejected coroutine, or was passed to ``next`` explicitly.
"""

from typing import Optional, Union

from forge_express.status import phrase_for


class ForgeExpressError(Exception):
    """Base class for all exceptions raised by forge_express."""


class ContinuationError(ForgeExpressError):
    """Raised when a continuation is invoked more than once."""


class ResponseAlreadySentError(ForgeExpressError):
    """Raised when a response is finalized a second time."""


class UnrecognizedValueError(ForgeExpressError, ValueError):
    """Raised when the engine reports a method or protocol outside the known set."""


class HttpError(ForgeExpressError):
    """An exception that carries the HTTP status the final handler should use."""

    def __init__(self, status: int, message: Optional[str] = None) -> None:
        """Initialize a new HttpError.

        Args:
            status: HTTP status code for the error response.
            message: Optional description. Defaults to the reason phrase.
        """
        self.status = status
        self.message = message or phrase_for(status)
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.status


class Error:
    """Opaque wrapper around a fault propagating through the pipeline."""

    __slots__ = ("_exception",)

    def __init__(self, exception: BaseException) -> None:
        self._exception = exception

    @classmethod
    def wrap(cls, value: Union[BaseException, "Error"]) -> "Error":
        """Wrap an exception, passing an existing Error through untouched."""
        if isinstance(value, Error):
            return value
        return cls(value)

    @property
    def exception(self) -> BaseException:
        """Get the wrapped exception."""
        return self._exception

    @property
    def name(self) -> Optional[str]:
        """Get the fault's type name."""
        return getattr(self._exception, "name", None) or type(self._exception).__name__

    @property
    def message(self) -> Optional[str]:
        """Get the fault's message, or None when it has none."""
        message = getattr(self._exception, "message", None)
        if isinstance(message, str) and message:
            return message
        text = str(self._exception)
        return text or None

    @property
    def status(self) -> Optional[int]:
        """Get the HTTP status the fault asks for, if it carries one."""
        for attribute in ("status", "status_code"):
            value = getattr(self._exception, attribute, None)
            if isinstance(value, int) and 400 <= value <= 599:
                return value
        return None

    def __repr__(self) -> str:
        return f"Error({self._exception!r})"
