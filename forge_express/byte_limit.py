"""Byte-size units used to configure body-size ceilings."""

from dataclasses import dataclass
from typing import Union


def _format_number(value: float) -> str:
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


@dataclass(frozen=True)
class Bytes:
    """A limit expressed in bytes."""

    value: int

    def to_size_string(self) -> str:
        return f"{self.value}b"

    def to_bytes(self) -> int:
        return int(self.value)


@dataclass(frozen=True)
class Kb:
    """A limit expressed in kilobytes (1024 bytes)."""

    value: float

    def to_size_string(self) -> str:
        return f"{_format_number(self.value)}kb"

    def to_bytes(self) -> int:
        return int(self.value * 1024)


@dataclass(frozen=True)
class Mb:
    """A limit expressed in megabytes."""

    value: float

    def to_size_string(self) -> str:
        return f"{_format_number(self.value)}mb"

    def to_bytes(self) -> int:
        return int(self.value * 1024 ** 2)


@dataclass(frozen=True)
class Gb:
    """A limit expressed in gigabytes."""

    value: float

    def to_size_string(self) -> str:
        return f"{_format_number(self.value)}gb"

    def to_bytes(self) -> int:
        return int(self.value * 1024 ** 3)


ByteLimit = Union[Bytes, Kb, Mb, Gb]


def to_size_string(limit: ByteLimit) -> str:
    """Format a limit as a size specification, e.g. ``Mb(1.5)`` -> ``"1.5mb"``."""
    return limit.to_size_string()


def to_bytes(limit: ByteLimit) -> int:
    """Convert a limit to a whole number of bytes."""
    return limit.to_bytes()
