"""Exceptions and error values raised or stored by querykit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class QueryKitError(Exception):
    """Base class for querykit errors."""


class HandledError(QueryKitError):
    """A failure already normalized by a base query or resolver."""

    def __init__(self, value: Any, meta: Any = None) -> None:
        super().__init__(value)
        self.value = value
        self.meta = meta


class QueryError(QueryKitError):
    """Raised by ``unwrap()`` when a request ended in an error state."""

    def __init__(self, error: Any) -> None:
        super().__init__(error)
        self.error = error


class UnknownEndpointError(QueryKitError, KeyError):
    """Raised when an endpoint name is not defined on the api."""

    def __init__(self, endpoint_name: str) -> None:
        super().__init__(endpoint_name)
        self.endpoint_name = endpoint_name

    def __str__(self) -> str:
        return f"Unknown endpoint: {self.endpoint_name!r}"


@dataclass(frozen=True, slots=True)
class SerializedError:
    """Plain-data description of an unhandled exception."""

    name: str
    message: str
    code: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> SerializedError:
        code = getattr(exc, "code", None)
        return cls(
            name=type(exc).__name__,
            message=str(exc),
            code=str(code) if code is not None else None,
        )


CONDITION_ERROR = SerializedError(
    name="ConditionError",
    message="Aborted due to condition callback returning false.",
)


def abort_error(reason: str | None = None) -> SerializedError:
    return SerializedError(name="AbortError", message=reason or "Aborted")
