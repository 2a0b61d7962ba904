"""Tagged result type returned by base queries and resolvers."""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome with optional transport metadata."""

    data: T
    meta: Any = None


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Handled failure with optional transport metadata."""

    error: E
    meta: Any = None


QueryReturnValue = Ok[Any] | Err[Any]
