"""Result pattern for explicit error handling at collaborator seams.

Ok carries a value; Err carries a message and an optional error code.
Used where a failure is an expected outcome the caller must branch on
(hook emission, bridge input construction) rather than an exception.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class Result(ABC, Generic[T]):
    """Base class for Ok and Err."""

    @abstractmethod
    def is_ok(self) -> bool:
        """Return True if this is an Ok result."""

    @abstractmethod
    def is_err(self) -> bool:
        """Return True if this is an Err result."""

    @abstractmethod
    def unwrap(self) -> T:
        """Return the value from Ok, or raise ValueError.

        Raises:
            ValueError: If this is an Err result.
        """

    @abstractmethod
    def unwrap_or(self, default: T) -> T:
        """Return the value from Ok, or default otherwise."""


class Ok(Result[T]):
    """Success result containing a value."""

    def __init__(self, value: T):
        self._value = value

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self._value

    def unwrap_or(self, default: T) -> T:
        return self._value

    def __repr__(self) -> str:
        return f"Ok({self._value!r})"

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Ok) and self._value == other._value


class Err(Result[T]):
    """Error result containing error information."""

    def __init__(self, error: str, code: Optional[str] = None):
        self.error = error
        self.code = code

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise ValueError(self.error)

    def unwrap_or(self, default: T) -> T:
        return default

    def __repr__(self) -> str:
        if self.code:
            return f"Err({self.error!r}, code={self.code!r})"
        return f"Err({self.error!r})"

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, Err) and self.error == other.error and self.code == other.code
        )
