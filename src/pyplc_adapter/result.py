"""Result: the success/failure channel returned by every public client operation."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from .errors import PlcAdapterError, ProtocolStatusError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """
    Outcome of a client call. Expected failures are carried in ``error``
    instead of being raised; check ``is_success`` before using ``content``.
    """

    is_success: bool
    content: T | None = None
    error: PlcAdapterError | None = None

    @classmethod
    def ok(cls, content: T | None = None) -> "Result[T]":
        return cls(is_success=True, content=content)

    @classmethod
    def fail(cls, error: PlcAdapterError) -> "Result[T]":
        return cls(is_success=False, error=error)

    @property
    def code(self) -> int:
        """Remote status for protocol errors, 0 on success, -1 for local failures."""
        if self.is_success:
            return 0
        if isinstance(self.error, ProtocolStatusError):
            return self.error.code
        return -1

    @property
    def message(self) -> str:
        if self.is_success:
            return "Success"
        return str(self.error)

    def unwrap(self) -> T | None:
        """Return the content, or raise the carried error."""
        if not self.is_success:
            assert self.error is not None
            raise self.error
        return self.content

    def __bool__(self) -> bool:
        return self.is_success
