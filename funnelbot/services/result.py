from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

# Failures that will fail the same way on every retry
PERMANENT_ERRORS = frozenset({"empty_message"})


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a delivery attempt. Transports return it instead of raising."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @property
    def retryable(self) -> bool:
        return not self.ok and self.error_code not in PERMANENT_ERRORS

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def describe(self) -> Optional[str]:
        """``code: error`` for a failed send, None when it went out."""
        if self.ok:
            return None
        return f"{self.error_code}: {self.error}"
