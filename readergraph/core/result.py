"""Value-or-error container returned by the storage and replay layers."""

from __future__ import annotations

from dataclasses import dataclass

from readergraph.core.exceptions import ErrorKind, ReaderGraphError


@dataclass(frozen=True)
class Result[T]:
    """Either a value, an error, or neither (a plain miss)."""

    value: T | None = None
    error: ReaderGraphError | None = None

    @classmethod
    def ok(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def miss(cls) -> Result[T]:
        return cls()

    @classmethod
    def fail(cls, error: ReaderGraphError) -> Result[T]:
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None and self.value is not None

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def unwrap_or(self, default: T | None = None) -> T | None:
        return self.value if self.value is not None else default
