"""Uniform result type returned by every persistence call.

Stores never raise past their boundary; callers branch on ``result.ok`` and
apply their own policy (session validation fails closed, rate limiting fails
open).
"""

from dataclasses import dataclass
from enum import StrEnum


class StoreErrorKind(StrEnum):
    """Classification of persistence failures."""

    UNAVAILABLE = "unavailable"
    INTEGRITY = "integrity"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class StoreResult[T]:
    """Outcome of a single store operation."""

    value: T | None = None
    error: StoreErrorKind | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> "StoreResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: StoreErrorKind, detail: str) -> "StoreResult[T]":
        return cls(error=kind, detail=detail)
