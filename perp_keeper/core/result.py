"""
Typed results for fallible loads and loop cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """
    Outcome of a load that may fail.

    The loader never substitutes a default itself; callers use value_or() and can
    still see that a fallback happened through `success` / `error`.
    """
    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    timed_out: bool = False
    skipped: bool = False

    @classmethod
    def ok(cls, value: T) -> "FetchResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str, timed_out: bool = False) -> "FetchResult[T]":
        return cls(success=False, error=error, timed_out=timed_out)

    @classmethod
    def skip(cls, reason: str) -> "FetchResult[T]":
        return cls(success=False, error=reason, skipped=True)

    def value_or(self, default: T) -> T:
        if self.success and self.value is not None:
            return self.value
        return default


@dataclass
class CycleResult:
    """Result of one iteration of a periodic loop."""
    success: bool
    loop: str
    duration_ms: float = 0.0
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
