"""Ok/Err values for expected failures.

Apply and create stop at the first thing that goes wrong (malformed
manifest, duplicate release, API error) and hand it back as a value:

    def lookup(release_id: int) -> Result[dict[str, object], BundleError]:
        row = ...
        if row is None:
            return Err(BundleError(kind="not_found", message="Release not found."))
        return Ok(row)

    match lookup(42):
        case Ok(row):
            use(row)
        case Err(error):
            console.error(error.message)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeAlias, TypeVar

T = TypeVar("T")
E = TypeVar("E")
F = TypeVar("F")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    def map_err(self, f: Callable[[E], F]) -> Ok[T]:
        return self


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    error: E

    def map_err(self, f: Callable[[E], F]) -> Err[F]:
        """Convert the carried error, e.g. a StoreError into a BundleError."""
        return Err(f(self.error))


Result: TypeAlias = Ok[T] | Err[E]
