from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

BundleErrorKind = Literal[
    "validation",
    "conflict",
    "not_found",
    "remote",
    "registry",
    "invalid_bundle",
    "io",
]


@dataclass(frozen=True, slots=True)
class BundleError:
    kind: BundleErrorKind
    message: str
    hint: str | None = None


def remote_error(err: object) -> BundleError:
    """Wrap a failed API call (StoreError, HttpError) as a remote BundleError."""
    return BundleError(kind="remote", message=str(err))
