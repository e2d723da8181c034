"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rbundle.bundle.errors import BundleError
from rbundle.core.errors import ErrorCode
from rbundle.output.console import Style

if TYPE_CHECKING:
    from rbundle.output.console import ConsoleProtocol

__all__ = ["print_bundle_error", "bundle_error_exit_code"]


def print_bundle_error(error: BundleError, console: ConsoleProtocol) -> None:
    """Print a bundle error to console with appropriate formatting."""
    console.error(error.message)
    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)


def bundle_error_exit_code(error: BundleError) -> int:
    """Get exit code for a bundle error."""
    match error.kind:
        case "validation" | "invalid_bundle":
            return int(ErrorCode.USER_ERROR)
        case "conflict":
            return int(ErrorCode.CONFLICT)
        case "not_found":
            return int(ErrorCode.NOT_FOUND)
        case "remote" | "registry":
            return int(ErrorCode.NETWORK_ERROR)
        case "io":
            return int(ErrorCode.IO_ERROR)
    # Fallback for exhaustiveness
    return int(ErrorCode.USER_ERROR)
