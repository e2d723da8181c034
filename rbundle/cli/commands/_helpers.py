"""Shared helpers for CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

import typer

from rbundle.core.errors import ErrorCode

if TYPE_CHECKING:
    from rbundle.cli.context import CLIContext


def open_bundle(path: Path, ctx: CLIContext) -> BinaryIO:
    """Open a bundle file for reading, or exit with an I/O error."""
    try:
        return path.open("rb")
    except OSError as e:
        ctx.console.error(f"cannot read bundle {path}: {e}")
        raise typer.Exit(code=int(ErrorCode.IO_ERROR)) from e
