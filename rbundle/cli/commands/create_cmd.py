"""Create command - bundle a release from the API."""

from __future__ import annotations

import shutil
import sys
from pathlib import Path

import typer

from rbundle.bundle.export import create_bundle
from rbundle.bundle.model import RegistryCredentials
from rbundle.bundle.registry import DockerRegistryClient
from rbundle.cli.context import build_context
from rbundle.core.config import Config
from rbundle.core.errors import ErrorCode
from rbundle.core.result import Err, Ok
from rbundle.output.errors import bundle_error_exit_code, print_bundle_error
from rbundle.platform.files import atomic_write_stream


def registry_credentials(config: Config) -> RegistryCredentials | None:
    pair = config.registry.credentials()
    if pair is None:
        return None
    username, password = pair
    return RegistryCredentials(username=username, password=password)


def create(
    release_id: int = typer.Argument(..., help="Release to bundle"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Bundle file (stdout when omitted)", show_default=False
    ),
    with_images: bool = typer.Option(
        False, "--with-images", help="Embed image blobs pulled from the registry"
    ),
) -> None:
    """Write release RELEASE_ID as a bundle."""
    # Progress goes to stderr when the bundle itself goes to stdout.
    ctx = build_context(stderr=output is None)

    registry = DockerRegistryClient(ctx.http) if with_images else None

    result = create_bundle(
        store=ctx.store,
        release_id=release_id,
        console=ctx.console,
        registry=registry,
        credentials=registry_credentials(ctx.config),
    )

    match result:
        case Err(error):
            print_bundle_error(error, ctx.console)
            raise typer.Exit(code=bundle_error_exit_code(error))
        case Ok(stream):
            pass

    if output is None:
        shutil.copyfileobj(stream, sys.stdout.buffer)
        sys.stdout.buffer.flush()
        return

    try:
        written = atomic_write_stream(output.expanduser(), stream)
    except OSError as e:
        ctx.console.error(f"cannot write bundle {output}: {e}")
        raise typer.Exit(code=int(ErrorCode.IO_ERROR)) from e
    ctx.console.success(f"{output} ({written} bytes)")
