"""Inspect command - validate a bundle offline and summarize it."""

from __future__ import annotations

from pathlib import Path

import typer

from rbundle.bundle.adapter import read_release_bundle
from rbundle.bundle.errors import BundleError
from rbundle.bundle.manifest import ManifestSchema
from rbundle.bundle.normalize import normalize_manifest
from rbundle.cli.commands._helpers import open_bundle
from rbundle.cli.context import build_context
from rbundle.core.result import Err
from rbundle.output.console import Style
from rbundle.output.errors import bundle_error_exit_code, print_bundle_error


def inspect(
    bundle: Path = typer.Argument(..., help="Release bundle file"),
    schema: ManifestSchema | None = typer.Option(
        None, "--schema", help="Manifest version schema (detected when omitted)", show_default=False
    ),
) -> None:
    """Check that BUNDLE would apply, without contacting the API."""
    ctx = build_context()

    with open_bundle(bundle, ctx) as stream:
        read = read_release_bundle(stream)
    if isinstance(read, Err):
        print_bundle_error(read.error, ctx.console)
        raise typer.Exit(code=bundle_error_exit_code(read.error))

    normalized = normalize_manifest(read.value.manifest, schema=schema)
    if isinstance(normalized, Err):
        error = BundleError(
            kind="validation", message=f"Manifest is malformed: {normalized.error.message}"
        )
        print_bundle_error(error, ctx.console)
        raise typer.Exit(code=bundle_error_exit_code(error))

    release = normalized.value
    ctx.console.header(f"release {release.version}")
    ctx.console.print(f"schema: {release.schema}")
    if release.revision is not None:
        ctx.console.print(f"revision: {release.revision}")
    ctx.console.print(f"status: {release.status}")

    ctx.console.print(f"images: {len(release.release_images)}")
    for image in release.release_images:
        ctx.console.print(f"  {image.service}  {image.content_hash}", Style.DIM)

    ctx.console.print(f"tags: {len(release.release_tags)}")
    for tag in release.release_tags:
        ctx.console.print(f"  {tag.tag_key}={tag.value}", Style.DIM)

    ctx.console.print(f"resources: {len(read.value.resources)}")
    for resource in read.value.resources:
        ctx.console.print(f"  {resource.id} ({resource.size} bytes)", Style.DIM)

    ctx.console.success("bundle is valid")
