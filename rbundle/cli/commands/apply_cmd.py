"""Apply command - reconstitute a bundled release on an application."""

from __future__ import annotations

from pathlib import Path

import typer

from rbundle.bundle.apply import apply_bundle
from rbundle.bundle.backfill import PlaceholderBackfill
from rbundle.bundle.cleanup import CleanupPolicy, parse_cleanup_policy
from rbundle.bundle.manifest import ManifestSchema
from rbundle.bundle.model import ApplyOptions
from rbundle.bundle.pacing import FixedDelayPacer
from rbundle.cli.commands._helpers import open_bundle
from rbundle.cli.context import build_context
from rbundle.core.errors import ErrorCode
from rbundle.core.result import Err, Ok
from rbundle.output.errors import bundle_error_exit_code, print_bundle_error


def apply(
    application_id: int = typer.Argument(..., help="Target application id"),
    bundle: Path = typer.Argument(..., help="Release bundle file"),
    force: bool = typer.Option(
        False, "--force", help="Replace an existing successful release with the same version"
    ),
    release_version: str | None = typer.Option(
        None, "--release-version", help="Version to give the release", show_default=False
    ),
    schema: ManifestSchema | None = typer.Option(
        None, "--schema", help="Manifest version schema (detected when omitted)", show_default=False
    ),
    cleanup: CleanupPolicy | None = typer.Option(
        None, "--cleanup", help="What --force removes from the stale release", show_default=False
    ),
) -> None:
    """Create the release in BUNDLE on APPLICATION_ID."""
    ctx = build_context()

    policy = cleanup or parse_cleanup_policy(ctx.config.apply.cleanup)
    if policy is None:
        ctx.console.error(f"invalid apply.cleanup in config: {ctx.config.apply.cleanup}")
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    options = ApplyOptions(
        force=force,
        version_override=release_version,
        schema=schema,
        cleanup=policy,
    )
    backfill = PlaceholderBackfill(FixedDelayPacer(ctx.config.apply.backfill_delay_seconds))

    with open_bundle(bundle, ctx) as stream:
        result = apply_bundle(
            store=ctx.store,
            application_id=application_id,
            stream=stream,
            options=options,
            console=ctx.console,
            backfill=backfill,
        )

    match result:
        case Ok(release_id):
            ctx.console.success(f"created release {release_id}")
        case Err(error):
            print_bundle_error(error, ctx.console)
            raise typer.Exit(code=bundle_error_exit_code(error))
