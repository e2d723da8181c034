from __future__ import annotations

import os
from pathlib import Path

import typer

from rbundle import __version__
from rbundle.cli.commands.apply_cmd import apply
from rbundle.cli.commands.create_cmd import create
from rbundle.cli.commands.inspect_cmd import inspect
from rbundle.core.config import ENV_CONFIG_PATH


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    invoke_without_command=True,
    rich_markup_mode="rich",
)


# Commands
app.command()(apply)
app.command()(create)
app.command()(inspect)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Config file (overrides $RBUNDLE_CONFIG)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if config is not None:
        os.environ[ENV_CONFIG_PATH] = str(config.expanduser())


def main() -> None:
    app()
