from __future__ import annotations

import os
from dataclasses import dataclass

import typer

from rbundle import __version__
from rbundle.bundle.api_store import ApiStore
from rbundle.bundle.store import RemoteStore
from rbundle.core.config import Config, default_config_path, load_config_or_default
from rbundle.core.errors import ErrorCode
from rbundle.core.result import Err
from rbundle.output.console import ConsoleProtocol, RichConsole
from rbundle.platform.http import HttpClient, RealHttpClient


@dataclass(frozen=True, slots=True)
class CLIContext:
    config: Config
    console: ConsoleProtocol
    store: RemoteStore
    http: HttpClient


def build_context(*, stderr: bool = False) -> CLIContext:
    path = default_config_path()
    config_result = load_config_or_default(path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    config = config_result.value.with_env(os.environ)
    http = RealHttpClient(user_agent=f"rbundle/{__version__}")
    store = ApiStore(http, api_url=config.api.url, token=config.api.token)

    return CLIContext(
        config=config,
        console=RichConsole(stderr=stderr),
        store=store,
        http=http,
    )
