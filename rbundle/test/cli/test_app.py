from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from rbundle import __version__
from rbundle.bundle.api_store import ApiStore
from rbundle.cli.app import app
from rbundle.cli.context import build_context
from rbundle.core.config import ENV_API_TOKEN, ENV_CONFIG_PATH


def test_version() -> None:
    result = CliRunner().invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_invalid_config_file_exits(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.toml"
    config.write_text("[api\n", encoding="utf-8")
    bundle = tmp_path / "r.bundle"
    bundle.write_bytes(b"")
    # restored after the test; the --config callback overwrites it
    monkeypatch.setenv(ENV_CONFIG_PATH, str(tmp_path / "unused.toml"))

    result = CliRunner().invoke(app, ["--config", str(config), "inspect", str(bundle)])

    assert result.exit_code == 1


def test_build_context_reads_config_and_env(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config = tmp_path / "config.toml"
    config.write_text(
        '[api]\nurl = "https://api.example.com"\n\n[apply]\ncleanup = "links_and_tags"\n',
        encoding="utf-8",
    )
    monkeypatch.setenv(ENV_CONFIG_PATH, str(config))
    monkeypatch.setenv(ENV_API_TOKEN, "from-env")

    ctx = build_context()

    assert ctx.config.api.url == "https://api.example.com"
    assert ctx.config.api.token == "from-env"
    assert ctx.config.apply.cleanup == "links_and_tags"
    assert isinstance(ctx.store, ApiStore)
