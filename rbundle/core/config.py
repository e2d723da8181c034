"""Typed configuration loading.

Configuration lives in a TOML file:

    [api]
    url = "https://api.example.com"
    token = "..."

    [apply]
    backfill_delay_seconds = 1.0
    cleanup = "links"

    [registry]
    username = "..."
    password = "..."

``RBUNDLE_API_URL`` and ``RBUNDLE_API_TOKEN`` override the [api] table.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_float, get_str, get_table

__all__ = [
    "ApiConfig",
    "ApplyConfig",
    "Config",
    "ConfigError",
    "RegistryConfig",
    "DEFAULT_API_URL",
    "DEFAULT_BACKFILL_DELAY_SECONDS",
    "default_config_path",
    "load_config",
    "load_config_or_default",
]

DEFAULT_API_URL = "https://api.balena-cloud.com"
DEFAULT_BACKFILL_DELAY_SECONDS = 1.0
DEFAULT_CLEANUP = "links"

ENV_CONFIG_PATH = "RBUNDLE_CONFIG"
ENV_API_URL = "RBUNDLE_API_URL"
ENV_API_TOKEN = "RBUNDLE_API_TOKEN"


@dataclass(frozen=True, slots=True)
class ConfigError:
    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ApiConfig:
    url: str = DEFAULT_API_URL
    token: str | None = None


@dataclass(frozen=True, slots=True)
class ApplyConfig:
    """Defaults for ``rbundle apply``."""

    backfill_delay_seconds: float = DEFAULT_BACKFILL_DELAY_SECONDS
    cleanup: str = DEFAULT_CLEANUP


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    username: str | None = None
    password: str | None = None

    def credentials(self) -> tuple[str, str] | None:
        """Username and password, or None unless both are configured."""
        if self.username is None or self.password is None:
            return None
        return self.username, self.password


@dataclass(frozen=True, slots=True)
class Config:
    api: ApiConfig = field(default_factory=ApiConfig)
    apply: ApplyConfig = field(default_factory=ApplyConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        api: StrDict = get_table(data, "api") or {}
        apply: StrDict = get_table(data, "apply") or {}
        registry: StrDict = get_table(data, "registry") or {}

        delay = get_float(apply, "backfill_delay_seconds")
        if delay is not None and delay < 0:
            raise ValueError("apply.backfill_delay_seconds must be >= 0")

        return cls(
            api=ApiConfig(
                url=get_str(api, "url") or DEFAULT_API_URL,
                token=get_str(api, "token"),
            ),
            apply=ApplyConfig(
                backfill_delay_seconds=(
                    DEFAULT_BACKFILL_DELAY_SECONDS if delay is None else delay
                ),
                cleanup=get_str(apply, "cleanup") or DEFAULT_CLEANUP,
            ),
            registry=RegistryConfig(
                username=get_str(registry, "username"),
                password=get_str(registry, "password"),
            ),
        )

    def with_env(self, env: Mapping[str, str]) -> Config:
        """Apply environment overrides for the API endpoint and token."""
        url = env.get(ENV_API_URL, "").strip()
        token = env.get(ENV_API_TOKEN, "").strip()
        api = replace(
            self.api,
            url=url or self.api.url,
            token=token or self.api.token,
        )
        return replace(self, api=api)


def default_config_path(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    explicit = env.get(ENV_CONFIG_PATH, "").strip()
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".config" / "rbundle" / "config.toml"


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to the config file

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Result[Config, ConfigError]:
    """Like load_config, but a missing file yields the defaults."""
    if not path.exists():
        return Ok(Config())
    return load_config(path)
