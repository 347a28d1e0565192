"""
Configuration loading for birdwatcher.

The configuration file is TOML with one section per concern:

1. `[server]` - module whitelist, access allow-list and TLS material
2. `[bird]` / `[bird6]` - the two backend variants, one per address family
3. `[ratelimit]`, `[parser]`, `[status]` - settings handed to collaborators
4. `[logging]` - log level/format, overridable from the environment

Several files may be passed to `load_configs`; later files are deep-merged
over earlier ones so a site-local file only needs the keys it changes.
"""

from __future__ import annotations

import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

import tomllib
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from birdwatcher.exceptions import ConfigError

__all__ = [
    "BackendConfig",
    "BirdwatcherConfig",
    "ConfigError",
    "DEFAULT_CONFIG_FILE",
    "LoggingConfig",
    "ParserConfig",
    "RateLimitConfig",
    "ServerConfig",
    "StatusConfig",
    "load_config",
    "load_configs",
]


DEFAULT_CONFIG_FILE = Path("etc/birdwatcher/birdwatcher.conf")

_LISTEN_RE = re.compile(r"^(?:\[(?P<v6>[^\]]+)\]|(?P<host>[^:\[\]]*)):(?P<port>\d+)$")


class ServerConfig(BaseModel):
    """HTTP surface configuration: which modules exist and who may use them."""

    modules_enabled: Tuple[str, ...] = Field(
        default=(), description="Ordered whitelist of enabled module names"
    )
    allow_from: Tuple[str, ...] = Field(
        default=(), description="Client addresses or networks allowed; empty allows all"
    )
    enable_tls: bool = Field(False, description="Serve HTTPS instead of HTTP")
    crt: str = Field("", description="Path to the TLS certificate")
    key: str = Field("", description="Path to the TLS private key")

    model_config = ConfigDict(frozen=True)


class BackendConfig(BaseModel):
    """One routing daemon connection (`[bird]` or `[bird6]`)."""

    command: str = Field("birdc", alias="birdc", min_length=1)
    listen: str = Field("0.0.0.0:29184", description="host:port to bind")
    config: Optional[Path] = Field(None, description="Daemon configuration file")
    cache_ttl: timedelta = Field(timedelta(minutes=5), alias="ttl")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("cache_ttl", mode="before")
    @classmethod
    def _minutes(cls, value: Any) -> Any:
        # TTL is written in minutes in the config file
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return timedelta(minutes=value)
        return value

    @field_validator("listen")
    @classmethod
    def _check_listen(cls, value: str) -> str:
        if not _LISTEN_RE.match(value):
            raise ValueError(f"listen must be host:port, got {value!r}")
        return value

    @property
    def host(self) -> str:
        match = _LISTEN_RE.match(self.listen)
        return match.group("v6") or match.group("host") or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(_LISTEN_RE.match(self.listen).group("port"))


def _default_bird6() -> BackendConfig:
    return BackendConfig(birdc="birdc6", listen="0.0.0.0:29185")


class RateLimitConfig(BaseModel):
    """Budget of uncached backend queries."""

    enabled: bool = True
    requests_per_minute: int = Field(10, ge=0)

    model_config = ConfigDict(frozen=True)


class ParserConfig(BaseModel):
    """Naming conventions of a per-peer-table BIRD setup."""

    per_peer_tables: bool = False
    peer_protocol_prefix: str = "ID"
    pipe_protocol_prefix: str = "M"

    model_config = ConfigDict(frozen=True)


class StatusConfig(BaseModel):
    """Where the `/status` endpoint reads the last reconfiguration time from."""

    reconfig_timestamp_source: str = Field("bird", pattern=r"^(bird|config_modified|config_regex)$")
    reconfig_timestamp_match: str = "# created: (.*)"

    model_config = ConfigDict(frozen=True)

    @field_validator("reconfig_timestamp_match")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regular expression: {exc}") from exc
        return value


class LoggingConfig(BaseModel):
    """Log output settings."""

    level: str = Field("INFO", pattern=r"(?i)^(debug|info|warning|error|critical)$")
    format: str = Field("console", pattern=r"^(console|json)$")
    file: Optional[Path] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("file", mode="before")
    @classmethod
    def _empty_is_none(cls, value: Any) -> Any:
        return value or None


class BirdwatcherConfig(BaseModel):
    """Top-level configuration, built once at startup."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    bird: BackendConfig = Field(default_factory=BackendConfig)
    bird6: BackendConfig = Field(default_factory=_default_bird6)
    ratelimit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(frozen=True)


def load_config(config_path: Path | str = DEFAULT_CONFIG_FILE) -> BirdwatcherConfig:
    """
    Load birdwatcher configuration from a single file.

    Args:
        config_path: Path to a TOML configuration file.

    Returns:
        BirdwatcherConfig populated with the resolved values.

    Raises:
        ConfigError: if the file does not exist, cannot be parsed or
            holds values of the wrong shape.
    """

    return load_configs([config_path])


def load_configs(config_paths: Iterable[Path | str]) -> BirdwatcherConfig:
    """
    Load and merge several configuration files, later ones winning.

    Raises:
        ConfigError: if any file is missing or invalid, or no path is given.
    """

    paths = [Path(p) for p in config_paths]
    if not paths:
        raise ConfigError("No configuration file given")

    raw_data: Dict[str, Any] = {}
    for path in paths:
        raw_data = _deep_merge(raw_data, _load_toml_data(path))

    logging_data = raw_data.get("logging") or {}
    if isinstance(logging_data, dict):
        raw_data["logging"] = {
            **logging_data,
            "level": _env_or_value(
                "BIRDWATCHER_LOG_LEVEL", logging_data.get("level"), LoggingConfig().level
            ),
            "format": _env_or_value(
                "BIRDWATCHER_LOG_FORMAT", logging_data.get("format"), LoggingConfig().format
            ),
        }

    try:
        return BirdwatcherConfig.model_validate(raw_data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {_describe(paths)}: {exc}") from exc


def _load_toml_data(path: Path) -> Dict[str, Any]:
    """Read one TOML file."""

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge nested tables; scalars and arrays from `override` replace."""

    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_or_value(env_var: str, value: Any, default: Any) -> str:
    """Return environment variable value if set, otherwise fallback to provided/default values."""

    env_value = os.getenv(env_var)
    if env_value is not None:
        return env_value
    if value is not None:
        return str(value)
    return str(default)


def _describe(paths: Iterable[Path]) -> str:
    return ", ".join(str(p) for p in paths)
