"""Client configuration.

Layering, lowest to highest precedence: built-in defaults, the user config
file (``~/.config/charm/config.json`` or ``$CHARM_CONFIG``), ``CHARM_*``
environment variables, then explicit overrides from the command line.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from charm.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "charm" / "config.json"

ENV_PREFIX = "CHARM_"


def normalize_prefix(prefix: str | None) -> str:
    """Normalize a URL path prefix to ``/a/b`` form ('' for none)."""
    if not prefix:
        return ""
    stripped = prefix.strip().strip("/")
    return f"/{stripped}" if stripped else ""


@dataclass
class ClientConfig:
    """Connection and job settings shared by every command."""

    hostname: str = "localhost"
    port: int = 5002
    base_url_prefix: str = "/charm"
    model: str = "gpt-4o-mini"
    poll_interval: float = 3.0
    timeout: float | None = None  # per-request HTTP timeout in seconds

    def __post_init__(self) -> None:
        self.port = int(self.port)
        self.poll_interval = float(self.poll_interval)
        if self.timeout is not None:
            self.timeout = float(self.timeout)
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        self.base_url_prefix = normalize_prefix(self.base_url_prefix)

    @property
    def base_url(self) -> str:
        return f"http://{self.hostname}:{self.port}{self.base_url_prefix}"

    def with_overrides(self, **overrides: Any) -> "ClientConfig":
        """Copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if v is not None and k in known}
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClientConfig":
        """Build from a mapping; accepts the camelCase keys of older config files."""
        aliases = {"baseUrlPrefix": "base_url_prefix", "pollInterval": "poll_interval"}
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            key = aliases.get(key, key)
            if key in known:
                values[key] = value
            else:
                logger.debug("Ignoring unknown config key: %s", key)
        try:
            return cls(**values)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Read a user config file (JSON or YAML)."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``CHARM_*`` settings from the environment."""
    overrides = {}
    for f in fields(ClientConfig):
        value = environ.get(ENV_PREFIX + f.name.upper())
        if value:
            overrides[f.name] = value
    return overrides


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> ClientConfig:
    """Resolve the effective configuration.

    A missing config file is not an error; a malformed one is reported as
    a warning and skipped.
    """
    environ = os.environ if environ is None else environ
    config_path = Path(path or environ.get("CHARM_CONFIG") or DEFAULT_CONFIG_PATH)

    merged: dict[str, Any] = {}
    if config_path.exists():
        try:
            merged.update(read_config_file(config_path))
        except (OSError, yaml.YAMLError, ConfigError) as e:
            logger.warning("Could not parse config at %s: %s", config_path, e)

    merged.update(env_overrides(environ))
    config = ClientConfig.from_dict(merged)
    return config.with_overrides(**overrides)


def convert_server_config(server_conf: Mapping[str, Any]) -> dict[str, Any]:
    """Derive a local client config from a server's config.json."""
    server = server_conf.get("server") or {}
    port = server.get("port")
    local: dict[str, Any] = {
        "port": port if isinstance(port, int) else 5002,
        "hostname": "localhost",
        "base_url_prefix": normalize_prefix(server.get("baseUrl") or "/ai2"),
    }
    models = server_conf.get("models")
    if isinstance(models, dict) and models:
        local["model"] = next(iter(models))
    else:
        local["model"] = ClientConfig.model
    return local


def save_config(data: Mapping[str, Any], path: str | Path = DEFAULT_CONFIG_PATH) -> Path:
    """Write a client config file, creating its directory."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(dict(data), indent=2))
    return path
