"""
Agent Configuration

Configuration is assembled from four layers, lowest precedence first:
1. Built-in defaults
2. Optional YAML file (keys are AgentConfig field names)
3. Environment variables
4. Command line overrides
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional, Dict, Any, Mapping

import yaml

from .errors import ConfigError

logger = logging.getLogger("config")

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_API_KEY = "your-secret-api-key"
DEV_API_KEYS = {DEFAULT_API_KEY, "dev-mode"}

DEFAULT_DRAIN_INTERVAL = 30        # seconds between task drain ticks
DEFAULT_EVICTION_INTERVAL = 3600   # hourly eviction sweep
DEFAULT_QUEUE_POLL_INTERVAL = 10   # seconds between external queue polls

# Environment variable -> config field
ENV_VARS = {
    "HOST": "host",
    "PORT": "port",
    "WORK_DIR": "work_dir",
    "JETSITE_SCRIPT": "script_path",
    "AUTO_OPEN_VSCODE": "auto_open_vscode",
    "GITHUB_TOKEN": "github_token",
    "GH_TOKEN": "gh_token",
    "API_KEY": "api_key",
    "QUEUE_URL": "queue_url",
    "POLL_INTERVAL": "drain_interval",
    "QUEUE_POLL_INTERVAL": "queue_poll_interval",
    "LOG_LEVEL": "log_level",
    "LOG_DIR": "log_dir",
}

INT_FIELDS = {"port", "drain_interval", "eviction_interval", "queue_poll_interval"}
PATH_FIELDS = {"work_dir", "script_path", "log_dir"}


@dataclass(frozen=True)
class AgentConfig:
    """Process-wide agent configuration."""
    host: str = "localhost"
    port: int = 3000
    work_dir: Path = Path("workspace")
    script_path: Path = Path("fork_template_repo_simple.ps1")
    auto_open_vscode: bool = True
    github_token: Optional[str] = None
    gh_token: Optional[str] = None
    api_key: str = DEFAULT_API_KEY
    queue_url: Optional[str] = None
    drain_interval: int = DEFAULT_DRAIN_INTERVAL
    eviction_interval: int = DEFAULT_EVICTION_INTERVAL
    queue_poll_interval: int = DEFAULT_QUEUE_POLL_INTERVAL
    log_level: str = "INFO"
    log_dir: Path = Path(".")

    @property
    def auth_disabled(self) -> bool:
        """API key checks are skipped for the development keys."""
        return self.api_key in DEV_API_KEYS

    @property
    def polling_enabled(self) -> bool:
        return bool(self.queue_url)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view with secrets masked."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in ("github_token", "gh_token", "api_key") and value:
                value = "***"
            elif isinstance(value, Path):
                value = str(value)
            data[f.name] = value
        return data


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw (string or YAML) value to the field's type."""
    if value is None:
        return None
    if name in INT_FIELDS:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid integer for {name}: {value!r}")
    if name in PATH_FIELDS:
        return Path(value).expanduser()
    if name == "auto_open_vscode":
        if isinstance(value, bool):
            return value
        # Only an explicit "false" disables the editor
        return str(value).strip().lower() != "false"
    if name == "log_level":
        return str(value).upper()
    return value


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a YAML config file, returning known keys only."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")

    known = {f.name for f in fields(AgentConfig)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {path}: {sorted(unknown)}")
    return {k: _coerce(k, v) for k, v in data.items() if k in known}


def load_config(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> AgentConfig:
    """
    Build the agent configuration.

    Args:
        config_file: YAML file path (falls back to AGENT_CONFIG)
        environ: Environment mapping (defaults to os.environ)
        overrides: Values from the command line; a present key wins even
            when its value is None (e.g. --no-poll clears queue_url)
    """
    environ = os.environ if environ is None else environ
    config = AgentConfig()

    config_file = config_file or environ.get("AGENT_CONFIG")
    if config_file:
        config = replace(config, **load_config_file(Path(config_file)))

    env_values = {}
    for var, name in ENV_VARS.items():
        raw = environ.get(var)
        if raw is not None and raw != "":
            env_values[name] = _coerce(name, raw)
    config = replace(config, **env_values)

    if overrides:
        config = replace(config, **{k: _coerce(k, v) for k, v in overrides.items()})

    return config
