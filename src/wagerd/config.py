"""Configuration loading and management for wagerd."""

from __future__ import annotations

import copy
import os
import re
from pathlib import Path

import yaml
from loguru import logger

from wagerd.models import DeploymentMode, WagerdConfig

# Default paths
DEFAULT_CONFIG_FILE = Path("wagerd.yaml")
DEFAULT_STATE_DIR = Path.home() / ".wagerd"
DEFAULT_PID_FILE = DEFAULT_STATE_DIR / "wagerd.pid"
DEFAULT_LOGS_DIR = DEFAULT_STATE_DIR / "logs"

CONFIG_ENV_VAR = "WAGERD_CONFIG"
ENVIRONMENT_ENV_VAR = "WAGERD_ENV"

# The betting pipeline as originally deployed: the games worker pulls odds
# every 4 hours, the ui worker syncs games and bets to the sheet every 30s.
DEFAULT_CONFIG: dict = {
    "mode": "auto",
    "artifact_dir": "dist",
    "warmup_seconds": 5,
    "grace_period_seconds": 5,
    "workers": [
        {
            "name": "games",
            "entry": "workers/games.py",
            "port": 3000,
            "start_manually": True,
        },
        {
            "name": "users",
            "entry": "workers/users.py",
            "port": 3001,
        },
        {
            "name": "ui",
            "entry": "workers/ui.py",
            "port": 3002,
            "start_manually": True,
        },
    ],
    "schedule": [
        {
            "worker": "games",
            "endpoint": "/fetch-nfl-data",
            "interval_ms": 4 * 60 * 60 * 1000,
        },
        {
            "worker": "ui",
            "endpoint": "/sync-ui",
            "interval_ms": 30 * 1000,
        },
    ],
}


class ConfigError(Exception):
    """Configuration error."""

    pass


def ensure_state_dir() -> Path:
    """Ensure the runtime state directory exists."""
    DEFAULT_STATE_DIR.mkdir(parents=True, exist_ok=True)
    DEFAULT_LOGS_DIR.mkdir(parents=True, exist_ok=True)
    return DEFAULT_STATE_DIR


def expand_env_vars(value: str) -> str:
    """Expand environment variables in a string.

    Supports:
    - ${env:VAR_NAME} - environment variable
    - $VAR_NAME or ${VAR_NAME} - standard env var expansion
    """
    def replace_env(match: re.Match[str]) -> str:
        return os.environ.get(match.group(1), "")

    value = re.sub(r"\$\{env:([^}]+)\}", replace_env, value)
    return os.path.expandvars(value)


def expand_path(path: str | None) -> str | None:
    """Expand a path with ~ and environment variables."""
    if path is None:
        return None
    return expand_env_vars(os.path.expanduser(path))


def resolve_config_path(config_path: Path | None = None) -> Path:
    """Pick the config file: explicit path, then $WAGERD_CONFIG, then ./wagerd.yaml."""
    if config_path is not None:
        return config_path
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(expand_path(env_path))
    return DEFAULT_CONFIG_FILE


def load_yaml_file(path: Path) -> dict:
    """Load a YAML file."""
    if not path.exists():
        return {}

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {path}: expected a mapping, got {type(data).__name__}")

    return data


def _expand_config_data(data: dict) -> dict:
    """Expand paths and env vars in raw config data."""
    for key in ("base_dir", "artifact_dir", "python"):
        if isinstance(data.get(key), str):
            data[key] = expand_path(data[key])

    logging_data = data.get("logging")
    if isinstance(logging_data, dict) and isinstance(logging_data.get("file"), str):
        logging_data["file"] = expand_path(logging_data["file"])

    for worker in data.get("workers") or []:
        if not isinstance(worker, dict):
            continue
        if isinstance(worker.get("entry"), str):
            worker["entry"] = expand_env_vars(worker["entry"])
        if isinstance(worker.get("artifact"), str):
            worker["artifact"] = expand_path(worker["artifact"])
        if isinstance(worker.get("env"), dict):
            worker["env"] = {k: expand_env_vars(str(v)) for k, v in worker["env"].items()}

    return data


def parse_config(data: dict, root: Path | None = None) -> WagerdConfig:
    """Validate raw config data into a WagerdConfig.

    Args:
        data: Raw mapping (as loaded from YAML)
        root: Directory that relative base_dir values resolve against

    Raises:
        ConfigError: If the data does not describe a valid configuration
    """
    try:
        config = WagerdConfig.model_validate(_expand_config_data(copy.deepcopy(data)))
    except Exception as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if root is not None and not config.base_dir.is_absolute():
        config.base_dir = (root / config.base_dir).resolve()

    if os.environ.get(ENVIRONMENT_ENV_VAR) == "development" and config.mode != DeploymentMode.DEV:
        logger.debug(f"{ENVIRONMENT_ENV_VAR}=development, forcing dev mode")
        config.mode = DeploymentMode.DEV

    _validate_schedule(config)
    return config


def load_config(config_path: Path | None = None) -> WagerdConfig:
    """Load the wagerd configuration.

    Falls back to the built-in pipeline layout when no file exists.
    """
    path = resolve_config_path(config_path)

    if not path.exists():
        logger.info(f"Config file not found at {path}, using defaults")
        return parse_config(DEFAULT_CONFIG, root=Path.cwd())

    try:
        data = load_yaml_file(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    try:
        config = parse_config(data, root=path.resolve().parent)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from e

    logger.debug(f"Loaded config from {path} ({len(config.workers)} workers, {len(config.schedule)} tasks)")
    return config


def _validate_schedule(config: WagerdConfig) -> None:
    """Warn about schedule entries whose target worker is not configured.

    Such tasks stay in the schedule and log an error on every cycle.
    """
    names = {w.name for w in config.workers}
    for task in config.schedule:
        if task.worker not in names:
            logger.warning(f"Scheduled task '{task.label}' targets unknown worker '{task.worker}'")


def create_default_config(path: Path | None = None, force: bool = False) -> Path:
    """Write the default configuration file.

    Raises:
        ConfigError: If the file exists and force is not set
    """
    path = path or DEFAULT_CONFIG_FILE
    if path.exists() and not force:
        raise ConfigError(f"Config file already exists: {path}")

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Created default config at {path}")
    return path
