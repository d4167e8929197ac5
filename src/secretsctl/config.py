"""Locations, defaults and environment names for secretsctl."""

import os
from pathlib import Path

PACKAGE_NAME = "secretsctl"

DEFAULT_API_HOST = "https://api.secretsctl.dev"
DEFAULT_DASHBOARD_HOST = "https://dashboard.secretsctl.dev"
VERSION_CHECK_URL = "https://cli.secretsctl.dev/version"

# seconds
DEFAULT_TIMEOUT = 10.0
VERSION_CHECK_INTERVAL_HOURS = 24

ENV_PREFIX = "SECRETSCTL_"
CONFIG_FILE_ENV = ENV_PREFIX + "CONFIG_FILE"


def get_config_dir() -> Path:
    """Get config directory following XDG spec."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / "secretsctl"


def get_default_config_file() -> Path:
    """Get default configuration file path."""
    env_file = os.environ.get(CONFIG_FILE_ENV)
    if env_file:
        return Path(env_file).expanduser()

    return get_config_dir() / "config.yaml"


def env_var_name(option: str) -> str:
    """Environment variable for a config option, e.g. api-host -> SECRETSCTL_API_HOST."""
    return ENV_PREFIX + option.upper().replace("-", "_")


# Constants
DEFAULT_CONFIG_FILE = get_default_config_file()
