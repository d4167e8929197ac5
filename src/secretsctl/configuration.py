"""Persistent configuration: per-directory options and the version-check record."""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .config import DEFAULT_API_HOST, DEFAULT_DASHBOARD_HOST, env_var_name
from .errors import ConfigurationError
from .secrets import mask_value

OPTIONS = ("token", "api-host", "dashboard-host", "verify-tls", "project", "config")
SENSITIVE_OPTIONS = {"token"}
DEFAULTS = {
    "api-host": DEFAULT_API_HOST,
    "dashboard-host": DEFAULT_DASHBOARD_HOST,
    "verify-tls": "true",
}

WILDCARD_SCOPE = "*"

SOURCE_FLAG = "Flag"
SOURCE_ENV = "Environment"
SOURCE_CONFIG_FILE = "Config File"
SOURCE_DEFAULT = "Default"

NEVER = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class ScopedOption:
    """A resolved option value plus where it came from."""
    value: Optional[str] = None
    scope: Optional[str] = None
    source: Optional[str] = None
    sensitive: bool = False

    def display_value(self) -> str:
        if self.sensitive and self.value:
            return mask_value(self.value)
        return self.value or ""


@dataclass
class VersionCheck:
    latest_version: str = ""
    checked_at: datetime = NEVER

    @classmethod
    def from_dict(cls, data) -> "VersionCheck":
        if not isinstance(data, dict):
            return cls()
        return cls(
            latest_version=str(data.get("latest-version") or ""),
            checked_at=_parse_timestamp(data.get("checked-at")),
        )

    def to_dict(self) -> dict:
        return {
            "latest-version": self.latest_version,
            "checked-at": self.checked_at.isoformat(),
        }


@dataclass
class Configuration:
    """The contents of the user's config file."""
    path: Path
    scoped: Dict[str, Dict[str, str]] = field(default_factory=dict)
    version_check: VersionCheck = field(default_factory=VersionCheck)

    def lookup(self, option: str, scope: str) -> Optional[ScopedOption]:
        """Most specific persisted value of `option` that applies to `scope`."""
        best = None
        best_rank = None
        for configured_scope, values in self.scoped.items():
            if option not in values or not scope_matches(configured_scope, scope):
                continue
            rank = _scope_rank(configured_scope)
            if best_rank is None or rank > best_rank:
                best_rank = rank
                best = ScopedOption(
                    value=values[option],
                    scope=configured_scope,
                    source=SOURCE_CONFIG_FILE,
                    sensitive=option in SENSITIVE_OPTIONS,
                )
        return best

    def set(self, scope: str, option: str, value: str) -> None:
        if option not in OPTIONS:
            raise ConfigurationError(f"Invalid option: {option}")
        self.scoped.setdefault(scope, {})[option] = value

    def unset(self, scope: str, option: str) -> None:
        if option not in OPTIONS:
            raise ConfigurationError(f"Invalid option: {option}")
        values = self.scoped.get(scope)
        if not values:
            return
        values.pop(option, None)
        if not values:
            del self.scoped[scope]

    def to_dict(self) -> dict:
        return {
            "scoped": {scope: dict(values) for scope, values in self.scoped.items()},
            "version-check": self.version_check.to_dict(),
        }


def normalize_scope(scope: str) -> str:
    """Turn a user supplied scope into an absolute directory path."""
    if scope == WILDCARD_SCOPE:
        return scope
    if not scope:
        raise ConfigurationError("Scope may not be empty")
    try:
        return str(Path(scope).expanduser().resolve())
    except (OSError, RuntimeError, ValueError) as e:
        raise ConfigurationError(f"Invalid scope: {scope}") from e


def scope_matches(configured: str, active: str) -> bool:
    """True if a scope saved in the config file applies to the active scope."""
    if configured == WILDCARD_SCOPE:
        return True
    configured_path = Path(configured)
    if active == WILDCARD_SCOPE:
        # only global scopes apply everywhere
        return configured_path == configured_path.parent
    active_path = Path(active)
    return configured_path == active_path or configured_path in active_path.parents


def _scope_rank(scope: str) -> int:
    if scope == WILDCARD_SCOPE:
        return -1
    return len(Path(scope).parts)


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return NEVER
    else:
        return NEVER

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _stringify(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_bool(value) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config(path: Path) -> Configuration:
    """Load the config file; a missing file is an empty configuration."""
    path = Path(path)

    if not path.exists():
        return Configuration(path=path)

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Unable to parse config file {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Unable to read config file {path}: {e}") from e

    if data is None:
        return Configuration(path=path)

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    scoped_data = data.get("scoped") or {}
    if not isinstance(scoped_data, dict):
        raise ConfigurationError(f"Invalid 'scoped' section in config file {path}")

    scoped = {}
    for scope, values in scoped_data.items():
        if not isinstance(values, dict):
            raise ConfigurationError(f"Invalid options for scope '{scope}' in config file {path}")
        scope = str(scope)
        if scope != WILDCARD_SCOPE:
            scope = str(Path(scope).expanduser())
        scoped[scope] = {
            str(key): _stringify(value)
            for key, value in values.items()
            if value is not None
        }

    return Configuration(
        path=path,
        scoped=scoped,
        version_check=VersionCheck.from_dict(data.get("version-check")),
    )


def save_config(configuration: Configuration) -> None:
    """Write the config file, readable by the current user only."""
    path = configuration.path
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    temp_file = path.with_name(path.name + ".tmp")
    try:
        with open(temp_file, "w") as f:
            yaml.safe_dump(configuration.to_dict(), f, default_flow_style=False)
        os.chmod(temp_file, 0o600)
        temp_file.replace(path)
    except OSError as e:
        raise ConfigurationError(f"Unable to save config file {path}: {e}") from e
    finally:
        if temp_file.exists():
            temp_file.unlink()


def resolve_options(
    configuration: Configuration,
    scope: str,
    flags: Mapping[str, Optional[str]] = None,
    read_env: bool = True,
    environ: Mapping[str, str] = None,
) -> Dict[str, ScopedOption]:
    """
    Resolve every option for the active scope.

    Precedence: flag, environment variable, config file, default. Flags only
    count when given on the command line (value not None).
    """
    flags = flags or {}
    environ = os.environ if environ is None else environ

    resolved = {}
    for option in OPTIONS:
        sensitive = option in SENSITIVE_OPTIONS
        flag_value = flags.get(option)
        env_name = env_var_name(option)

        if flag_value is not None:
            resolved[option] = ScopedOption(_stringify(flag_value), scope, SOURCE_FLAG, sensitive)
        elif read_env and environ.get(env_name):
            resolved[option] = ScopedOption(environ[env_name], scope, SOURCE_ENV, sensitive)
        else:
            from_file = configuration.lookup(option, scope)
            if from_file is not None:
                resolved[option] = from_file
            else:
                resolved[option] = ScopedOption(DEFAULTS.get(option), WILDCARD_SCOPE, SOURCE_DEFAULT, sensitive)

    return resolved
