"""Local handling of secrets fetched from the API."""

import json
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Tuple

import yaml

from .errors import SecretsCLIError

DOWNLOAD_FORMATS = ("json", "env", "yaml")


def mask_value(value: str, peek_chars: int = 4) -> str:
    """
    Mask a secret value, showing only first and last N characters.

    Used anywhere a secret is displayed without --raw so that full values do
    not end up in terminal scrollback or screenshots.
    """
    if not value:
        return "(empty)"

    if len(value) <= peek_chars * 2:
        return "*" * len(value)

    first = value[:peek_chars]
    last = value[-peek_chars:]
    hidden_len = len(value) - (peek_chars * 2)
    return f"{first}{'*' * min(hidden_len, 8)}{last}"


def split_assignment(arg: str) -> Tuple[str, str]:
    """Split NAME=VALUE. The value may itself contain '='."""
    if "=" not in arg:
        raise SecretsCLIError(f"Invalid format: {arg} (use NAME=VALUE)")
    name, value = arg.split("=", 1)
    if not name:
        raise SecretsCLIError(f"Invalid format: {arg} (name is empty)")
    return name, value


def _env_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def format_secrets(secrets: Dict[str, str], fmt: str = "json") -> str:
    """Render downloaded secrets as json, env (dotenv) or yaml."""
    if fmt == "json":
        return json.dumps(secrets, indent=2, sort_keys=True)
    if fmt == "env":
        return "\n".join(f"{name}={_env_quote(value)}" for name, value in sorted(secrets.items()))
    if fmt == "yaml":
        return yaml.safe_dump(secrets, default_flow_style=False).rstrip("\n")
    raise SecretsCLIError(f"Invalid format: {fmt} (expected one of {', '.join(DOWNLOAD_FORMATS)})")


def write_secrets_file(path: Path, content: str) -> None:
    """Write secrets to disk, readable by the current user only."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_file = path.with_name(path.name + ".tmp")
    try:
        fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(content)
            f.write("\n")
        temp_file.replace(path)
    except OSError as e:
        raise SecretsCLIError(f"Unable to write {path}: {e}") from e
    finally:
        if temp_file.exists():
            temp_file.unlink()


def build_env(secrets: Dict[str, str], base: Dict[str, str] = None) -> Dict[str, str]:
    """Child environment: the current environment with secrets layered on top."""
    env = dict(os.environ if base is None else base)
    env.update({name: str(value) for name, value in secrets.items()})
    return env


def run_with_secrets(command: List[str], secrets: Dict[str, str]) -> int:
    """Run a command with secrets injected; returns its exit code."""
    # argparse.REMAINDER keeps the '--' separator
    if command and command[0] == "--":
        command = command[1:]

    if not command:
        raise SecretsCLIError("No command specified")

    try:
        result = subprocess.run(command, env=build_env(secrets), shell=False)
    except FileNotFoundError as e:
        raise SecretsCLIError(f"Command not found: {command[0]}") from e

    return result.returncode
