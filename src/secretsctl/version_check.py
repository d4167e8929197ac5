"""Throttled check for newer CLI releases, and self-update."""

import logging
import subprocess
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, Tuple

from rich.prompt import Confirm

from . import __version__
from . import output
from .api import get_latest_cli_version
from .config import PACKAGE_NAME, VERSION_CHECK_INTERVAL_HOURS
from .configuration import Configuration, VersionCheck, save_config
from .errors import UpdateError, VersionCheckError

logger = logging.getLogger(__name__)

# commands whose stdout is consumed by other programs, and update which checks itself
SKIPPED_COMMANDS = ("run", "download", "completion", "update")

CHECK_INTERVAL = timedelta(hours=VERSION_CHECK_INTERVAL_HOURS)


def is_development(version: str = __version__) -> bool:
    return ".dev" in version


def is_windows() -> bool:
    return sys.platform.startswith("win")


def parse_version(version: str) -> Tuple[int, ...]:
    """'v1.10.2' -> (1, 10, 2). Non-numeric suffixes are ignored."""
    parts = []
    for part in version.strip().lstrip("vV").split("."):
        digits = ""
        for char in part:
            if not char.isdigit():
                break
            digits += char
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def is_newer(latest: str, current: str = __version__) -> bool:
    latest_parts = parse_version(latest)
    current_parts = parse_version(current)
    width = max(len(latest_parts), len(current_parts))
    latest_parts += (0,) * (width - len(latest_parts))
    current_parts += (0,) * (width - len(current_parts))
    return latest_parts > current_parts


def is_check_due(previous: VersionCheck, now: datetime = None) -> bool:
    """At most one check per interval."""
    now = now or datetime.now(timezone.utc)
    return now > previous.checked_at + CHECK_INTERVAL


def new_version_available(
    fetch: Callable[[], str] = get_latest_cli_version,
    now: datetime = None,
) -> Tuple[bool, VersionCheck]:
    """Query the latest version. Raises VersionCheckError on failure."""
    latest = fetch()
    checked = VersionCheck(latest_version=latest, checked_at=now or datetime.now(timezone.utc))
    return is_newer(latest), checked


def confirm(prompt: str, default: bool = True) -> bool:
    if not sys.stdin.isatty():
        return False
    return Confirm.ask(prompt, default=default, console=output.err_console)


def install_update(version: str = None) -> None:
    """Upgrade the installed package with pip."""
    requirement = f"{PACKAGE_NAME}=={version}" if version else PACKAGE_NAME
    command = [sys.executable, "-m", "pip", "install", "--upgrade", requirement]

    output.log(f"[dim]Installing {requirement}...[/dim]")
    try:
        result = subprocess.run(command, capture_output=True, text=True)
    except OSError as e:
        raise UpdateError(f"Unable to run pip: {e}") from e

    if result.returncode != 0:
        raise UpdateError(f"Failed to install {requirement}: {result.stderr.strip()}")

    output.log(f"[green]Installed:[/green] {requirement}")


def upgrade_instructions(version: str) -> str:
    return (
        f"Update: secretsctl {version} is available\n\n"
        f"You can update via 'pip install --upgrade {PACKAGE_NAME}'\n"
    )


def check_version(
    command: str,
    configuration: Configuration,
    enabled: bool = True,
    fetch: Callable[[], str] = get_latest_cli_version,
    now: datetime = None,
) -> None:
    """
    Best-effort update check run before a command.

    Failures are ignored and nothing is recorded, so the next invocation
    tries again.
    """
    if command in SKIPPED_COMMANDS:
        return

    if not enabled or is_development():
        return

    previous = configuration.version_check
    if not is_check_due(previous, now):
        return

    try:
        available, checked = new_version_available(fetch, now)
    except VersionCheckError as e:
        logger.debug("Version check failed: %s", e)
        return

    if not available:
        output.log_debug("No CLI updates available")
        checked.latest_version = previous.latest_version
    elif is_windows():
        output.log(upgrade_instructions(checked.latest_version))
    else:
        output.log("[green]An update is available.[/green]")
        if confirm(f"Install secretsctl {checked.latest_version}", default=True):
            install_update(checked.latest_version)

    configuration.version_check = checked
    save_config(configuration)


def run_update(
    configuration: Configuration,
    force: bool = False,
    fetch: Callable[[], str] = get_latest_cli_version,
) -> bool:
    """Check now, ignoring the throttle, and install if newer. Returns True if installed."""
    available, checked = new_version_available(fetch)
    configuration.version_check = checked
    save_config(configuration)

    if not available and not force:
        output.log(f"You are already running the latest version ({__version__})")
        return False

    if is_windows():
        output.log(upgrade_instructions(checked.latest_version))
        return False

    install_update(checked.latest_version)
    return True
