"""Shared fixtures for secretsctl tests."""

import logging

import pytest
from rich.logging import RichHandler

from secretsctl import cli, output
from secretsctl.configuration import OPTIONS
from secretsctl.config import CONFIG_FILE_ENV, env_var_name
from secretsctl.errors import VersionCheckError


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    """No real environment overrides, no network version checks, clean output modes."""
    for option in OPTIONS:
        monkeypatch.delenv(env_var_name(option), raising=False)
    monkeypatch.delenv(CONFIG_FILE_ENV, raising=False)

    def offline(**kwargs):
        raise VersionCheckError("offline")

    monkeypatch.setattr(cli, "get_latest_cli_version", offline)
    output.reset()

    root = logging.getLogger()
    level = root.level
    yield
    output.reset()
    # --debug installs a RichHandler on the root logger
    for handler in root.handlers[:]:
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "config" / "config.yaml"
