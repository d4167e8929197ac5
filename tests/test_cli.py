"""Tests for the root command: flags, pre-run hook and exit codes."""

import argparse
import json

import httpx
import pytest
import yaml

from secretsctl import cli, output, version_check
from secretsctl.api import SecretsAPI
from secretsctl.cli import build_parser, main, parse_duration
from secretsctl.configuration import load_config

SECRETS = {
    "API_KEY": {"raw": "sk-1234567890abcdef", "computed": "sk-1234567890abcdef"},
    "DSN": {"raw": "${HOST}/db", "computed": "db.internal/db"},
}


@pytest.fixture
def saved_config(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text(yaml.safe_dump({
        "scoped": {"/": {"token": "file-token", "project": "backend", "config": "dev"}},
    }))
    return config_file


@pytest.fixture
def run_cli(config_file):
    """Invoke main() against the test config file."""
    def run(*args):
        return main([*args, "--configuration", str(config_file), "--no-check-version"])
    return run


@pytest.fixture
def fake_api(monkeypatch):
    """Serve API requests from SECRETS and record them."""
    requests = []

    def handler(request):
        requests.append(request)
        if request.url.path.endswith("/download"):
            return httpx.Response(200, json={name: s["computed"] for name, s in SECRETS.items()})
        if request.method == "POST":
            return httpx.Response(200, json={"secrets": {}})
        return httpx.Response(200, json={"secrets": SECRETS})

    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(
        cli.Context, "api",
        lambda self: SecretsAPI(self.value("api-host"), self.value("token"), transport=transport),
    )
    return requests


class TestParseDuration:

    @pytest.mark.parametrize("value,seconds", [
        ("10", 10.0),
        ("2.5", 2.5),
        ("10s", 10.0),
        ("500ms", 0.5),
        ("1m30s", 90.0),
        ("1h", 3600.0),
    ])
    def test_valid(self, value, seconds):
        assert parse_duration(value) == pytest.approx(seconds)

    @pytest.mark.parametrize("value", ["", "abc", "10x", "0", "-5", "s10", "nan", "inf", "-inf"])
    def test_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_duration(value)


class TestExitCodes:

    def test_no_command_prints_usage(self, run_cli, capsys):
        assert run_cli() == 0
        assert "usage: secretsctl" in capsys.readouterr().out

    def test_malformed_config_file_fails(self, run_cli, config_file, capsys):
        config_file.parent.mkdir(parents=True)
        config_file.write_text("scoped: [unclosed\n")

        assert run_cli("configure") == 1
        assert "Unable to parse config file" in capsys.readouterr().err

    def test_non_mapping_config_file_fails(self, run_cli, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text("- one\n- two\n")

        assert run_cli("configure") == 1

    def test_usage_error_exits_one(self, run_cli):
        assert run_cli("no-such-command") == 1

    def test_invalid_timeout_exits_one(self, run_cli):
        assert run_cli("configure", "--timeout", "soon") == 1

    def test_missing_project(self, run_cli, capsys):
        assert run_cli("secrets", "--token", "t") == 1
        assert "You must specify a project" in capsys.readouterr().err

    def test_unexpected_exception_reported(self, run_cli, monkeypatch, capsys):
        def boom(args, ctx):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(cli, "cmd_version", boom)
        monkeypatch.setattr(cli, "is_development", lambda: False)

        assert run_cli("version") == 1
        assert "secretsctl exception:" in capsys.readouterr().err

    def test_unexpected_exception_raised_in_development(self, run_cli, monkeypatch):
        def boom(args, ctx):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(cli, "cmd_version", boom)
        monkeypatch.setattr(cli, "is_development", lambda: True)

        with pytest.raises(RuntimeError):
            run_cli("version")


class TestFlagOverrides:

    def test_config_file_value(self, run_cli, saved_config, capsys):
        assert run_cli("configure", "get", "token", "--plain") == 0
        assert capsys.readouterr().out == "file-token\n"

    def test_flag_overrides_config_file(self, run_cli, saved_config, capsys):
        assert run_cli("configure", "get", "token", "--plain", "--token", "flag-token") == 0
        assert capsys.readouterr().out == "flag-token\n"

    def test_global_flag_before_command(self, run_cli, saved_config, capsys):
        assert run_cli("--token", "flag-token", "configure", "get", "token", "--plain") == 0
        assert capsys.readouterr().out == "flag-token\n"

    def test_flag_not_persisted(self, run_cli, saved_config):
        run_cli("configure", "get", "--token", "flag-token")
        assert load_config(saved_config).scoped["/"]["token"] == "file-token"

    def test_environment_and_no_read_env(self, run_cli, saved_config, monkeypatch, capsys):
        monkeypatch.setenv("SECRETSCTL_TOKEN", "env-token")

        run_cli("configure", "get", "token", "--plain")
        assert capsys.readouterr().out == "env-token\n"

        run_cli("configure", "get", "token", "--plain", "--no-read-env")
        assert capsys.readouterr().out == "file-token\n"

    def test_timeout_and_tls_flags(self, saved_config, monkeypatch):
        seen = {}

        def capture(args, ctx):
            seen["timeout"] = ctx.timeout
            seen["verify_tls"] = ctx.verify_tls
            return 0

        monkeypatch.setattr(cli, "cmd_version", capture)
        base = ["--configuration", str(saved_config), "--no-check-version"]

        main(["version", "--timeout", "30s", *base])
        assert seen == {"timeout": 30.0, "verify_tls": True}

        main(["version", "--no-timeout", "--no-verify-tls", *base])
        assert seen == {"timeout": None, "verify_tls": False}


class TestSilentAndPrintConfig:

    def test_info_shown_by_default(self, run_cli, config_file, tmp_path, capsys):
        assert run_cli("configure", "set", "project=web", "--scope", str(tmp_path)) == 0
        assert "Saved:" in capsys.readouterr().err

    def test_silent_hides_info(self, run_cli, config_file, tmp_path, capsys):
        assert run_cli("configure", "set", "project=web", "--scope", str(tmp_path), "--silent") == 0
        assert capsys.readouterr().err == ""
        assert load_config(config_file).scoped[str(tmp_path.resolve())] == {"project": "web"}

    def test_print_config_ignores_silent(self, run_cli, saved_config, capsys):
        assert run_cli("version", "--silent", "--print-config") == 0
        out = capsys.readouterr().out
        assert "Active configuration" in out
        assert "0.1.0" in out

    def test_debug_overrides_silent(self, run_cli, capsys):
        run_cli("version", "--silent", "--debug")
        assert "--silent has no effect" in capsys.readouterr().err
        assert output.state.debug

    def test_print_config_json(self, run_cli, saved_config, capsys):
        assert run_cli("version", "--print-config", "--json", "--token", "flag-token") == 0
        out = capsys.readouterr().out
        data = json.loads(out[out.index("{"):out.rindex("}") + 1])
        assert data["token"]["source"] == "Flag"
        assert data["project"] == {"value": "backend", "scope": "/", "source": "Config File"}


class TestVersionCheckScheduling:

    def test_check_runs_before_command(self, saved_config, monkeypatch):
        calls = []
        monkeypatch.setattr(cli, "check_version", lambda command, configuration, **kwargs: calls.append((command, kwargs["enabled"])))

        main(["configure", "--configuration", str(saved_config)])
        main(["configure", "--configuration", str(saved_config), "--no-check-version"])

        assert calls == [("configure", True), ("configure", False)]

    def test_no_check_when_output_hidden(self, saved_config, monkeypatch):
        calls = []
        monkeypatch.setattr(cli, "check_version", lambda *args, **kwargs: calls.append(args))

        main(["configure", "--configuration", str(saved_config), "--silent"])
        main(["configure", "--configuration", str(saved_config), "--json"])
        main(["configure", "get", "token", "--plain", "--configuration", str(saved_config)])

        assert calls == []

    def test_failed_check_does_not_block_command(self, saved_config, capsys):
        # the autouse fixture makes every version request fail
        assert main(["version", "--configuration", str(saved_config)]) == 0
        assert capsys.readouterr().out == "0.1.0\n"
        assert load_config(saved_config).version_check.latest_version == ""


class TestSecretsCommands:

    def test_list_masks_values(self, run_cli, saved_config, fake_api, capsys):
        assert run_cli("secrets") == 0
        out = capsys.readouterr().out
        assert "API_KEY" in out
        assert "1234567890ab" not in out

    def test_only_names(self, run_cli, saved_config, fake_api, capsys):
        assert run_cli("secrets", "list", "--only-names") == 0
        assert capsys.readouterr().out == "API_KEY\nDSN\n"

    def test_get_plain(self, run_cli, saved_config, fake_api, capsys):
        assert run_cli("secrets", "get", "DSN", "--plain") == 0
        assert capsys.readouterr().out == "db.internal/db\n"

    def test_get_raw(self, run_cli, saved_config, fake_api, capsys):
        assert run_cli("secrets", "get", "DSN", "--plain", "--raw") == 0
        assert capsys.readouterr().out == "${HOST}/db\n"

    def test_get_unknown(self, run_cli, saved_config, fake_api, capsys):
        assert run_cli("secrets", "get", "MISSING") == 1
        assert "Could not find requested secret: MISSING" in capsys.readouterr().err

    def test_project_flag_overrides(self, run_cli, saved_config, fake_api):
        run_cli("secrets", "--project", "other", "-c", "prd")
        params = fake_api[-1].url.params
        assert (params["project"], params["config"]) == ("other", "prd")

    def test_set(self, run_cli, saved_config, fake_api):
        assert run_cli("secrets", "set", "API_KEY=new", "EMPTY=") == 0
        body = json.loads(fake_api[-1].content)
        assert body["secrets"] == {"API_KEY": "new", "EMPTY": ""}

    def test_delete_with_yes(self, run_cli, saved_config, fake_api):
        assert run_cli("secrets", "delete", "DSN", "-y") == 0
        assert json.loads(fake_api[-1].content)["secrets"] == {"DSN": None}

    def test_delete_cancelled(self, run_cli, saved_config, fake_api, monkeypatch):
        monkeypatch.setattr("builtins.input", lambda prompt: "no")
        assert run_cli("secrets", "delete", "DSN") == 0
        assert fake_api == []

    def test_download_no_file(self, run_cli, saved_config, fake_api, capsys):
        assert run_cli("secrets", "download", "--no-file", "--format", "env") == 0
        assert capsys.readouterr().out == 'API_KEY="sk-1234567890abcdef"\nDSN="db.internal/db"\n'

    def test_download_to_file(self, run_cli, saved_config, fake_api, tmp_path):
        target = tmp_path / "out.json"
        assert run_cli("secrets", "download", str(target)) == 0
        assert json.loads(target.read_text())["DSN"] == "db.internal/db"

    def test_run_injects_secrets(self, run_cli, saved_config, fake_api, monkeypatch):
        seen = {}

        def fake_run(command, secrets):
            seen["command"] = command
            seen["secrets"] = secrets
            return 5

        monkeypatch.setattr(cli, "run_with_secrets", fake_run)

        assert main(["run", "--configuration", str(saved_config), "--", "env"]) == 5
        assert seen["command"][-1] == "env"
        assert seen["secrets"]["API_KEY"] == "sk-1234567890abcdef"


class TestConfigureCommands:

    def test_set_and_unset(self, run_cli, config_file, tmp_path):
        scope = str(tmp_path.resolve())

        assert run_cli("configure", "set", "token=abc", "config=dev", "--scope", scope) == 0
        assert load_config(config_file).scoped[scope] == {"token": "abc", "config": "dev"}

        assert run_cli("configure", "unset", "token", "--scope", scope) == 0
        assert load_config(config_file).scoped[scope] == {"config": "dev"}

    def test_invalid_option(self, run_cli, config_file, capsys):
        assert run_cli("configure", "set", "colour=blue") == 1
        assert "Invalid option: colour" in capsys.readouterr().err
        assert not config_file.exists()


class TestPromptedSecrets:
    """A bare NAME is read with hidden input and must be confirmed."""

    def answer(self, monkeypatch, *answers):
        replies = iter(answers)
        monkeypatch.setattr("getpass.getpass", lambda prompt: next(replies))

    def test_prompted_value_is_set(self, run_cli, saved_config, fake_api, monkeypatch):
        self.answer(monkeypatch, "s3cret", "s3cret")

        assert run_cli("secrets", "set", "NEW_KEY") == 0
        assert json.loads(fake_api[-1].content)["secrets"] == {"NEW_KEY": "s3cret"}

    def test_empty_value_rejected(self, run_cli, saved_config, fake_api, monkeypatch, capsys):
        self.answer(monkeypatch, "")

        assert run_cli("secrets", "set", "NEW_KEY") == 1
        assert "Empty value not allowed" in capsys.readouterr().err
        assert fake_api == []

    def test_mismatched_confirmation_rejected(self, run_cli, saved_config, fake_api, monkeypatch, capsys):
        self.answer(monkeypatch, "s3cret", "s3cre7")

        assert run_cli("secrets", "set", "NEW_KEY") == 1
        assert "Values don't match" in capsys.readouterr().err
        assert fake_api == []


class TestNoFileIsSilent:

    def test_no_file_suppresses_info(self, run_cli, saved_config, fake_api, capsys):
        assert run_cli("secrets", "download", "--no-file") == 0

        assert output.state.silent
        assert not output.can_log_info()
        captured = capsys.readouterr()
        assert captured.err == ""
        assert json.loads(captured.out)["DSN"] == "db.internal/db"


class TestListingFlags:

    def test_flags_before_list_survive(self):
        args = build_parser().parse_args(["secrets", "--raw", "--only-names", "list"])
        assert args.raw and args.only_names

    def test_flags_after_list(self):
        args = build_parser().parse_args(["secrets", "list", "--raw"])
        assert args.raw
        assert not getattr(args, "only_names", False)


class TestUpdateCommand:

    def test_update_installs_once(self, saved_config, monkeypatch):
        installs = []
        monkeypatch.setattr(cli, "get_latest_cli_version", lambda **kwargs: "9.9.9")
        monkeypatch.setattr(version_check, "is_windows", lambda: False)
        monkeypatch.setattr(version_check, "confirm", lambda prompt, default=True: True)
        monkeypatch.setattr(version_check, "install_update", installs.append)

        assert main(["update", "--configuration", str(saved_config)]) == 0

        assert installs == ["9.9.9"]
        assert load_config(saved_config).version_check.latest_version == "9.9.9"


class TestCompletion:

    @pytest.mark.parametrize("shell", ["bash", "zsh"])
    def test_prints_registration_script(self, run_cli, shell, capsys):
        assert run_cli("completion", shell) == 0
        assert "secretsctl" in capsys.readouterr().out

    def test_defaults_to_bash(self, run_cli, capsys):
        assert run_cli("completion") == 0
        assert "complete" in capsys.readouterr().out

    def test_unknown_shell(self, run_cli):
        assert run_cli("completion", "cmd.exe") == 1
