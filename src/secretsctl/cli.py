"""CLI for secretsctl - command-line client for a hosted secrets service."""

import argparse
import getpass
import math
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import argcomplete
from rich.markup import escape

from . import __version__
from . import output
from .api import SecretsAPI, get_latest_cli_version
from .config import DEFAULT_CONFIG_FILE, DEFAULT_TIMEOUT
from .configuration import (
    OPTIONS,
    Configuration,
    ScopedOption,
    load_config,
    normalize_scope,
    parse_bool,
    resolve_options,
    save_config,
)
from .errors import ConfigurationError, SecretsCLIError
from .output import console, err_console
from .secrets import (
    DOWNLOAD_FORMATS,
    format_secrets,
    mask_value,
    run_with_secrets,
    split_assignment,
    write_secrets_file,
)
from .version_check import check_version, is_development, run_update

DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}
COMPLETION_SHELLS = ("bash", "zsh", "fish")


def parse_duration(value: str) -> float:
    """Parse '10', '10s', '1m30s' or '500ms' into seconds."""
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        if not value or not re.fullmatch(f"(?:{DURATION_PART.pattern})+", value):
            raise argparse.ArgumentTypeError(f"invalid duration: {value}")
        seconds = sum(
            float(amount) * DURATION_UNITS[unit]
            for amount, unit in DURATION_PART.findall(value)
        )

    if not math.isfinite(seconds) or seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be a positive number: {value}")
    return seconds


@dataclass
class Context:
    """Everything the pre-run hook worked out for the current invocation."""
    configuration: Configuration
    scope: str
    options: Dict[str, ScopedOption]
    timeout: Optional[float]
    verify_tls: bool

    def value(self, option: str) -> Optional[str]:
        return self.options[option].value

    def api(self) -> SecretsAPI:
        return SecretsAPI(
            host=self.value("api-host"),
            token=self.value("token"),
            timeout=self.timeout,
            verify_tls=self.verify_tls,
        )

    def project_config(self) -> Tuple[str, str]:
        project = self.value("project")
        config = self.value("config")
        if not project:
            raise ConfigurationError(
                "You must specify a project. Use --project or 'secretsctl configure set project=<name>'"
            )
        if not config:
            raise ConfigurationError(
                "You must specify a config. Use --config or 'secretsctl configure set config=<name>'"
            )
        return project, config

    def fetch_latest_version(self) -> str:
        return get_latest_cli_version(timeout=self.timeout, verify_tls=self.verify_tls)


def pre_run(args) -> Context:
    """Apply flags, load the config file and run the update check."""
    scope_arg = getattr(args, "scope", ".")
    try:
        scope = normalize_scope(scope_arg)
    except ConfigurationError as e:
        raise ConfigurationError(f"Invalid scope: {scope_arg}") from e

    config_file = Path(getattr(args, "configuration", None) or DEFAULT_CONFIG_FILE).expanduser()
    timeout = getattr(args, "timeout", DEFAULT_TIMEOUT)
    if getattr(args, "no_timeout", False):
        timeout = None

    debug = getattr(args, "debug", False)
    silent = getattr(args, "silent", False)
    # --no-file sends downloaded secrets to stdout
    silent = silent or getattr(args, "no_file", False)
    output.configure(debug=debug, silent=silent, json=getattr(args, "json", False))
    output.setup_logging(debug)

    configuration = load_config(config_file)

    if debug and silent:
        output.log_warning("--silent has no effect when used with --debug")

    flags = {
        "token": getattr(args, "token", None),
        "api-host": getattr(args, "api_host", None),
        "dashboard-host": getattr(args, "dashboard_host", None),
        "verify-tls": "false" if getattr(args, "no_verify_tls", False) else None,
        "project": getattr(args, "project", None),
        "config": getattr(args, "config", None),
    }
    options = resolve_options(
        configuration,
        scope,
        flags=flags,
        read_env=not getattr(args, "no_read_env", False),
    )

    ctx = Context(
        configuration=configuration,
        scope=scope,
        options=options,
        timeout=timeout,
        verify_tls=parse_bool(options["verify-tls"].value),
    )

    # this output does not honor --silent
    if getattr(args, "print_config", False):
        console.print("Active configuration")
        output.print_scoped_config(options.items())
        console.print("")

    # only check when the result can be shown
    if output.can_log_info() and not getattr(args, "plain", False):
        check_version(
            getattr(args, "command_name", ""),
            configuration,
            enabled=not getattr(args, "no_check_version", False),
            fetch=ctx.fetch_latest_version,
        )

    return ctx


def cmd_me(args, ctx):
    """Show information about the active token."""
    info = ctx.api().get_me()

    if output.state.json:
        output.print_json(info)
        return 0

    rows = [(key, value) for key, value in info.items() if not isinstance(value, (dict, list))]
    output.print_table(None, [("Field", "cyan"), ("Value", None)], rows)
    return 0


def cmd_secrets_list(args, ctx):
    """List secrets of the active project config (values masked unless --raw)."""
    project, config = ctx.project_config()
    secrets = ctx.api().list_secrets(project, config)

    if output.state.json:
        if getattr(args, "only_names", False):
            output.print_json(sorted(secrets))
        else:
            output.print_json(secrets)
        return 0

    if getattr(args, "only_names", False):
        for name in sorted(secrets):
            print(name)
        return 0

    if not secrets:
        console.print("[dim]No secrets found.[/dim]")
        return 0

    raw = getattr(args, "raw", False)
    rows = []
    for name in sorted(secrets):
        value = secrets[name].get("raw" if raw else "computed") or ""
        rows.append((name, value if raw else mask_value(value)))

    output.print_table(f"{project} / {config}", [("Name", "cyan"), ("Value", "green")], rows)
    output.log(f"[dim]Total: {len(secrets)} secrets[/dim]")
    return 0


def cmd_secrets_get(args, ctx):
    """Print the values of the named secrets."""
    project, config = ctx.project_config()
    secrets = ctx.api().list_secrets(project, config)

    for name in args.names:
        if name not in secrets:
            raise SecretsCLIError(f"Could not find requested secret: {name}")

    key = "raw" if args.raw else "computed"

    if args.plain:
        for name in args.names:
            print(secrets[name].get(key) or "")
        return 0

    if output.state.json:
        output.print_json({name: secrets[name] for name in args.names})
        return 0

    rows = [(name, secrets[name].get(key) or "") for name in args.names]
    output.print_table(None, [("Name", "cyan"), ("Value", "green")], rows)
    return 0


def _prompt_secret(name: str) -> str:
    """Read a value via hidden input (not in shell history)."""
    err_console.print(f"[cyan]Setting secret:[/cyan] {escape(name)}")
    value = getpass.getpass("Enter value (hidden): ")
    if not value:
        raise SecretsCLIError("Empty value not allowed")

    confirm = getpass.getpass("Confirm value (hidden): ")
    if value != confirm:
        raise SecretsCLIError("Values don't match")
    return value


def cmd_secrets_set(args, ctx):
    """
    Set secrets.

    Each argument is NAME=VALUE, or a bare NAME to be prompted for the value
    with hidden input. NAME=VALUE is visible in shell history.
    """
    project, config = ctx.project_config()

    changes = {}
    for arg in args.secrets:
        if "=" in arg:
            name, value = split_assignment(arg)
        else:
            name, value = arg, _prompt_secret(arg)
        changes[name] = value

    result = ctx.api().set_secrets(project, config, changes)

    if output.state.json:
        output.print_json(result)
        return 0

    for name, value in changes.items():
        output.log(f"[green]Set:[/green] {escape(name)} = {mask_value(value)}")
    return 0


def cmd_secrets_delete(args, ctx):
    """Delete secrets."""
    project, config = ctx.project_config()

    if not args.yes:
        console.print(f"[yellow]Delete:[/yellow] {escape(', '.join(args.names))} from {project} / {config}")
        confirm = input("Type 'yes' to confirm: ")
        if confirm.lower() != "yes":
            console.print("[dim]Cancelled[/dim]")
            return 0

    ctx.api().delete_secrets(project, config, args.names)

    for name in args.names:
        output.log(f"[green]Deleted:[/green] {escape(name)}")
    return 0


def cmd_secrets_download(args, ctx):
    """Download secrets to a file, or to stdout with --no-file."""
    project, config = ctx.project_config()
    secrets = ctx.api().download_secrets(project, config)
    content = format_secrets(secrets, args.format)

    if args.no_file:
        print(content)
        return 0

    path = Path(args.file) if args.file else Path(f"secrets.{args.format}")
    write_secrets_file(path, content)
    output.log(f"[green]Downloaded:[/green] {len(secrets)} secrets to {escape(str(path))}")
    return 0


def cmd_run(args, ctx):
    """
    Run a command with secrets injected as environment variables.

    Example:
        secretsctl run -- ./server --port 8080
    """
    project, config = ctx.project_config()
    secrets = ctx.api().download_secrets(project, config)
    output.log_debug(f"Injecting {len(secrets)} secrets from {project} / {config}")
    return run_with_secrets(args.exec_command, secrets)


def _check_option_names(names):
    for name in names:
        if name not in OPTIONS:
            raise ConfigurationError(f"Invalid option: {name} (expected one of {', '.join(OPTIONS)})")


def cmd_configure_get(args, ctx):
    """Show resolved options for the active scope."""
    names = getattr(args, "options", None) or list(OPTIONS)
    _check_option_names(names)

    if getattr(args, "plain", False):
        for name in names:
            print(ctx.value(name) or "")
        return 0

    output.print_scoped_config([(name, ctx.options[name]) for name in names])
    return 0


def cmd_configure_set(args, ctx):
    """Save options for the active scope."""
    pairs = [split_assignment(arg) for arg in args.pairs]
    _check_option_names(name for name, _ in pairs)

    for name, value in pairs:
        ctx.configuration.set(ctx.scope, name, value)
    save_config(ctx.configuration)

    for name, value in pairs:
        shown = mask_value(value) if name == "token" else value
        output.log(f"[green]Saved:[/green] {name} = {escape(shown)} [dim]({escape(ctx.scope)})[/dim]")
    return 0


def cmd_configure_unset(args, ctx):
    """Remove options from the active scope."""
    _check_option_names(args.options)

    for name in args.options:
        ctx.configuration.unset(ctx.scope, name)
    save_config(ctx.configuration)

    for name in args.options:
        output.log(f"[green]Removed:[/green] {name} [dim]({escape(ctx.scope)})[/dim]")
    return 0


def cmd_update(args, ctx):
    """Install the latest CLI release."""
    run_update(ctx.configuration, force=args.force, fetch=ctx.fetch_latest_version)
    return 0


def cmd_version(args, ctx):
    print(__version__)
    return 0


def cmd_completion(args, ctx):
    """
    Print the completion script for a shell.

    Example:
        eval "$(secretsctl completion bash)"
    """
    print(argcomplete.shellcode(["secretsctl"], shell=args.shell))
    return 0


def global_options() -> argparse.ArgumentParser:
    """
    Flags accepted by every command, before or after the command name.

    Defaults are suppressed so that only flags given on the command line end
    up in the namespace and can override the config file.
    """
    parser = argparse.ArgumentParser(add_help=False, allow_abbrev=False, argument_default=argparse.SUPPRESS)
    parser.add_argument("-t", "--token", help="API token")
    parser.add_argument("--api-host", help="The host address for the secrets API")
    parser.add_argument("--dashboard-host", help="The host address for the dashboard")
    parser.add_argument("--no-check-version", action="store_true", help="Disable checking for CLI updates")
    parser.add_argument("--no-verify-tls", action="store_true",
                        help="Do not verify the validity of TLS certificates on HTTP requests (not recommended)")
    parser.add_argument("--no-timeout", action="store_true", help="Disable HTTP timeout")
    parser.add_argument("--timeout", type=parse_duration, metavar="DURATION",
                        help=f"Max HTTP request duration, e.g. 30s or 1m (default: {DEFAULT_TIMEOUT:g}s)")
    parser.add_argument("--no-read-env", action="store_true", help="Do not read config from the environment")
    parser.add_argument("--scope", help="The directory to scope your config to (default: .)")
    parser.add_argument("--configuration", help=f"Config file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--json", action="store_true", help="Output JSON")
    parser.add_argument("--debug", action="store_true", help="Output additional information")
    parser.add_argument("--print-config", action="store_true", help="Output active configuration")
    parser.add_argument("--silent", action="store_true", help="Disable output of info messages")
    return parser


def project_options() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False, allow_abbrev=False, argument_default=argparse.SUPPRESS)
    parser.add_argument("-p", "--project", help="Project (overrides the scoped 'project' option)")
    parser.add_argument("-c", "--config", help="Config (overrides the scoped 'config' option)")
    return parser


def build_parser() -> argparse.ArgumentParser:
    common = global_options()
    scoped = project_options()

    parser = argparse.ArgumentParser(
        prog="secretsctl",
        description="Command-line client for a hosted secrets service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=[common],
        allow_abbrev=False,
        epilog="""
Examples:
  secretsctl configure set token=<token>      # Save a token for all directories
  secretsctl configure set project=backend config=dev
  secretsctl secrets                          # List secrets (masked)
  secretsctl secrets get API_KEY --plain      # Print a single value
  secretsctl secrets set API_KEY              # Set via hidden input
  secretsctl run -- ./server                  # Run with secrets injected

Environment:
  SECRETSCTL_TOKEN, SECRETSCTL_API_HOST, SECRETSCTL_PROJECT, SECRETSCTL_CONFIG
                      Override config file values (ignored with --no-read-env)
  SECRETSCTL_CONFIG_FILE
                      Override default config file location
        """
    )
    parser.add_argument("-v", "--version", action="version", version=__version__,
                        help="Get the version of the CLI")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add(parent, name, handler, help_text, parents=(common,)):
        sub = parent.add_parser(name, help=help_text, parents=list(parents), allow_abbrev=False)
        sub.set_defaults(handler=handler, command_name=name)
        return sub

    # me
    add(subparsers, "me", cmd_me, "Get info about the active token")

    # secrets
    secrets_parser = add(subparsers, "secrets", cmd_secrets_list, "Manage secrets", parents=(common, scoped))
    secrets_parser.add_argument("--raw", action="store_true", default=argparse.SUPPRESS,
                                help="Show unmasked raw values")
    secrets_parser.add_argument("--only-names", action="store_true", default=argparse.SUPPRESS,
                                help="Only print secret names")
    secrets_sub = secrets_parser.add_subparsers(dest="secrets_command")

    list_parser = add(secrets_sub, "list", cmd_secrets_list, "List secrets (values masked)", parents=(common, scoped))
    list_parser.add_argument("--raw", action="store_true", default=argparse.SUPPRESS,
                                help="Show unmasked raw values")
    list_parser.add_argument("--only-names", action="store_true", default=argparse.SUPPRESS,
                                help="Only print secret names")

    get_parser = add(secrets_sub, "get", cmd_secrets_get, "Get secret values", parents=(common, scoped))
    get_parser.add_argument("names", nargs="+", metavar="NAME", help="Secret name")
    get_parser.add_argument("--plain", action="store_true", help="Print values without formatting")
    get_parser.add_argument("--raw", action="store_true", help="Print raw values (without references resolved)")

    set_parser = add(secrets_sub, "set", cmd_secrets_set, "Set secrets", parents=(common, scoped))
    set_parser.add_argument("secrets", nargs="+", metavar="NAME[=VALUE]",
                            help="Secret to set; a bare NAME prompts for the value")

    delete_parser = add(secrets_sub, "delete", cmd_secrets_delete, "Delete secrets", parents=(common, scoped))
    delete_parser.add_argument("names", nargs="+", metavar="NAME", help="Secret name")
    delete_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    download_parser = add(secrets_sub, "download", cmd_secrets_download, "Download secrets", parents=(common, scoped))
    download_parser.add_argument("file", nargs="?", help="Output file (default: secrets.<format>)")
    download_parser.add_argument("--format", choices=DOWNLOAD_FORMATS, default="json", help="Output format")
    download_parser.add_argument("--no-file", action="store_true", help="Print secrets to stdout instead of a file")

    # run
    run_parser = add(subparsers, "run", cmd_run, "Run a command with secrets injected", parents=(common, scoped))
    run_parser.add_argument("exec_command", nargs=argparse.REMAINDER, help="Command to run")

    # configure
    configure_parser = add(subparsers, "configure", cmd_configure_get, "View and edit config options")
    configure_sub = configure_parser.add_subparsers(dest="configure_command")

    configure_get = add(configure_sub, "get", cmd_configure_get, "Show option values")
    configure_get.add_argument("options", nargs="*", metavar="OPTION", help=f"One of: {', '.join(OPTIONS)}")
    configure_get.add_argument("--plain", action="store_true", help="Print values without formatting")

    configure_set = add(configure_sub, "set", cmd_configure_set, "Save options for the scope")
    configure_set.add_argument("pairs", nargs="+", metavar="OPTION=VALUE")

    configure_unset = add(configure_sub, "unset", cmd_configure_unset, "Remove options from the scope")
    configure_unset.add_argument("options", nargs="+", metavar="OPTION")

    # update
    update_parser = add(subparsers, "update", cmd_update, "Update the CLI")
    update_parser.add_argument("--force", action="store_true", help="Reinstall even if up to date")

    # version
    add(subparsers, "version", cmd_version, "Get the version of the CLI")

    # completion
    completion_parser = add(subparsers, "completion", cmd_completion, "Print a shell completion script")
    completion_parser.add_argument("shell", nargs="?", choices=COMPLETION_SHELLS, default="bash",
                                   help="Shell (default: bash)")

    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    argcomplete.autocomplete(parser)

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # --help and --version exit 0; usage errors are reported as 1
        return 0 if e.code in (0, None) else 1

    try:
        ctx = pre_run(args)

        if not hasattr(args, "handler"):
            parser.print_help()
            return 0

        return args.handler(args, ctx)

    except SecretsCLIError as e:
        output.log_error(e)
        return 1
    except KeyboardInterrupt:
        err_console.print("\n[dim]Interrupted[/dim]")
        return 1
    except Exception as e:
        if is_development():
            raise
        err_console.print(f"[red]secretsctl exception:[/red] {escape(str(e))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
