"""Console output for secretsctl.

Every message the CLI prints goes through here so that --debug, --silent
and --json are honoured in one place. Command results go to stdout;
info, warnings and errors go to stderr.
"""

import logging
from dataclasses import dataclass

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


@dataclass
class OutputState:
    debug: bool = False
    silent: bool = False
    json: bool = False


state = OutputState()


def configure(debug: bool = None, silent: bool = None, json: bool = None) -> None:
    """Update output modes; None leaves a mode untouched."""
    if debug is not None:
        state.debug = debug
    if silent is not None:
        state.silent = silent
    if json is not None:
        state.json = json


def reset() -> None:
    configure(debug=False, silent=False, json=False)


def can_log_info() -> bool:
    return (not state.silent and not state.json) or state.debug


def can_log_debug() -> bool:
    return state.debug


def setup_logging(debug: bool) -> None:
    """Route library logging (httpx requests etc.) to stderr when debugging."""
    if not debug:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def log(message: str) -> None:
    """Info-level message; hidden by --silent and --json."""
    if can_log_info():
        err_console.print(message)


def log_debug(message: str) -> None:
    if can_log_debug():
        err_console.print(f"[dim]{message}[/dim]")


def log_warning(message: str) -> None:
    err_console.print(f"[yellow]Warning:[/yellow] {message}")


def log_error(error, context: str = None) -> None:
    """Print an error, with optional context line, to stderr."""
    message = escape(str(error))
    if context:
        err_console.print(f"[red]Error:[/red] {escape(context)}")
        if message:
            err_console.print(f"[dim]{message}[/dim]")
    else:
        err_console.print(f"[red]Error:[/red] {message}")


def print_json(data) -> None:
    console.print_json(data=data)


def print_table(title: str, columns: list, rows: list) -> None:
    table = Table(title=escape(title) if title else None, show_header=True)
    for name, style in columns:
        table.add_column(name, style=style)
    for row in rows:
        table.add_row(*[escape(str(cell)) for cell in row])
    console.print(table)


def print_scoped_config(options, show_scope: bool = True, show_source: bool = True) -> None:
    """
    Print resolved config options.

    `options` is an iterable of (name, ScopedOption) pairs. Empty values are
    skipped. Honours --json but not --silent.
    """
    options = [(name, opt) for name, opt in options if opt.value not in (None, "")]

    if state.json:
        data = {}
        for name, opt in options:
            entry = {"value": opt.value}
            if show_scope:
                entry["scope"] = opt.scope
            if show_source:
                entry["source"] = opt.source
            data[name] = entry
        print_json(data)
        return

    columns = [("Name", "cyan"), ("Value", None)]
    if show_scope:
        columns.append(("Scope", "dim"))
    if show_source:
        columns.append(("Source", "dim"))

    rows = []
    for name, opt in options:
        row = [name, opt.display_value()]
        if show_scope:
            row.append(opt.scope)
        if show_source:
            row.append(opt.source)
        rows.append(row)

    print_table(None, columns, rows)
