"""CLI application — the ``lumo`` command.

Loads configuration from the environment, applies command-line overrides,
and runs the shell. Setup failures are reported in red and exit with
status 1.
"""

from __future__ import annotations

from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape as markup_escape

from lumo import __version__

_err_console = Console(stderr=True)


def _fail(message: str) -> None:
    _err_console.print(f"[red]{markup_escape(message)}[/red]")
    raise SystemExit(1)


@click.command()
@click.option(
    "--dumb-terminal",
    "-d",
    is_flag=True,
    help="Line-buffered input without keypress editing.",
)
@click.option(
    "--socket-repl",
    "-n",
    metavar="[HOST:]PORT",
    default=None,
    help="Also serve the shell on a TCP socket.",
)
@click.option("--no-history", is_flag=True, help="Do not load or save line history.")
@click.option("--verbose", "-v", is_flag=True, help="Log session lifecycle events.")
@click.version_option(__version__, prog_name="lumo")
def cli(dumb_terminal: bool, socket_repl: Optional[str], no_history: bool, verbose: bool) -> None:
    """Lumo - interactive shell with a socket REPL."""
    from lumo.config import LumoConfig, parse_socket_address
    from lumo.listener import SocketListenerError
    from lumo.main import configure_logging, run_shell
    from lumo.terminal import TerminalUnavailableError

    configure_logging(verbose)

    try:
        config = LumoConfig()
    except ValidationError as e:
        _fail(f"Configuration error: {e}")
        return

    if dumb_terminal:
        config.repl.dumb_terminal = True
    if no_history:
        config.history.enabled = False
    if socket_repl is not None:
        try:
            config.socket.host, config.socket.port = parse_socket_address(socket_repl)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--socket-repl") from e

    try:
        status = run_shell(config)
    except (SocketListenerError, TerminalUnavailableError) as e:
        _fail(str(e))
        return
    raise SystemExit(status)
