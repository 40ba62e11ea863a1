"""Typer application and CLI entry point for cloudtop.

This module wires together the top-level Typer application and registers
the built-in sub-commands (``auth``, ``config``, ``get``, ``top``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``.  It installs signal handlers, registers commands and
invokes the Typer app.  :class:`~cloudtop.exceptions.CloudtopError` maps to
its exit code; any other exception is written to a crash log under the
data directory.

See Also:
    :mod:`cloudtop.config`: Global configuration resolution.
    :mod:`cloudtop.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from cloudtop import __version__
from cloudtop.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INTERRUPTED


app = typer.Typer(
    name="cloudtop",
    help="Browse and monitor your cloud telemetry projects from the terminal.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"cloudtop {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool = False, no_color: bool = False) -> None:
    """Route the ``cloudtop`` loggers to stderr through Rich.

    WARNING and above by default, DEBUG with ``--verbose``.  Calling it
    again replaces the previous handler.
    """
    from rich.console import Console
    from rich.logging import RichHandler

    logger = logging.getLogger("cloudtop")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_path=verbose,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    cloud_url: Optional[str] = typer.Option(
        None, "--cloud-url", help="Cloud API base URL (overrides config and env)."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    yaml_output: bool = typer.Option(
        False, "--yaml", help="YAML output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~cloudtop.output.OutputManager` and the
    ``cloudtop`` loggers from CLI flags, and stores shared options in the
    Typer context so that sub-commands can read them via ``ctx.obj``.

    Args:
        ctx: Typer invocation context.
        version: If ``True``, print the version string and exit.
        cloud_url: Cloud API URL override (highest precedence).
        json_output: Force JSON output format.
        yaml_output: Force YAML output format.
        plain_output: Force plain-text output format.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug-level diagnostic output.
        force: Skip interactive confirmations.
    """
    from cloudtop.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif yaml_output:
        fmt = OutputFormat.YAML
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
    )
    set_output(output)
    configure_logging(verbose=verbose, no_color=output.no_color)

    ctx.ensure_object(dict)
    ctx.obj["cloud_url"] = cloud_url
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from cloudtop.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text("".join(traceback.format_exception(exc)))
    return str(log_path)


def register_commands() -> None:
    """Attach the built-in sub-commands to :data:`app`.  Idempotent."""
    if getattr(app, "_cloudtop_registered", False):
        return
    from cloudtop.commands.auth import auth_app
    from cloudtop.commands.config import config_app
    from cloudtop.commands.get import get_app
    from cloudtop.commands.top import top_command

    app.add_typer(auth_app, name="auth", help="Log in and out of the cloud.")
    app.add_typer(config_app, name="config", help="Configuration management.")
    app.add_typer(get_app, name="get", help="List cloud resources.")
    app.command("top")(top_command)
    app._cloudtop_registered = True  # type: ignore[attr-defined]


def main() -> None:
    """CLI entry point invoked by the ``cloudtop`` console script.

    Unhandled :class:`~cloudtop.exceptions.CloudtopError` instances cause
    a clean exit with the error's ``exit_code``.  All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        register_commands()
        app(standalone_mode=False)
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as exc:
        handle_exception(exc)
    sys.exit(0)


def handle_exception(exc: BaseException) -> None:
    """Report *exc* on stderr and exit with the matching code."""
    import click

    from cloudtop.exceptions import CloudtopError
    from cloudtop.output import error

    if isinstance(exc, click.exceptions.Exit):
        sys.exit(exc.exit_code)
    if isinstance(exc, click.exceptions.Abort):
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    if isinstance(exc, click.ClickException):
        exc.show()
        sys.exit(exc.exit_code)
    if isinstance(exc, CloudtopError):
        error(str(exc))
        sys.exit(exc.exit_code)
    log_path = _write_crash_log(exc)  # type: ignore[arg-type]
    error(f"Unexpected error. Debug log: {log_path}")
    sys.exit(EXIT_GENERIC_FAILURE)
