"""Typer application and CLI entry point for auth-pkce.

This module wires together the root Typer application: the global output
options handled by :func:`main_callback`, the ``auth`` sub-command group and
the top-level ``login``, ``logout`` and ``whoami`` commands.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers, invokes the Typer app and
maps :class:`~authpkce.exceptions.AuthPKCEError` to its exit code. Unhandled
exceptions are written to a crash log under the storage directory.

Other Typer applications can embed the same commands with
:func:`add_auth_commands`.

See Also:
    :mod:`authpkce.session`: The facade every command delegates to.
    :mod:`authpkce.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from authpkce import __version__
from authpkce.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="auth-pkce",
    help="OAuth 2.0 Authorization Code + PKCE login for command-line tools.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

LOG_FILE_NAME = "auth-pkce.log"

_LEVEL_NAMES = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"auth-pkce {__version__}")
        raise typer.Exit()


def configure_logging(
    level: str = "info",
    verbose: bool = False,
    silent: bool = False,
    log_dir: Optional[Path] = None,
) -> None:
    """Configure the ``authpkce`` logger.

    Records at *level* go to ``<log_dir>/auth-pkce.log`` when *log_dir*
    exists. With *verbose*, DEBUG records are also rendered on stderr via
    Rich. *silent* disables the stderr handler regardless of *verbose*.

    Args:
        level: One of ``error``, ``warn``, ``info``, ``debug``.
        verbose: Mirror debug logging to stderr.
        silent: Never log to the console.
        log_dir: Directory for the log file; skipped if it does not exist.
    """
    package_logger = logging.getLogger("authpkce")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = False

    file_level = logging.DEBUG if verbose else _LEVEL_NAMES.get(level, logging.INFO)
    package_logger.setLevel(file_level)

    if log_dir is not None and log_dir.is_dir():
        file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        file_handler.setLevel(file_level)
        package_logger.addHandler(file_handler)

    if verbose and not silent:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            show_time=False,
        )
        console_handler.setLevel(logging.DEBUG)
        package_logger.addHandler(console_handler)

    if not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())


def _configured_log_level(store: Any) -> str:
    """Return the stored ``log_level``, or ``info`` if it cannot be read."""
    from authpkce.exceptions import ConfigurationError

    try:
        config = store.load_config()
    except ConfigurationError:
        return "info"
    return config.log_level if config is not None else "info"


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
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
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
    silent: bool = typer.Option(
        False, "--silent", help="Suppress all diagnostic output, errors included."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~authpkce.output.OutputManager` from
    CLI flags, configures logging, and stores the
    :class:`~authpkce.session.AuthSession` in ``ctx.obj["session"]`` so
    that sub-commands share one session.
    """
    from authpkce.config import auto_refresh_enabled
    from authpkce.output import OutputFormat, OutputManager, set_output
    from authpkce.session import create_session

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        silent=silent,
    )
    set_output(output)

    session = create_session(output=output, auto_refresh=auto_refresh_enabled())
    configure_logging(
        level=_configured_log_level(session.store),
        verbose=verbose,
        silent=silent,
        log_dir=session.store.directory,
    )

    ctx.ensure_object(dict)
    ctx.obj["session"] = session
    ctx.obj["verbose"] = verbose


def add_auth_commands(target: typer.Typer) -> typer.Typer:
    """Register the auth-pkce commands on another Typer application.

    Adds ``login``, ``logout`` and ``whoami`` as top-level commands and the
    ``auth`` group (``configure``, ``refresh``, ``status``, ``token``). When
    the host application does not put a session in ``ctx.obj``, commands
    create one from the default storage directory.

    Args:
        target: The host application.

    Returns:
        *target*, for chaining.
    """
    from authpkce.commands.auth import (
        auth_app,
        login_command,
        logout_command,
        whoami_command,
    )

    target.command("login")(login_command)
    target.command("logout")(logout_command)
    target.command("whoami")(whoami_command)
    target.add_typer(auth_app, name="auth", help="Authentication management.")
    return target


add_auth_commands(app)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path.

    Args:
        exc: The unhandled exception to log.

    Returns:
        Absolute path to the written crash log file.
    """
    from authpkce.config import DIR_MODE, get_storage_dir

    logs_dir = get_storage_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``auth-pkce`` console script.

    Unhandled :class:`~authpkce.exceptions.AuthPKCEError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions produce
    a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from authpkce.exceptions import AuthPKCEError
        from authpkce.output import error

        if isinstance(exc, AuthPKCEError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
