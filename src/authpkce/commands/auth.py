"""Auth commands -- thin Typer wrappers around :class:`~authpkce.session.AuthSession`.

Provides the ``auth`` sub-command group (``configure``, ``refresh``,
``status``, ``token``) and the top-level ``login``, ``logout`` and
``whoami`` commands. Each command resolves the session created by the root
callback, calls one facade method, and translates
:class:`~authpkce.exceptions.AuthPKCEError` into an error message, a
next-step suggestion and the matching exit code.

Typical workflow::

    auth-pkce auth configure --base-url https://id.example.com --client-id my-cli
    auth-pkce login
    auth-pkce whoami
    auth-pkce auth token
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import NoReturn, Optional

import typer

from authpkce.exceptions import (
    AuthPKCEError,
    ConfigurationError,
    NetworkError,
    TokenError,
    TokenExpiredError,
    ValidationError,
)
from authpkce.output import (
    OutputManager,
    error,
    get_output,
    info,
    set_output,
    success,
    suggest,
    warning,
)
from authpkce.session import AuthSession, create_session


auth_app = typer.Typer(no_args_is_help=True)


def _session(ctx: typer.Context) -> AuthSession:
    """Return the session stored by the root callback, creating one when embedded elsewhere."""
    obj = ctx.obj if isinstance(ctx.obj, dict) else None
    if obj is not None and isinstance(obj.get("session"), AuthSession):
        return obj["session"]
    # Without a root callback nothing owns the output, so each invocation
    # gets a manager bound to its own streams.
    output = OutputManager()
    set_output(output)
    session = create_session(output=output)
    if obj is not None:
        obj["session"] = session
    return session


def _fail(exc: AuthPKCEError, action: Optional[str] = None) -> NoReturn:
    """Report *exc* with a next step and exit with its exit code."""
    error(f"{action}: {exc}" if action else str(exc))
    if isinstance(exc, (ConfigurationError, ValidationError)):
        suggest("Run: auth-pkce auth configure")
    elif isinstance(exc, TokenExpiredError):
        suggest("Run: auth-pkce auth refresh  (or auth-pkce login)")
    elif isinstance(exc, TokenError):
        suggest("Run: auth-pkce login")
    elif isinstance(exc, NetworkError):
        suggest("Check your network connection and the configured base URL.")
    raise typer.Exit(code=exc.exit_code)


def _format_expiry(expires_at: Optional[int]) -> str:
    if expires_at is None:
        return "-"
    moment = datetime.fromtimestamp(expires_at / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


@auth_app.command("configure")
def auth_configure(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None, "--base-url", "-b", help="OAuth provider base URL."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", "-c", help="OAuth client ID."
    ),
    redirect_uri: Optional[str] = typer.Option(
        None, "--redirect-uri", "-r", help="Loopback redirect URI."
    ),
    scope: Optional[str] = typer.Option(
        None, "--scope", "-s", help="Space-separated OAuth scopes."
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level: error, warn, info, debug."
    ),
    no_input: bool = typer.Option(
        False, "--no-input", help="Do not prompt; use the given options only."
    ),
) -> None:
    """Configure the OAuth provider.

    Prompts for every setting unless ``--no-input`` is given, in which case
    the options (merged over any previous configuration) must be complete.

    Example::

        auth-pkce auth configure --base-url https://id.example.com --client-id cli --no-input
    """
    session = _session(ctx)
    info("Configuring auth-pkce...")
    try:
        session.configure(
            base_url=base_url,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            log_level=log_level,
            interactive=not no_input,
        )
    except AuthPKCEError as exc:
        _fail(exc, "Configuration failed")
    suggest("Next: auth-pkce login")


@auth_app.command("refresh")
def auth_refresh(ctx: typer.Context) -> None:
    """Refresh the access token using the stored refresh token."""
    session = _session(ctx)
    info("Refreshing access token...")
    try:
        record = session.refresh()
    except AuthPKCEError as exc:
        _fail(exc)
    info(f"New token expires at: {_format_expiry(record.expires_at)}")


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show the current authentication status.

    Exits with code 0 when authenticated and 3 otherwise. An expired token
    is refreshed automatically when a refresh token is stored.
    """
    session = _session(ctx)
    try:
        details = session.status_details()
    except AuthPKCEError as exc:
        _fail(exc)

    if not details.configured:
        warning("auth-pkce is not configured.")
        suggest("Run: auth-pkce auth configure")
        raise typer.Exit(code=ConfigurationError.exit_code)

    config = session.get_configuration()
    rows = [
        ["configured", "yes"],
        ["provider", config.base_url if config else "-"],
        ["authenticated", "yes" if details.authenticated else "no"],
        ["expires", _format_expiry(details.expires_at)],
        ["refresh token", "yes" if details.has_refresh_token else "no"],
    ]
    if details.refreshed:
        rows.append(["refreshed", "yes"])
    get_output().print_table(["field", "value"], rows, title="Authentication status")

    if not details.authenticated:
        suggest("Run: auth-pkce login")
        raise typer.Exit(code=TokenError.exit_code)


@auth_app.command("token")
def auth_token(
    ctx: typer.Context,
    bearer: bool = typer.Option(
        False, "--bearer", help="Print as 'Bearer <token>' for an Authorization header."
    ),
) -> None:
    """Print the current access token to stdout (no implicit refresh)."""
    session = _session(ctx)
    try:
        token = session.get_bearer_token() if bearer else session.get_access_token()
    except AuthPKCEError as exc:
        _fail(exc)
    get_output().print_data(token)


def login_command(ctx: typer.Context) -> None:
    """Authenticate using the OAuth 2.0 PKCE flow in your browser."""
    session = _session(ctx)
    try:
        session.login()
    except AuthPKCEError as exc:
        _fail(exc, "Authentication failed")


def logout_command(ctx: typer.Context) -> None:
    """Revoke and delete the stored tokens."""
    _session(ctx).logout()


def whoami_command(ctx: typer.Context) -> None:
    """Display information about the logged-in user."""
    session = _session(ctx)
    try:
        user = session.whoami()
    except AuthPKCEError as exc:
        _fail(exc, "Failed to get user information")
    get_output().format_response(user.model_dump(exclude_none=True))
    success(f"Logged in as {user.preferred_username or user.email or user.sub}")
