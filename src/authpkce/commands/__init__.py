"""Built-in CLI commands for auth-pkce.

:mod:`authpkce.commands.auth` holds every command; :mod:`authpkce.app`
registers them on the root Typer application.
"""
