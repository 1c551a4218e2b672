"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~authpkce.exceptions.AuthPKCEError` subclass.
Shell wrappers embedding ``auth-pkce`` can inspect the exit code to tell
"login again" apart from "the provider is unreachable" without parsing
stderr.

Example::

    $ auth-pkce whoami
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the stored token was rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (also used for configuration problems)."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments, malformed URLs, or missing required fields."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or the stored token is missing, expired, or invalid."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""
