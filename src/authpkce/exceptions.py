"""Exception hierarchy for auth-pkce.

All exceptions inherit from :class:`AuthPKCEError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`authpkce.exit_codes`
and a stable ``code`` string that embedding tools can match on. The CLI
entry point in :func:`authpkce.app.main` catches ``AuthPKCEError`` and exits
with the appropriate code, while unexpected exceptions produce a crash log.

Subclass hierarchy::

    AuthPKCEError (exit 1)
    +-- ConfigurationError      (exit 1)
    +-- ValidationError         (exit 2)
    +-- AuthenticationError     (exit 3)
    |   +-- StateMismatchError
    |   +-- CallbackTimeoutError
    +-- TokenError              (exit 3)
    |   +-- TokenExpiredError
    +-- NetworkError            (exit 6)
        +-- DiscoveryError
            +-- DiscoveryNotFoundError
"""

from __future__ import annotations

import httpx

from authpkce.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class AuthPKCEError(Exception):
    """Base exception for all auth-pkce errors.

    Args:
        message: Human-readable error description printed to stderr.
        status_code: HTTP status code of the response that caused the
            error, when there was one.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE
    code: str = "AUTH_PKCE_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(AuthPKCEError):
    """Raised when no provider is configured or the stored configuration is unusable."""

    code = "CONFIGURATION_ERROR"


class ValidationError(AuthPKCEError):
    """Raised for malformed URLs or missing required fields."""

    exit_code = EXIT_INVALID_USAGE
    code = "VALIDATION_ERROR"


class AuthenticationError(AuthPKCEError):
    """Raised when the authorization flow fails (provider denial, bad callback, timeout)."""

    exit_code = EXIT_AUTH_FAILURE
    code = "AUTHENTICATION_ERROR"


class StateMismatchError(AuthenticationError):
    """Raised when a callback carries a ``state`` that no pending attempt issued."""


class CallbackTimeoutError(AuthenticationError):
    """Raised when no callback reaches the local listener before the deadline."""


class TokenError(AuthPKCEError):
    """Raised when a token is missing, invalid, or cannot be refreshed."""

    exit_code = EXIT_AUTH_FAILURE
    code = "TOKEN_ERROR"


class TokenExpiredError(TokenError):
    """Raised when the access token is expired or rejected by the provider (HTTP 401)."""


class NetworkError(AuthPKCEError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused)."""

    exit_code = EXIT_CONNECTION_ERROR
    code = "NETWORK_ERROR"


class DiscoveryError(NetworkError):
    """Raised when the OpenID Connect discovery document cannot be obtained or is invalid."""

    code = "DISCOVERY_ERROR"


class DiscoveryNotFoundError(DiscoveryError):
    """Raised when the discovery endpoint answers HTTP 404."""


def network_error_from(exc: httpx.HTTPError, action: str) -> NetworkError:
    """Classify an httpx transport failure into an actionable :class:`NetworkError`.

    Args:
        exc: The exception raised by httpx.
        action: Short description of what was attempted, e.g.
            ``"Token exchange"``. Used as the message prefix.

    Returns:
        A :class:`NetworkError` describing the failure. The caller is
        expected to ``raise ... from exc``.
    """
    detail = str(exc) or exc.__class__.__name__
    if isinstance(exc, httpx.TimeoutException):
        message = (
            f"{action} failed: request timeout, the OAuth server took too "
            f"long to respond ({detail})"
        )
    elif isinstance(exc, httpx.ConnectError):
        lowered = detail.lower()
        if (
            "name or service not known" in lowered
            or "nodename nor servname" in lowered
            or "getaddrinfo" in lowered
            or "name resolution" in lowered
        ):
            message = (
                f"{action} failed: unable to resolve hostname. Check your "
                f"internet connection and base URL ({detail})"
            )
        elif "refused" in lowered:
            message = (
                f"{action} failed: connection refused, the OAuth server is "
                f"not reachable ({detail})"
            )
        else:
            message = f"{action} failed: cannot connect to the OAuth server ({detail})"
    else:
        message = f"{action} failed: {detail}"
    return NetworkError(message)
