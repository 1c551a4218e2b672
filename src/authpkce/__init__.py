"""auth-pkce -- OAuth 2.0 Authorization Code + PKCE login for command-line tools.

This package signs a user in through their browser, keeps the resulting
tokens in a private local store, and hands out bearer tokens to the tool that
embeds it. Endpoints are discovered from the provider's OpenID Connect
configuration; the authorization code is received on a short-lived loopback
listener.

Typical workflow::

    auth-pkce auth configure          # provider base URL and client ID
    auth-pkce login                   # browser sign-in
    auth-pkce auth token              # print the access token

Modules:
    app: Typer application and CLI entry point.
    session: The :class:`AuthSession` facade used by the CLI and embedders.
    oauth: Authorization flow engine, token exchange, refresh and revocation.
    callback: Loopback listener receiving the authorization redirect.
    discovery: OpenID Connect discovery.
    store: On-disk configuration and token records.
    config: Storage paths, atomic writes and configuration validation.
    crypto: PKCE verifier/challenge and state generation.
    models: Pydantic models shared across the package.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "1.0.0"

from authpkce.exceptions import (  # noqa: E402
    AuthenticationError,
    AuthPKCEError,
    CallbackTimeoutError,
    ConfigurationError,
    DiscoveryError,
    DiscoveryNotFoundError,
    NetworkError,
    StateMismatchError,
    TokenError,
    TokenExpiredError,
    ValidationError,
)
from authpkce.models import ProviderConfig, TokenRecord, UserInfo  # noqa: E402
from authpkce.oauth import OAuthClient  # noqa: E402
from authpkce.output import OutputManager  # noqa: E402
from authpkce.session import AuthSession, create_session  # noqa: E402
from authpkce.store import TokenStore  # noqa: E402

__all__ = [
    "__version__",
    "AuthPKCEError",
    "AuthSession",
    "AuthenticationError",
    "CallbackTimeoutError",
    "ConfigurationError",
    "DiscoveryError",
    "DiscoveryNotFoundError",
    "NetworkError",
    "OAuthClient",
    "OutputManager",
    "ProviderConfig",
    "StateMismatchError",
    "TokenError",
    "TokenExpiredError",
    "TokenRecord",
    "TokenStore",
    "UserInfo",
    "ValidationError",
    "create_session",
]
