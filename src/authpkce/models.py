"""Canonical Pydantic models shared across all auth-pkce modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Persisted records** -- serialised as JSON in the storage directory by
:class:`~authpkce.store.TokenStore`:
    :class:`ProviderConfig` and :class:`TokenRecord`.

**Provider payloads** -- parsed from OAuth/OIDC endpoint responses:
    :class:`DiscoveryDocument`, :class:`TokenResponse`, and :class:`UserInfo`.

**Flow state** -- lives in memory for the duration of one authorization
attempt and is never written to disk:
    :class:`PKCEChallenge`, :class:`AuthorizationState`,
    :class:`CallbackResult`, plus the :class:`AuthStatus` summary.

Provider payload models use ``extra="allow"`` so that fields this package
does not know about are preserved in ``model_extra``.
"""

from __future__ import annotations

import time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CONFIG_VERSION = "1.0.0"
DEFAULT_REDIRECT_URI = "http://localhost:8080/callback"
DEFAULT_SCOPE = "openid profile email"

LogLevel = Literal["error", "warn", "info", "debug"]


def now_ms() -> int:
    """Return the current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


# --- Persisted records ---


class ProviderConfig(BaseModel):
    """The single active OAuth provider configuration.

    Created by ``auth-pkce auth configure`` (or
    :meth:`~authpkce.session.AuthSession.configure`) and persisted to
    ``config.json``. The endpoint fields start out empty and are filled in
    from the discovery document by
    :meth:`~authpkce.oauth.OAuthClient.ensure_endpoints`; an explicitly
    configured endpoint is never overwritten by discovery.

    Example::

        ProviderConfig(
            base_url="https://id.example.com",
            client_id="my-cli",
        )
    """

    base_url: str = Field(description="OAuth provider base URL")
    client_id: str = Field(description="Public OAuth client identifier")
    redirect_uri: str = Field(
        default=DEFAULT_REDIRECT_URI,
        description="Loopback URI the local callback listener binds to",
    )
    scope: str = Field(default=DEFAULT_SCOPE, description="Space-separated scopes")
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    log_level: LogLevel = "info"
    config_version: str = CONFIG_VERSION


class TokenRecord(BaseModel):
    """Tokens persisted after a successful code exchange or refresh.

    ``expires_at`` is an absolute epoch timestamp in milliseconds. Records
    are only created through :meth:`from_token_response`, which guarantees
    the expiry lies strictly in the future at creation time.
    """

    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_at: int = Field(description="Absolute expiry, epoch milliseconds")
    token_type: str = "Bearer"
    scope: Optional[str] = None

    @classmethod
    def from_token_response(
        cls,
        response: TokenResponse,
        previous_refresh_token: Optional[str] = None,
        issued_at_ms: Optional[int] = None,
    ) -> TokenRecord:
        """Build a record from a token endpoint response.

        Args:
            response: The parsed token endpoint payload.
            previous_refresh_token: Refresh token to keep when the provider
                does not rotate it (omits ``refresh_token``).
            issued_at_ms: Issue time in epoch milliseconds. Defaults to now.

        Raises:
            ValueError: If ``expires_in`` is not positive.
        """
        if response.expires_in <= 0:
            raise ValueError(
                f"Token response has non-positive expires_in: {response.expires_in}"
            )
        issued = now_ms() if issued_at_ms is None else issued_at_ms
        return cls(
            access_token=response.access_token,
            refresh_token=response.refresh_token or previous_refresh_token,
            id_token=response.id_token,
            expires_at=issued + int(response.expires_in * 1000),
            token_type=response.token_type,
            scope=response.scope,
        )


# --- Provider payloads ---


class DiscoveryDocument(BaseModel):
    """OpenID Connect provider metadata.

    Only the endpoints this package uses are declared; everything else in
    the document is kept in ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    issuer: Optional[str] = None
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None
    code_challenge_methods_supported: Optional[list[str]] = None


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 section 5.1)."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    expires_in: float = 3600
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None


class UserInfo(BaseModel):
    """Claims returned by the userinfo endpoint."""

    model_config = ConfigDict(extra="allow")

    sub: str
    name: Optional[str] = None
    email: Optional[str] = None
    preferred_username: Optional[str] = None


# --- Flow state ---


class PKCEChallenge(BaseModel):
    """A PKCE code verifier and its S256 challenge (:rfc:`7636`)."""

    code_verifier: str = Field(min_length=43, max_length=128)
    code_challenge: str
    code_challenge_method: Literal["S256"] = "S256"


class AuthorizationState(BaseModel):
    """Pending authorization attempt, keyed by its ``state`` token."""

    state: str
    code_verifier: str
    redirect_uri: str


class CallbackResult(BaseModel):
    """The authorization code and state captured by the callback listener."""

    code: str
    state: str


class AuthStatus(BaseModel):
    """Summary produced by :meth:`~authpkce.session.AuthSession.status_details`."""

    configured: bool
    authenticated: bool = False
    expires_at: Optional[int] = None
    has_refresh_token: bool = False
    refreshed: bool = False
