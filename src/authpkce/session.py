"""Session facade -- the programmatic surface of auth-pkce.

:class:`AuthSession` ties a :class:`~authpkce.store.TokenStore` to an
:class:`~authpkce.oauth.OAuthClient` and exposes the operations a CLI (or
any embedding tool) needs: ``configure``, ``login``, ``logout``, ``whoami``,
``refresh``, ``status``, ``get_access_token``, ``get_bearer_token``,
``is_authenticated``, and ``has_configuration``.

Two rules hold across every operation:

* A failing operation leaves the stored configuration and tokens exactly as
  they were.
* ``status``/``is_authenticated`` refresh an expired token transparently
  (when enabled and possible), while ``get_access_token`` and
  ``get_bearer_token`` never do; callers that want a fresh token from the
  accessors call :meth:`AuthSession.refresh` themselves.

Typical usage::

    from authpkce import create_session

    session = create_session()
    if not session.is_authenticated():
        session.login()
    headers = {"Authorization": session.get_bearer_token()}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from authpkce.config import build_config, prompt_for_config
from authpkce.exceptions import (
    AuthenticationError,
    AuthPKCEError,
    ConfigurationError,
    TokenError,
    TokenExpiredError,
)
from authpkce.models import (
    AuthStatus,
    ProviderConfig,
    TokenRecord,
    UserInfo,
)
from authpkce.oauth import OAuthClient
from authpkce.output import OutputManager
from authpkce.store import TokenStore, is_token_expired

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProviderConfig, OutputManager], OAuthClient]


def _default_client_factory(config: ProviderConfig, output: OutputManager) -> OAuthClient:
    return OAuthClient(config, output=output)


class AuthSession:
    """Login state for one local installation.

    Args:
        store: Where configuration and tokens live.
        output: Sink for user-facing messages. Defaults to a silent
            :class:`~authpkce.output.OutputManager`.
        auto_refresh: Whether :meth:`status` and :meth:`is_authenticated`
            may refresh an expired token.
        client_factory: Builds the :class:`~authpkce.oauth.OAuthClient` for
            a configuration. Tests substitute fakes here.
    """

    def __init__(
        self,
        store: TokenStore,
        output: Optional[OutputManager] = None,
        auto_refresh: bool = True,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._store = store
        self._output = output or OutputManager(silent=True)
        self._auto_refresh = auto_refresh
        self._client_factory = client_factory or _default_client_factory
        self._client_source: Optional[ProviderConfig] = None
        self._oauth: Optional[OAuthClient] = None

    @property
    def store(self) -> TokenStore:
        return self._store

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #

    def has_configuration(self) -> bool:
        """Return True when a provider configuration has been saved."""
        return self._store.has_config()

    def get_configuration(self) -> Optional[ProviderConfig]:
        """Return the saved provider configuration, or ``None``."""
        return self._store.load_config()

    def configure(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        scope: Optional[str] = None,
        log_level: Optional[str] = None,
        interactive: bool = False,
    ) -> ProviderConfig:
        """Create or update the provider configuration.

        Values not given fall back to the previous configuration, then to
        the defaults. With ``interactive=True`` every setting is prompted
        for, using the given values as prompt defaults.

        Returns:
            The saved :class:`~authpkce.models.ProviderConfig`.

        Raises:
            ConfigurationError: If a required value is missing.
            ValidationError: If a URL or the log level is malformed.
        """
        try:
            previous = self._store.load_config()
        except ConfigurationError as exc:
            logger.warning("Ignoring unreadable previous configuration: %s", exc)
            previous = None

        values = {
            "base_url": base_url,
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": scope,
            "log_level": log_level,
        }
        if interactive:
            values.update(prompt_for_config(previous, defaults=dict(values)))

        config = build_config(previous, **values)
        self._store.save_config(config)
        self._oauth = None
        self._client_source = None
        self._output.success("Configuration saved successfully!")
        self._output.info(f"Config saved to: {self._store.config_path}")
        return config

    # ------------------------------------------------------------------ #
    # Token lifecycle
    # ------------------------------------------------------------------ #

    def login(self) -> TokenRecord:
        """Run the browser flow and store the resulting tokens.

        Raises:
            ConfigurationError: If no provider is configured.
            AuthenticationError: If the flow fails.
            DiscoveryError: If endpoint discovery fails.
            NetworkError: If the provider is unreachable.
        """
        config = self._require_config()
        self._output.info("Starting authentication...")
        response = self._client(config).authorize()
        try:
            record = TokenRecord.from_token_response(response)
        except ValueError as exc:
            raise AuthenticationError(f"Token exchange returned unusable tokens: {exc}") from exc
        self._store.save_tokens(record)

        self._output.success("Authentication successful!")
        self._output.info(f"Token expires in: {int(response.expires_in // 60)} minutes")
        return record

    def refresh(self) -> TokenRecord:
        """Exchange the stored refresh token for a new access token.

        The previous refresh token is kept when the provider does not issue
        a new one.

        Raises:
            ConfigurationError: If no provider is configured.
            TokenError: If there is no refresh token or the provider rejects it.
            NetworkError: If the provider is unreachable.
        """
        config = self._require_config()
        record = self._store.load_tokens()
        if record is None or not record.refresh_token:
            raise TokenError(
                "No refresh token available. Run 'auth-pkce login' to authenticate."
            )

        response = self._client(config).refresh_token(record.refresh_token)
        try:
            refreshed = TokenRecord.from_token_response(
                response, previous_refresh_token=record.refresh_token
            )
        except ValueError as exc:
            raise TokenError(f"Token refresh returned unusable tokens: {exc}") from exc
        self._store.save_tokens(refreshed)
        self._output.success("Token refreshed successfully!")
        return refreshed

    def logout(self) -> None:
        """Revoke the tokens remotely (best effort) and delete them locally.

        The local token record is removed even if revocation fails or the
        stored records cannot be read.
        """
        self._output.info("Logging out...")
        try:
            self._revoke_stored_tokens()
        finally:
            self._store.clear_tokens()
        self._output.success("Logged out successfully!")

    def _revoke_stored_tokens(self) -> None:
        try:
            config = self._store.load_config()
            record = self._store.load_tokens()
        except AuthPKCEError as exc:
            logger.warning("Skipping token revocation: %s", exc)
            return
        if config is None or record is None:
            return

        client = self._client(config)
        for token, hint in (
            (record.access_token, "access_token"),
            (record.refresh_token, "refresh_token"),
        ):
            if not token:
                continue
            try:
                client.revoke_token(token, hint)
            except Exception as exc:
                logger.warning("Ignoring %s revocation failure: %s", hint, exc)

    # ------------------------------------------------------------------ #
    # Status and accessors
    # ------------------------------------------------------------------ #

    def status_details(self) -> AuthStatus:
        """Describe the current authentication state.

        An expired token is refreshed first when auto-refresh is enabled and
        a refresh token is stored. A failed refresh is logged and reported as
        unauthenticated; the stored record is left as it was.
        """
        if not self._store.has_config():
            return AuthStatus(configured=False)
        record = self._store.load_tokens()
        if record is None:
            return AuthStatus(configured=True)

        refreshed = False
        if is_token_expired(record) and self._auto_refresh and record.refresh_token:
            try:
                record = self.refresh()
                refreshed = True
            except AuthPKCEError as exc:
                logger.warning("Automatic token refresh failed: %s", exc)
                self._output.warning(f"Automatic token refresh failed: {exc}")

        return AuthStatus(
            configured=True,
            authenticated=not is_token_expired(record),
            expires_at=record.expires_at,
            has_refresh_token=bool(record.refresh_token),
            refreshed=refreshed,
        )

    def status(self) -> bool:
        """Return whether a valid (non-expired) token is stored.

        Raises:
            ConfigurationError: If no provider is configured.
        """
        details = self.status_details()
        if not details.configured:
            raise ConfigurationError(
                "auth-pkce is not configured. Run 'auth-pkce auth configure' first."
            )
        return details.authenticated

    def is_authenticated(self) -> bool:
        """Like :meth:`status`, but returns False instead of raising.

        An unconfigured store or an unreadable token record counts as not
        authenticated.
        """
        try:
            return self.status_details().authenticated
        except AuthPKCEError as exc:
            logger.warning("Treating session as unauthenticated: %s", exc)
            return False

    def whoami(self) -> UserInfo:
        """Return the claims of the logged-in user.

        Raises:
            ConfigurationError: If no provider is configured.
            TokenError: If nobody is logged in.
            TokenExpiredError: If the token is expired locally or rejected
                by the provider.
        """
        config = self._require_config()
        record = self._require_valid_tokens()
        return self._client(config).get_user_info(record.access_token)

    def get_access_token(self) -> str:
        """Return the stored access token without refreshing it.

        Raises:
            TokenError: If nobody is logged in.
            TokenExpiredError: If the token is expired.
        """
        if not self._store.has_config():
            raise TokenError("Not authenticated. Run 'auth-pkce login' first.")
        return self._require_valid_tokens().access_token

    def get_bearer_token(self) -> str:
        """Return ``"Bearer <access token>"`` for an ``Authorization`` header."""
        return f"Bearer {self.get_access_token()}"

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _require_config(self) -> ProviderConfig:
        config = self._store.load_config()
        if config is None:
            raise ConfigurationError(
                "auth-pkce is not configured. Run 'auth-pkce auth configure' first."
            )
        return config

    def _require_valid_tokens(self) -> TokenRecord:
        record = self._store.load_tokens()
        if record is None:
            raise TokenError("Not authenticated. Run 'auth-pkce login' first.")
        if is_token_expired(record):
            raise TokenExpiredError(
                "Access token expired. Run 'auth-pkce auth refresh' or 'auth-pkce login'."
            )
        return record

    def _client(self, config: ProviderConfig) -> OAuthClient:
        """Return the OAuth client for *config*, reusing it while the config is unchanged.

        Reuse keeps discovered endpoints for the rest of the process.
        """
        if self._oauth is None or self._client_source != config:
            self._oauth = self._client_factory(config, self._output)
            self._client_source = config
        return self._oauth


def create_session(
    directory: Optional[Path] = None,
    output: Optional[OutputManager] = None,
    auto_refresh: bool = True,
    silent: bool = False,
) -> AuthSession:
    """Build an :class:`AuthSession` backed by the default (or given) storage directory.

    Args:
        directory: Storage directory override.
        output: Output sink. When omitted, a new
            :class:`~authpkce.output.OutputManager` is created, silent if
            *silent* is set.
        auto_refresh: See :class:`AuthSession`.
        silent: Suppress all console diagnostics.
    """
    return AuthSession(
        TokenStore(directory),
        output=output or OutputManager(silent=silent),
        auto_refresh=auto_refresh,
    )


