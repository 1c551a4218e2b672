"""OAuth 2.0 Authorization Code + PKCE flow engine.

This module provides :class:`OAuthClient`, which drives one provider
configuration through the :rfc:`6749` authorization code grant with PKCE
(:rfc:`7636`):

1. Resolves the provider endpoints, via discovery when not configured.
2. Generates a PKCE challenge and a ``state`` token, and records the
   pending attempt keyed by ``state``.
3. Binds the loopback callback listener, then opens the authorization URL
   in the user's browser (printing it when no browser can be launched).
4. Waits up to five minutes for a single callback and exchanges the
   authorization code for tokens.

It also implements refresh, userinfo, and best-effort revocation. Token
persistence is not done here; see :class:`~authpkce.session.AuthSession`.
No call is retried automatically.
"""

from __future__ import annotations

import enum
import logging
import threading
import webbrowser
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError as PydanticValidationError

from authpkce.callback import CALLBACK_TIMEOUT, CallbackServer
from authpkce.crypto import generate_pkce_challenge, generate_state
from authpkce.discovery import USER_AGENT, discover, validate_pkce_support
from authpkce.exceptions import (
    AuthenticationError,
    AuthPKCEError,
    ConfigurationError,
    TokenError,
    TokenExpiredError,
    network_error_from,
)
from authpkce.models import (
    AuthorizationState,
    PKCEChallenge,
    ProviderConfig,
    TokenResponse,
    UserInfo,
)
from authpkce.output import OutputManager

logger = logging.getLogger(__name__)

TOKEN_TIMEOUT = 30.0
USERINFO_TIMEOUT = 10.0
REVOCATION_TIMEOUT = 10.0


class FlowState(str, enum.Enum):
    """Progress of the current authorization attempt."""

    IDLE = "idle"
    ENDPOINTS_RESOLVED = "endpoints_resolved"
    CHALLENGE_ISSUED = "challenge_issued"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_RECEIVED = "code_received"
    TOKENS_EXCHANGED = "tokens_exchanged"
    FAILED = "failed"


def _provider_error(exc: httpx.HTTPStatusError) -> str:
    """Return the provider's ``error_description`` (or ``error``), else the HTTP error text."""
    try:
        body: Any = exc.response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if body.get("error_description"):
            return str(body["error_description"])
        if body.get("error"):
            return str(body["error"])
    return str(exc)


class OAuthClient:
    """Run the authorization code + PKCE grant against one provider.

    The client works on its own copy of the configuration: endpoints found
    by discovery are filled in on :attr:`config` for the lifetime of this
    instance and are never written back to disk.

    Args:
        config: The provider configuration.
        output: Sink for user-facing messages (the browser fallback URL).
        callback_timeout: Seconds to wait for the browser callback.
    """

    def __init__(
        self,
        config: ProviderConfig,
        output: Optional[OutputManager] = None,
        callback_timeout: float = CALLBACK_TIMEOUT,
    ) -> None:
        self.config = config.model_copy()
        self._output = output or OutputManager(silent=True)
        self._callback_timeout = callback_timeout
        self._pending: dict[str, AuthorizationState] = {}
        self.flow_state = FlowState.IDLE

    @property
    def pending_states(self) -> dict[str, AuthorizationState]:
        """Authorization attempts awaiting their callback, keyed by ``state``."""
        return self._pending

    def ensure_endpoints(self) -> None:
        """Fill in missing endpoints from the provider's discovery document.

        Does nothing when both the authorization and token endpoints are
        already set. Explicitly configured endpoints are kept.

        Raises:
            DiscoveryError: If discovery fails.
        """
        if self.config.authorization_endpoint and self.config.token_endpoint:
            return

        doc = discover(self.config.base_url)
        self.config.authorization_endpoint = (
            self.config.authorization_endpoint or doc.authorization_endpoint
        )
        self.config.token_endpoint = self.config.token_endpoint or doc.token_endpoint
        self.config.userinfo_endpoint = (
            self.config.userinfo_endpoint or doc.userinfo_endpoint
        )
        self.config.end_session_endpoint = (
            self.config.end_session_endpoint
            or doc.end_session_endpoint
            or doc.revocation_endpoint
        )
        if not validate_pkce_support(doc):
            logger.warning("PKCE S256 method not explicitly supported by the provider")

    def build_authorization_url(
        self, challenge: PKCEChallenge, state: str, redirect_uri: str
    ) -> str:
        """Build the URL the user visits to authorize this client."""
        if not self.config.authorization_endpoint:
            raise ConfigurationError("Authorization endpoint is not configured")
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": redirect_uri,
            "scope": self.config.scope,
            "state": state,
            "code_challenge": challenge.code_challenge,
            "code_challenge_method": challenge.code_challenge_method,
        }
        return f"{self.config.authorization_endpoint}?{urlencode(params)}"

    def authorize(self) -> TokenResponse:
        """Run the interactive browser flow and return the issued tokens.

        The pending state is discarded and the callback listener closed on
        every exit path.

        Returns:
            The parsed :class:`~authpkce.models.TokenResponse`.

        Raises:
            DiscoveryError: If endpoint discovery fails.
            AuthenticationError: If the provider denies access, the callback
                is malformed, its ``state`` does not match, no callback
                arrives in time, or the code exchange is rejected.
            NetworkError: If the token endpoint is unreachable.
        """
        self.flow_state = FlowState.IDLE
        state: Optional[str] = None
        callback_state: Optional[str] = None
        try:
            self.ensure_endpoints()
            self.flow_state = FlowState.ENDPOINTS_RESOLVED

            challenge = generate_pkce_challenge()
            state = generate_state()
            redirect_uri = self.config.redirect_uri
            self._pending[state] = AuthorizationState(
                state=state,
                code_verifier=challenge.code_verifier,
                redirect_uri=redirect_uri,
            )
            auth_url = self.build_authorization_url(challenge, state, redirect_uri)
            self.flow_state = FlowState.CHALLENGE_ISSUED
            logger.info("Starting OAuth authorization flow")

            with CallbackServer(redirect_uri, self._pending) as server:
                self._open_browser(auth_url)
                self.flow_state = FlowState.AWAITING_CALLBACK
                result = server.wait(self._callback_timeout)

            self.flow_state = FlowState.CODE_RECEIVED
            callback_state = result.state
            pending = self._pending.pop(result.state)
            tokens = self.exchange_code(
                result.code, pending.code_verifier, pending.redirect_uri
            )
            self.flow_state = FlowState.TOKENS_EXCHANGED
            return tokens
        except Exception as exc:
            self.flow_state = FlowState.FAILED
            logger.error("OAuth authorization failed: %s", exc)
            raise
        finally:
            for key in (state, callback_state):
                if key is not None:
                    self._pending.pop(key, None)

    def exchange_code(
        self, code: str, code_verifier: str, redirect_uri: str
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises:
            AuthenticationError: If the provider rejects the exchange or the
                response lacks ``access_token``.
            NetworkError: On transport failures.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.config.client_id,
            "code_verifier": code_verifier,
        }
        tokens = self._post_token(data, "Token exchange", AuthenticationError)
        logger.info("Authorization code exchanged for tokens")
        return tokens

    def refresh_token(self, refresh_token: str) -> TokenResponse:
        """Obtain a new access token with *refresh_token*.

        Raises:
            TokenError: If the provider rejects the refresh, with the
                provider's ``error_description`` when it sent one.
            NetworkError: On transport failures.
        """
        self.ensure_endpoints()
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.config.client_id,
        }
        tokens = self._post_token(data, "Token refresh", TokenError)
        logger.info("Token refreshed")
        return tokens

    def get_user_info(self, access_token: str) -> UserInfo:
        """Fetch the claims of the user owning *access_token*.

        Raises:
            ConfigurationError: If the provider has no userinfo endpoint.
            TokenExpiredError: If the endpoint answers HTTP 401.
            TokenError: On other HTTP failures or a malformed response.
            NetworkError: On transport failures.
        """
        self.ensure_endpoints()
        endpoint = self.config.userinfo_endpoint
        if not endpoint:
            raise ConfigurationError("Userinfo endpoint not configured")

        try:
            response = httpx.get(
                endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                    "User-Agent": USER_AGENT,
                },
                timeout=USERINFO_TIMEOUT,
            )
            response.raise_for_status()
            data: Any = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 401:
                raise TokenExpiredError(
                    "Access token expired or invalid", status_code=401
                ) from exc
            raise TokenError(
                f"Failed to get user info: HTTP {status}", status_code=status
            ) from exc
        except httpx.HTTPError as exc:
            raise network_error_from(exc, "Fetching user info") from exc
        except ValueError as exc:
            raise TokenError("Failed to get user info: response is not valid JSON") from exc

        try:
            user = UserInfo.model_validate(data)
        except PydanticValidationError as exc:
            raise TokenError(f"Failed to get user info: {exc}") from exc
        logger.info("User info retrieved")
        return user

    def revoke_token(self, token: str, token_type_hint: str = "access_token") -> None:
        """Ask the provider to revoke *token*. Never raises.

        Local logout does not depend on this call: when the provider has no
        revocation endpoint a warning is logged and nothing is sent, and any
        failure is logged and swallowed.
        """
        try:
            self.ensure_endpoints()
            endpoint = self.config.end_session_endpoint
            if not endpoint:
                logger.warning(
                    "No revocation endpoint available, tokens will remain valid until expiry"
                )
                return
            response = httpx.post(
                endpoint,
                data={
                    "token": token,
                    "token_type_hint": token_type_hint,
                    "client_id": self.config.client_id,
                },
                headers={"User-Agent": USER_AGENT},
                timeout=REVOCATION_TIMEOUT,
            )
            response.raise_for_status()
            logger.info("Token revoked (%s)", token_type_hint)
        except (AuthPKCEError, httpx.HTTPError) as exc:
            logger.warning("Token revocation failed, continuing with logout: %s", exc)

    def _post_token(
        self,
        data: dict[str, str],
        action: str,
        error_cls: type[AuthPKCEError],
    ) -> TokenResponse:
        if not self.config.token_endpoint:
            raise ConfigurationError("Token endpoint is not configured")
        try:
            response = httpx.post(
                self.config.token_endpoint,
                data=data,
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
                timeout=TOKEN_TIMEOUT,
            )
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as exc:
            raise error_cls(
                f"{action} failed: {_provider_error(exc)}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise network_error_from(exc, action) from exc
        except ValueError as exc:
            raise error_cls(f"{action} failed: response is not valid JSON") from exc

        if not isinstance(payload, dict) or "access_token" not in payload:
            raise error_cls(f"{action} response missing 'access_token' field")
        try:
            return TokenResponse.model_validate(payload)
        except PydanticValidationError as exc:
            raise error_cls(f"{action} response is malformed: {exc}") from exc

    def _open_browser(self, url: str) -> None:
        """Open *url* in a daemon thread, printing it if no browser can be launched."""

        def _launch() -> None:
            try:
                opened = webbrowser.open(url)
            except webbrowser.Error as exc:
                logger.warning("Failed to open browser automatically: %s", exc)
                opened = False
            if not opened:
                self._output.info(
                    f"\nPlease open the following URL in your browser:\n{url}\n"
                )

        self._output.info("Opening your browser to complete authentication...")
        threading.Thread(target=_launch, daemon=True).start()
