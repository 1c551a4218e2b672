"""Tests for the AuthSession facade.

The end-to-end scenarios drive a real :class:`~authpkce.oauth.OAuthClient`
through the loopback listener; the rest substitute a mock client through
``client_factory``.
"""

from __future__ import annotations

from typing import Optional
from unittest.mock import MagicMock, patch

import httpx
import pytest

from authpkce.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    TokenError,
    TokenExpiredError,
)
from authpkce.models import ProviderConfig, TokenResponse, UserInfo, now_ms
from authpkce.oauth import OAuthClient
from authpkce.output import OutputManager
from authpkce.session import AuthSession, create_session
from authpkce.store import TokenStore

from conftest import fake_browser, make_config, make_loopback_config, make_tokens


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_client() -> MagicMock:
    return MagicMock(spec=OAuthClient)


def _session(
    store: TokenStore,
    client: Optional[MagicMock] = None,
    auto_refresh: bool = True,
) -> AuthSession:
    """Build a session whose OAuth client is *client* (a fresh mock by default)."""
    client = client if client is not None else _mock_client()
    return AuthSession(
        store,
        auto_refresh=auto_refresh,
        client_factory=lambda config, output: client,
    )


def _token_post(payload: dict[str, object]) -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = 200
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_fresh_install_is_not_configured(self, store: TokenStore) -> None:
        session = create_session(store.directory)
        assert session.has_configuration() is False
        with pytest.raises(ConfigurationError, match="not configured"):
            session.status()
        assert session.is_authenticated() is False

    def test_configured_without_login(self, configured_store: TokenStore) -> None:
        session = create_session(configured_store.directory)
        assert session.is_authenticated() is False
        assert session.status() is False
        with pytest.raises(TokenError, match="Not authenticated"):
            session.get_access_token()

    def test_successful_login(self, store: TokenStore, free_port: int) -> None:
        config = make_loopback_config(free_port)
        store.save_config(config)
        session = create_session(store.directory)
        opened: list[str] = []

        before = now_ms()
        with patch(
            "authpkce.oauth.webbrowser.open",
            side_effect=fake_browser(config.redirect_uri, opened, code="abc123"),
        ), patch(
            "authpkce.oauth.httpx.post",
            return_value=_token_post(
                {"access_token": "T1", "expires_in": 3600, "token_type": "Bearer"}
            ),
        ) as mock_post:
            record = session.login()
        after = now_ms()

        assert mock_post.call_args.kwargs["data"]["code"] == "abc123"
        stored = store.load_tokens()
        assert stored == record
        assert before + 3_600_000 <= stored.expires_at <= after + 3_600_000
        assert session.get_bearer_token() == "Bearer T1"
        assert session.is_authenticated() is True

    def test_expired_token_is_refreshed_by_status(
        self, configured_store: TokenStore
    ) -> None:
        configured_store.save_tokens(
            make_tokens(access_token="old", refresh_token="r1", expires_in_ms=-1_000)
        )
        session = create_session(configured_store.directory)

        with patch(
            "authpkce.oauth.httpx.post",
            return_value=_token_post({"access_token": "new", "expires_in": 3600}),
        ) as mock_post:
            assert session.status() is True

        assert mock_post.call_args.kwargs["data"]["refresh_token"] == "r1"
        stored = configured_store.load_tokens()
        assert stored.access_token == "new"
        assert stored.refresh_token == "r1"
        assert session.get_access_token() == "new"

    def test_denied_login_writes_nothing(self, store: TokenStore, free_port: int) -> None:
        config = make_loopback_config(free_port)
        store.save_config(config)
        session = create_session(store.directory)
        opened: list[str] = []

        with patch(
            "authpkce.oauth.webbrowser.open",
            side_effect=fake_browser(config.redirect_uri, opened, error="access_denied"),
        ), patch("authpkce.oauth.httpx.post") as mock_post:
            with pytest.raises(AuthenticationError, match="access_denied"):
                session.login()

        mock_post.assert_not_called()
        assert store.load_tokens() is None
        assert not store.tokens_path.exists()


# ---------------------------------------------------------------------------
# configure
# ---------------------------------------------------------------------------


class TestConfigure:
    def test_saves_configuration(self, store: TokenStore) -> None:
        session = _session(store)
        config = session.configure(base_url="https://id.example.com", client_id="cli")
        assert store.load_config() == config
        assert session.has_configuration() is True
        assert session.get_configuration() == config

    def test_missing_values_rejected_and_nothing_saved(self, store: TokenStore) -> None:
        session = _session(store)
        with pytest.raises(ConfigurationError):
            session.configure(base_url="https://id.example.com")
        assert store.has_config() is False

    def test_reconfigure_keeps_previous_values(self, configured_store: TokenStore) -> None:
        session = _session(configured_store)
        config = session.configure(scope="openid")
        assert config.client_id == "cli-client"
        assert config.scope == "openid"

    def test_corrupt_previous_configuration_is_replaced(self, store: TokenStore) -> None:
        store.ensure_directory()
        store.config_path.write_text("garbage")
        session = _session(store)
        config = session.configure(base_url="https://id.example.com", client_id="cli")
        assert store.load_config() == config

    def test_interactive_uses_prompts(self, store: TokenStore) -> None:
        session = _session(store)
        answers = {
            "base_url": "https://prompted.example.com",
            "client_id": "prompted",
            "redirect_uri": "http://localhost:8080/callback",
            "scope": "openid",
            "log_level": "warn",
        }
        with patch("authpkce.session.prompt_for_config", return_value=answers) as prompt:
            config = session.configure(client_id="given", interactive=True)

        assert prompt.call_args.kwargs["defaults"]["client_id"] == "given"
        assert config.base_url == "https://prompted.example.com"
        assert config.log_level == "warn"

    def test_new_configuration_gets_new_client(self, configured_store: TokenStore) -> None:
        configs: list[ProviderConfig] = []

        def factory(config: ProviderConfig, output: OutputManager) -> MagicMock:
            configs.append(config)
            client = _mock_client()
            client.get_user_info.return_value = UserInfo(sub="u")
            return client

        configured_store.save_tokens(make_tokens())
        session = AuthSession(configured_store, client_factory=factory)
        session.whoami()
        session.whoami()
        session.configure(base_url="https://other.example.com")
        session.whoami()

        assert len(configs) == 2
        assert configs[1].base_url == "https://other.example.com"


# ---------------------------------------------------------------------------
# login / refresh / logout
# ---------------------------------------------------------------------------


class TestLogin:
    def test_requires_configuration(self, store: TokenStore) -> None:
        with pytest.raises(ConfigurationError, match="not configured"):
            _session(store).login()

    def test_unusable_expiry_rejected(self, configured_store: TokenStore) -> None:
        client = _mock_client()
        client.authorize.return_value = TokenResponse(access_token="a", expires_in=0)
        with pytest.raises(AuthenticationError, match="unusable"):
            _session(configured_store, client).login()
        assert configured_store.load_tokens() is None

    def test_failed_login_keeps_previous_tokens(self, configured_store: TokenStore) -> None:
        previous = make_tokens(access_token="keep-me")
        configured_store.save_tokens(previous)
        client = _mock_client()
        client.authorize.side_effect = NetworkError("Token exchange failed: connection refused")
        with pytest.raises(NetworkError):
            _session(configured_store, client).login()
        assert configured_store.load_tokens() == previous


class TestRefresh:
    def test_keeps_refresh_token_when_not_rotated(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(refresh_token="r1"))
        client = _mock_client()
        client.refresh_token.return_value = TokenResponse(access_token="new")
        record = _session(configured_store, client).refresh()

        client.refresh_token.assert_called_once_with("r1")
        assert record.refresh_token == "r1"
        assert configured_store.load_tokens() == record

    def test_rotated_refresh_token_is_stored(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(refresh_token="r1"))
        client = _mock_client()
        client.refresh_token.return_value = TokenResponse(access_token="new", refresh_token="r2")
        _session(configured_store, client).refresh()
        assert configured_store.load_tokens().refresh_token == "r2"

    @pytest.mark.parametrize("refresh_token", [None, ""])
    def test_no_refresh_token(
        self, configured_store: TokenStore, refresh_token: Optional[str]
    ) -> None:
        configured_store.save_tokens(make_tokens(refresh_token=refresh_token))
        with pytest.raises(TokenError, match="No refresh token"):
            _session(configured_store).refresh()

    def test_not_logged_in(self, configured_store: TokenStore) -> None:
        with pytest.raises(TokenError, match="No refresh token"):
            _session(configured_store).refresh()

    def test_rejected_refresh_keeps_record(self, configured_store: TokenStore) -> None:
        previous = make_tokens(expires_in_ms=-1)
        configured_store.save_tokens(previous)
        client = _mock_client()
        client.refresh_token.side_effect = TokenError("Token refresh failed: revoked")
        with pytest.raises(TokenError, match="revoked"):
            _session(configured_store, client).refresh()
        assert configured_store.load_tokens() == previous


class TestLogout:
    def test_revokes_both_tokens_and_clears(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(access_token="a1", refresh_token="r1"))
        client = _mock_client()
        _session(configured_store, client).logout()

        assert [c.args for c in client.revoke_token.call_args_list] == [
            ("a1", "access_token"),
            ("r1", "refresh_token"),
        ]
        assert configured_store.load_tokens() is None
        assert configured_store.has_config() is True

    def test_clears_even_when_revocation_raises(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens())
        client = _mock_client()
        client.revoke_token.side_effect = httpx.ConnectError("Connection refused")
        _session(configured_store, client).logout()
        assert configured_store.load_tokens() is None

    def test_clears_unreadable_tokens(self, configured_store: TokenStore) -> None:
        configured_store.tokens_path.write_text("not json")
        client = _mock_client()
        _session(configured_store, client).logout()
        client.revoke_token.assert_not_called()
        assert not configured_store.tokens_path.exists()

    def test_without_login_is_noop(self, configured_store: TokenStore) -> None:
        client = _mock_client()
        _session(configured_store, client).logout()
        client.revoke_token.assert_not_called()

    def test_any_revocation_error_is_swallowed(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(access_token="a1", refresh_token="r1"))
        client = _mock_client()
        client.revoke_token.side_effect = RuntimeError("boom")
        _session(configured_store, client).logout()

        assert [c.args for c in client.revoke_token.call_args_list] == [
            ("a1", "access_token"),
            ("r1", "refresh_token"),
        ]
        assert configured_store.load_tokens() is None


# ---------------------------------------------------------------------------
# status and accessors
# ---------------------------------------------------------------------------


class TestStatus:
    def test_details_for_valid_token(self, configured_store: TokenStore) -> None:
        record = make_tokens()
        configured_store.save_tokens(record)
        details = _session(configured_store).status_details()
        assert details.configured is True
        assert details.authenticated is True
        assert details.expires_at == record.expires_at
        assert details.has_refresh_token is True
        assert details.refreshed is False

    def test_auto_refresh_disabled(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(expires_in_ms=-1))
        client = _mock_client()
        session = _session(configured_store, client, auto_refresh=False)
        assert session.status() is False
        client.refresh_token.assert_not_called()

    def test_expired_without_refresh_token(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(refresh_token=None, expires_in_ms=-1))
        client = _mock_client()
        assert _session(configured_store, client).status() is False
        client.refresh_token.assert_not_called()

    def test_failed_auto_refresh_reports_unauthenticated(
        self, configured_store: TokenStore
    ) -> None:
        previous = make_tokens(expires_in_ms=-1)
        configured_store.save_tokens(previous)
        client = _mock_client()
        client.refresh_token.side_effect = TokenError("Token refresh failed: invalid_grant")
        session = _session(configured_store, client)
        assert session.status() is False
        assert session.is_authenticated() is False
        assert configured_store.load_tokens() == previous

    def test_unreadable_tokens(self, configured_store: TokenStore) -> None:
        configured_store.tokens_path.write_text("{not json")
        session = _session(configured_store)
        assert session.is_authenticated() is False
        with pytest.raises(TokenError, match="unreadable"):
            session.status()

    def test_refreshed_flag(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(expires_in_ms=-1))
        client = _mock_client()
        client.refresh_token.return_value = TokenResponse(access_token="fresh")
        details = _session(configured_store, client).status_details()
        assert details.authenticated is True
        assert details.refreshed is True


class TestAccessors:
    def test_expired_token_not_refreshed(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(expires_in_ms=-1))
        client = _mock_client()
        session = _session(configured_store, client)
        with pytest.raises(TokenExpiredError, match="expired"):
            session.get_access_token()
        with pytest.raises(TokenExpiredError):
            session.get_bearer_token()
        client.refresh_token.assert_not_called()

    def test_unconfigured(self, store: TokenStore) -> None:
        with pytest.raises(TokenError, match="Not authenticated"):
            _session(store).get_access_token()

    def test_bearer_format(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(access_token="xyz"))
        assert _session(configured_store).get_bearer_token() == "Bearer xyz"


class TestWhoami:
    def test_returns_user(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(access_token="a1"))
        client = _mock_client()
        client.get_user_info.return_value = UserInfo(sub="u-1", email="ada@example.com")
        user = _session(configured_store, client).whoami()
        client.get_user_info.assert_called_once_with("a1")
        assert user.email == "ada@example.com"

    def test_requires_login(self, configured_store: TokenStore) -> None:
        with pytest.raises(TokenError, match="Not authenticated"):
            _session(configured_store).whoami()

    def test_expired_locally(self, configured_store: TokenStore) -> None:
        configured_store.save_tokens(make_tokens(expires_in_ms=-1))
        client = _mock_client()
        with pytest.raises(TokenExpiredError):
            _session(configured_store, client).whoami()
        client.get_user_info.assert_not_called()

    def test_requires_configuration(self, store: TokenStore) -> None:
        with pytest.raises(ConfigurationError):
            _session(store).whoami()


class TestCreateSession:
    def test_silent_output(self, storage_dir, capfd: pytest.CaptureFixture[str]) -> None:
        session = create_session(silent=True)
        assert session.store.directory == storage_dir
        session.configure(base_url="https://id.example.com", client_id="cli")
        captured = capfd.readouterr()
        assert captured.err == ""
        assert captured.out == ""

    def test_default_output_reports_progress(
        self, storage_dir, capfd: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        session = create_session()
        session.configure(base_url="https://id.example.com", client_id="cli")
        assert "Configuration saved successfully!" in capfd.readouterr().err

    def test_endpoints_left_for_discovery(self, store: TokenStore) -> None:
        session = _session(store)
        expected = make_config()
        saved = session.configure(
            base_url=expected.base_url,
            client_id=expected.client_id,
            redirect_uri=expected.redirect_uri,
            scope=expected.scope,
        )
        assert saved.client_id == expected.client_id
        assert saved.token_endpoint is None
