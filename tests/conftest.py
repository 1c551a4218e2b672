"""Shared test fixtures for auth-pkce.

Provides an isolated storage directory, ready-made provider configurations
and token records, output state management, and a CLI runner. These
fixtures are automatically discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

import logging
import socket
from http.client import HTTPConnection
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlparse

import pytest

from authpkce.models import ProviderConfig, TokenRecord, now_ms
from authpkce.output import reset_output
from authpkce.store import TokenStore


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_package_logger() -> None:
    """Undo :func:`authpkce.app.configure_logging` after CLI tests.

    The CLI detaches the ``authpkce`` logger from the root logger, which
    would hide records from ``caplog`` in later tests.
    """
    yield
    package_logger = logging.getLogger("authpkce")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Storage isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def storage_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ``AUTH_PKCE_HOME`` at a fresh temporary directory.

    The directory itself is not created, so tests can observe the store
    creating it. ``AUTH_PKCE_NO_AUTO_REFRESH`` is cleared.
    """
    home = tmp_path / "auth-pkce"
    monkeypatch.setenv("AUTH_PKCE_HOME", str(home))
    monkeypatch.delenv("AUTH_PKCE_NO_AUTO_REFRESH", raising=False)
    return home


@pytest.fixture
def store(storage_dir: Path) -> TokenStore:
    """A TokenStore rooted in the isolated storage directory."""
    return TokenStore(storage_dir)


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def make_config(**overrides: object) -> ProviderConfig:
    """Build a ProviderConfig with explicit endpoints so no discovery happens."""
    values: dict[str, object] = {
        "base_url": "https://id.example.com",
        "client_id": "cli-client",
        "redirect_uri": "http://127.0.0.1:8080/callback",
        "scope": "openid profile email",
        "authorization_endpoint": "https://id.example.com/oauth2/authorize",
        "token_endpoint": "https://id.example.com/oauth2/token",
        "userinfo_endpoint": "https://id.example.com/oauth2/userinfo",
        "end_session_endpoint": "https://id.example.com/oauth2/revoke",
    }
    values.update(overrides)
    return ProviderConfig(**values)  # type: ignore[arg-type]


def make_tokens(
    access_token: str = "access-123",
    refresh_token: Optional[str] = "refresh-456",
    expires_in_ms: int = 3_600_000,
) -> TokenRecord:
    """Build a TokenRecord expiring *expires_in_ms* from now (negative = already expired)."""
    return TokenRecord(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=now_ms() + expires_in_ms,
    )


@pytest.fixture
def provider_config() -> ProviderConfig:
    """A complete provider configuration."""
    return make_config()


@pytest.fixture
def configured_store(store: TokenStore, provider_config: ProviderConfig) -> TokenStore:
    """A store that already holds :func:`provider_config`."""
    store.save_config(provider_config)
    return store


# ---------------------------------------------------------------------------
# Network helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def free_port() -> int:
    """Return a TCP port on 127.0.0.1 that is free right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Browser simulation
# ---------------------------------------------------------------------------


def send_callback(url: str, redirect_uri: str, **params: str) -> None:
    """Play the browser: hit *redirect_uri* with *params*, ``state`` taken from *url*."""
    query = parse_qs(urlparse(url).query)
    params.setdefault("state", query["state"][0])
    target = urlparse(redirect_uri)
    path = target.path + "?" + "&".join(f"{k}={v}" for k, v in params.items())
    conn = HTTPConnection(target.hostname, target.port, timeout=5)
    conn.request("GET", path)
    conn.getresponse().read()
    conn.close()


def fake_browser(redirect_uri: str, opened: list[str], **params: str):
    """Return a ``webbrowser.open`` replacement that completes the redirect."""

    def _open(url: str, *args: object, **kwargs: object) -> bool:
        opened.append(url)
        send_callback(url, redirect_uri, **params)
        return True

    return _open


def make_loopback_config(port: int) -> ProviderConfig:
    """A provider configuration whose redirect URI points at 127.0.0.1:*port*."""
    return make_config(redirect_uri=f"http://127.0.0.1:{port}/callback")
