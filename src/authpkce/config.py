"""Storage paths, atomic writes, and provider configuration validation.

This module handles everything about *where* and *how* auth-pkce keeps its
state, leaving *what* is stored to :mod:`authpkce.store`:

* **Directory layout** -- ``$AUTH_PKCE_HOME`` when set, otherwise XDG Base
  Directory compliant on Linux/BSD (``~/.config/auth-pkce/``) and
  ``~/.auth-pkce/`` on macOS and Windows. See :func:`get_storage_dir`.
* **Atomic writes** -- :func:`atomic_write` writes to a temp file in the
  same directory and renames it into place, applying owner-only
  permissions before any content hits the disk.
* **Validation** -- :func:`validate_url` and :func:`validate_config` check a
  :class:`~authpkce.models.ProviderConfig` before it is persisted.
* **Interactive setup** -- :func:`prompt_for_config` asks for the provider
  settings, defaulting to the previously stored values.
"""

from __future__ import annotations

import os
import platform
import tempfile
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

import click
import typer
from pydantic import ValidationError as PydanticValidationError

from authpkce.exceptions import ConfigurationError, ValidationError
from authpkce.models import DEFAULT_REDIRECT_URI, DEFAULT_SCOPE, ProviderConfig

_APP_NAME = "auth-pkce"
HOME_ENV_VAR = "AUTH_PKCE_HOME"
NO_AUTO_REFRESH_ENV_VAR = "AUTH_PKCE_NO_AUTO_REFRESH"

DIR_MODE = 0o700
FILE_MODE = 0o600

_LOG_LEVELS = ("error", "warn", "info", "debug")


# --- Path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def get_storage_dir() -> Path:
    """Return the directory holding ``config.json`` and ``tokens.json``.

    The directory is not created here; :class:`~authpkce.store.TokenStore`
    creates it with owner-only permissions on first write.

    Returns:
        Absolute path to the storage directory.
    """
    override = os.environ.get(HOME_ENV_VAR, "")
    if override:
        return Path(override).expanduser()
    if _is_xdg_platform():
        xdg = os.environ.get("XDG_CONFIG_HOME", "")
        base = Path(xdg) if xdg else Path.home() / ".config"
        return base / _APP_NAME
    return Path.home() / f".{_APP_NAME}"


def auto_refresh_enabled() -> bool:
    """Return False when ``AUTH_PKCE_NO_AUTO_REFRESH`` is set to a truthy value."""
    value = os.environ.get(NO_AUTO_REFRESH_ENV_VAR, "").strip().lower()
    return value not in ("1", "true", "yes", "on")


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: int = FILE_MODE) -> None:
    """Write *data* to *path* atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. Permissions are set
    to *mode* before the content is written, so secrets are never readable
    by other users, even momentarily. On any failure the temp file is
    removed and the previous content of *path* is left untouched.
    """
    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Validation ---


def validate_url(url: str, field_name: str = "URL") -> None:
    """Check that *url* is an absolute ``http``/``https`` URL.

    Raises:
        ValidationError: If the URL is malformed.
    """
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid {field_name}: {url!r}")


def validate_config(config: ProviderConfig) -> None:
    """Validate the required fields of a provider configuration.

    Raises:
        ConfigurationError: If a required field is empty.
        ValidationError: If ``base_url`` or ``redirect_uri`` is malformed.
    """
    for field in ("base_url", "client_id", "redirect_uri", "scope"):
        value = getattr(config, field)
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationError(f"Missing or invalid configuration field: {field}")
    validate_url(config.base_url, "base URL")
    validate_url(config.redirect_uri, "redirect URI")


def build_config(
    previous: Optional[ProviderConfig] = None,
    **values: Optional[str],
) -> ProviderConfig:
    """Merge explicit *values* over *previous* and validate the result.

    ``None`` values fall back to the previous configuration, then to the
    model defaults. Changing ``base_url`` drops previously discovered
    endpoints so they are rediscovered against the new provider.

    Raises:
        ConfigurationError: If required values are missing.
        ValidationError: If a URL or the log level is malformed.
    """
    merged: dict[str, object] = {}
    if previous is not None:
        merged.update(previous.model_dump(exclude_none=True))
        new_base = values.get("base_url")
        if new_base and new_base.rstrip("/") != previous.base_url.rstrip("/"):
            for endpoint in (
                "authorization_endpoint",
                "token_endpoint",
                "userinfo_endpoint",
                "end_session_endpoint",
            ):
                merged.pop(endpoint, None)
    merged.update({k: v for k, v in values.items() if v is not None})

    log_level = merged.get("log_level")
    if log_level is not None and log_level not in _LOG_LEVELS:
        raise ValidationError(
            f"Invalid log level {log_level!r}; choose one of {', '.join(_LOG_LEVELS)}"
        )
    for field in ("base_url", "client_id"):
        if not merged.get(field):
            raise ConfigurationError(f"Missing or invalid configuration field: {field}")
    try:
        config = ProviderConfig.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
    validate_config(config)
    return config


def prompt_for_config(
    previous: Optional[ProviderConfig] = None,
    defaults: Optional[Mapping[str, Optional[str]]] = None,
) -> dict[str, str]:
    """Interactively ask for the provider settings.

    Each prompt defaults to the value in *defaults* (typically explicit CLI
    options), then to the previously stored configuration, then to the
    built-in default. URL answers are re-asked until they validate.

    Returns:
        A mapping suitable for :func:`build_config`.
    """
    defaults = defaults or {}

    def _default(field: str, fallback: Optional[str] = None) -> Optional[str]:
        value = defaults.get(field)
        if value:
            return value
        if previous is not None:
            return getattr(previous, field)
        return fallback

    def _ask_url(label: str, field: str, field_name: str, fallback: Optional[str] = None) -> str:
        while True:
            answer = typer.prompt(label, default=_default(field, fallback))
            try:
                validate_url(answer, field_name)
            except ValidationError as exc:
                typer.echo(str(exc), err=True)
                continue
            return answer

    answers: dict[str, str] = {}
    answers["base_url"] = _ask_url("OAuth provider base URL", "base_url", "base URL")
    while True:
        client_id = typer.prompt("OAuth client ID", default=_default("client_id")).strip()
        if client_id:
            break
        typer.echo("Client ID is required", err=True)
    answers["client_id"] = client_id
    answers["redirect_uri"] = _ask_url(
        "Redirect URI", "redirect_uri", "redirect URI", DEFAULT_REDIRECT_URI
    )
    answers["scope"] = typer.prompt(
        "OAuth scopes (space-separated)", default=_default("scope", DEFAULT_SCOPE)
    )
    answers["log_level"] = typer.prompt(
        "Log level",
        default=_default("log_level", "info"),
        type=click.Choice(list(_LOG_LEVELS)),
    )
    return answers
