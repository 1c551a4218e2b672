"""Persistent provider configuration and token storage.

Stores two independent JSON records in the storage directory returned by
:func:`~authpkce.config.get_storage_dir` (or an explicitly supplied
directory):

* ``config.json`` -- the serialised :class:`~authpkce.models.ProviderConfig`.
* ``tokens.json`` -- the serialised :class:`~authpkce.models.TokenRecord`.

The directory is created with ``0o700`` and both files are written
atomically via :func:`~authpkce.config.atomic_write` with ``0o600``
permissions so that tokens are never readable by other users.

A :class:`TokenStore` is constructed explicitly and passed by reference to
whatever needs it; there is no global instance. Concurrent CLI invocations
for the same user may race on writes; no cross-process locking is done.

See Also:
    :class:`~authpkce.session.AuthSession` -- the facade that owns a store.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from authpkce.config import DIR_MODE, FILE_MODE, atomic_write, get_storage_dir
from authpkce.exceptions import ConfigurationError, TokenError
from authpkce.models import ProviderConfig, TokenRecord, now_ms

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
TOKENS_FILENAME = "tokens.json"


def is_token_expired(record: TokenRecord, now: Optional[int] = None) -> bool:
    """Return True when *record* is expired at *now* (epoch milliseconds).

    A token whose ``expires_at`` equals the current time counts as expired.
    """
    current = now_ms() if now is None else now
    return current >= record.expires_at


class TokenStore:
    """Read/write the provider configuration and tokens for one installation.

    Args:
        directory: Storage directory. Defaults to
            :func:`~authpkce.config.get_storage_dir`. Tests inject a
            temporary directory here.

    Example::

        store = TokenStore(tmp_path)
        store.save_config(ProviderConfig(base_url="https://id.example.com",
                                         client_id="cli"))
        assert store.has_config()
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = Path(directory) if directory is not None else get_storage_dir()

    @property
    def directory(self) -> Path:
        """The storage directory."""
        return self._directory

    @property
    def config_path(self) -> Path:
        """Path to ``config.json``."""
        return self._directory / CONFIG_FILENAME

    @property
    def tokens_path(self) -> Path:
        """Path to ``tokens.json``."""
        return self._directory / TOKENS_FILENAME

    def ensure_directory(self) -> None:
        """Create the storage directory with owner-only permissions.

        Permissions are re-applied when the directory already exists, so a
        directory loosened by hand is tightened again on the next write.
        """
        self._directory.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        os.chmod(self._directory, DIR_MODE)

    # --- Provider configuration ---

    def save_config(self, config: ProviderConfig) -> None:
        """Persist *config* atomically with ``0o600`` permissions."""
        self.ensure_directory()
        self._write(self.config_path, config.model_dump(mode="json"))
        logger.info("Configuration saved to %s", self.config_path)

    def load_config(self) -> Optional[ProviderConfig]:
        """Load the provider configuration.

        Returns:
            The stored :class:`~authpkce.models.ProviderConfig`, or ``None``
            if nothing has been configured yet.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed.
        """
        if not self.config_path.is_file():
            logger.debug("No configuration file at %s", self.config_path)
            return None
        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
            return ProviderConfig.model_validate(data)
        except (json.JSONDecodeError, PydanticValidationError, OSError) as exc:
            raise ConfigurationError(
                f"Invalid configuration at {self.config_path}: {exc}. "
                "Run 'auth-pkce auth configure' to reconfigure."
            ) from exc

    def has_config(self) -> bool:
        """Check whether a configuration file exists."""
        return self.config_path.is_file()

    # --- Tokens ---

    def save_tokens(self, record: TokenRecord) -> None:
        """Persist *record* atomically with ``0o600`` permissions, replacing any previous one."""
        self.ensure_directory()
        self._write(self.tokens_path, record.model_dump(mode="json"))
        logger.debug("Tokens saved to %s", self.tokens_path)

    def load_tokens(self) -> Optional[TokenRecord]:
        """Load the stored tokens.

        Returns:
            The stored :class:`~authpkce.models.TokenRecord`, or ``None``
            if the user has not logged in.

        Raises:
            TokenError: If the file exists but cannot be parsed.
        """
        if not self.tokens_path.is_file():
            return None
        try:
            data = json.loads(self.tokens_path.read_text(encoding="utf-8"))
            return TokenRecord.model_validate(data)
        except (json.JSONDecodeError, PydanticValidationError, OSError) as exc:
            raise TokenError(
                f"Stored tokens at {self.tokens_path} are unreadable: {exc}. "
                "Run 'auth-pkce login' again."
            ) from exc

    def clear_tokens(self) -> None:
        """Delete the token file. A no-op when it does not exist."""
        try:
            self.tokens_path.unlink()
        except FileNotFoundError:
            return
        logger.info("Tokens cleared")

    @staticmethod
    def is_token_expired(record: TokenRecord, now: Optional[int] = None) -> bool:
        """See :func:`is_token_expired`."""
        return is_token_expired(record, now)

    def _write(self, path: Path, data: dict) -> None:
        atomic_write(path, json.dumps(data, indent=2) + "\n", mode=FILE_MODE)
