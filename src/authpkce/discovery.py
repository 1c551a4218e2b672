"""OpenID Connect discovery for the configured provider.

The provider publishes its metadata at
``<base_url>/oauth2/token/.well-known/openid-configuration``. :func:`discover`
fetches and validates that document; the flow engine calls it at most once
per process, when the configuration does not yet carry explicit endpoints.

See Also:
    :meth:`authpkce.oauth.OAuthClient.ensure_endpoints` for how the result is
    merged into the provider configuration.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from authpkce import __version__
from authpkce.exceptions import DiscoveryError, DiscoveryNotFoundError
from authpkce.models import DiscoveryDocument

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/oauth2/token/.well-known/openid-configuration"
DISCOVERY_TIMEOUT = 10.0
USER_AGENT = f"auth-pkce-cli/{__version__}"


def discovery_url(base_url: str) -> str:
    """Return the well-known discovery URL for *base_url* (trailing slash stripped)."""
    return base_url.rstrip("/") + WELL_KNOWN_PATH


def discover(base_url: str) -> DiscoveryDocument:
    """Fetch and validate the provider's discovery document.

    Args:
        base_url: OAuth provider base URL, with or without a trailing slash.

    Returns:
        The parsed :class:`~authpkce.models.DiscoveryDocument`.

    Raises:
        DiscoveryNotFoundError: If the discovery endpoint returns HTTP 404.
        DiscoveryError: On any other HTTP or network failure, a non-JSON
            body, or a document missing ``authorization_endpoint`` or
            ``token_endpoint``. The underlying exception is chained.
    """
    url = discovery_url(base_url)
    logger.info("Discovering OpenID Connect configuration from %s", url)

    try:
        response = httpx.get(
            url,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            timeout=DISCOVERY_TIMEOUT,
        )
        response.raise_for_status()
        data: Any = response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        if status == 404:
            raise DiscoveryNotFoundError(
                f"OpenID Connect discovery endpoint not found at {url}. "
                "Check the configured base URL.",
                status_code=404,
            ) from exc
        raise DiscoveryError(
            f"Failed to discover OpenID Connect configuration: HTTP {status}",
            status_code=status,
        ) from exc
    except httpx.HTTPError as exc:
        raise DiscoveryError(
            f"Failed to discover OpenID Connect configuration: {exc}"
        ) from exc
    except ValueError as exc:
        raise DiscoveryError(
            f"OpenID Connect discovery document at {url} is not valid JSON"
        ) from exc

    if not isinstance(data, dict):
        raise DiscoveryError(
            f"OpenID Connect discovery document at {url} is not a JSON object"
        )
    missing = [
        key for key in ("authorization_endpoint", "token_endpoint") if not data.get(key)
    ]
    if missing:
        raise DiscoveryError(
            "Invalid OpenID Connect configuration: missing required endpoints "
            f"({', '.join(missing)})"
        )
    try:
        doc = DiscoveryDocument.model_validate(data)
    except PydanticValidationError as exc:
        raise DiscoveryError(f"Invalid OpenID Connect configuration: {exc}") from exc

    logger.info(
        "Discovered issuer %s (authorization=%s, token=%s, userinfo=%s)",
        doc.issuer,
        doc.authorization_endpoint,
        doc.token_endpoint,
        doc.userinfo_endpoint,
    )
    return doc


def validate_pkce_support(doc: DiscoveryDocument) -> bool:
    """Return whether the provider advertises the ``S256`` challenge method."""
    return "S256" in (doc.code_challenge_methods_supported or [])
