"""PKCE and anti-CSRF primitives (:rfc:`7636`).

Verifiers and state tokens come from :mod:`secrets`; challenges are the
unpadded URL-safe base64 encoding of the verifier's SHA-256 digest.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from authpkce.models import PKCEChallenge

_VERIFIER_BYTES = 64
_STATE_BYTES = 16


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """Generate a random PKCE code verifier.

    Returns:
        An 86-character string from the unreserved URL-safe alphabet. RFC 7636
        allows 43 to 128 characters.
    """
    return _b64url(secrets.token_bytes(_VERIFIER_BYTES))


def generate_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for *code_verifier*."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_pkce_challenge() -> PKCEChallenge:
    """Generate a fresh verifier/challenge pair with method ``S256``."""
    verifier = generate_code_verifier()
    return PKCEChallenge(
        code_verifier=verifier,
        code_challenge=generate_code_challenge(verifier),
        code_challenge_method="S256",
    )


def generate_state() -> str:
    """Generate a single-use ``state`` token binding a request to its callback."""
    return _b64url(secrets.token_bytes(_STATE_BYTES))
