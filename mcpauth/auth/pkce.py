"""OAuth PKCE and anti-CSRF state helpers."""

from __future__ import annotations

import base64
import hashlib
import secrets
import string
from dataclasses import dataclass

UNRESERVED_CHARACTERS = string.ascii_letters + string.digits + "-._~"
PKCE_VERIFIER_MIN_LENGTH = 43
PKCE_VERIFIER_MAX_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 64
STATE_LENGTH = 32
CODE_CHALLENGE_METHOD = "S256"


class PKCEError(Exception):
    """Raised when PKCE parameters cannot be generated safely."""


@dataclass(frozen=True, slots=True)
class PKCEPair:
    verifier: str
    challenge: str
    method: str = CODE_CHALLENGE_METHOD


def generate_random_string(length: int) -> str:
    if length <= 0:
        raise ValueError("length must be a positive integer")

    # secrets draws from the OS CSPRNG; without one there is no safe fallback.
    try:
        return "".join(secrets.choice(UNRESERVED_CHARACTERS) for _ in range(length))
    except NotImplementedError as exc:
        raise PKCEError("no cryptographically secure random source available") from exc


def generate_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    return generate_random_string(STATE_LENGTH)


def generate_pkce_pair(length: int = DEFAULT_VERIFIER_LENGTH) -> PKCEPair:
    if not PKCE_VERIFIER_MIN_LENGTH <= length <= PKCE_VERIFIER_MAX_LENGTH:
        raise ValueError(
            f"PKCE verifier length must be between {PKCE_VERIFIER_MIN_LENGTH} "
            f"and {PKCE_VERIFIER_MAX_LENGTH}, got {length}"
        )

    verifier = generate_random_string(length)
    return PKCEPair(verifier=verifier, challenge=generate_challenge(verifier))
