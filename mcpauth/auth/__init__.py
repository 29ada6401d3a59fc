"""Authentication helpers."""

from mcpauth.auth.pkce import (
    CODE_CHALLENGE_METHOD,
    UNRESERVED_CHARACTERS,
    PKCEError,
    PKCEPair,
    generate_challenge,
    generate_pkce_pair,
    generate_random_string,
    generate_state,
)

__all__ = [
    "CODE_CHALLENGE_METHOD",
    "PKCEError",
    "PKCEPair",
    "UNRESERVED_CHARACTERS",
    "generate_challenge",
    "generate_pkce_pair",
    "generate_random_string",
    "generate_state",
]
