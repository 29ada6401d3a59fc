"""Application services."""

from mcpauth.services.identity_link import (
    IdentityLinker,
    IdentityLinkError,
    IdentityMismatchError,
    InactiveTokenError,
    LinkResult,
    MissingVerifiedSubjectError,
    UserLinkingError,
    UserStore,
)

__all__ = [
    "IdentityLinkError",
    "IdentityLinker",
    "IdentityMismatchError",
    "InactiveTokenError",
    "LinkResult",
    "MissingVerifiedSubjectError",
    "UserLinkingError",
    "UserStore",
]
