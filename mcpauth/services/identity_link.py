"""Links a verified external identity to a local user record.

The linker never trusts the caller's claimed subject on its own. The access
token is introspected against the authorization server first, and the subject
recovered from that verified response must equal the subject the caller
presents. Only then is a local record resolved by email: created (marked
verified, tagged with the subject) when absent, re-tagged when present.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

from mcpauth.db.models import AppUser
from mcpauth.integrations.auth_server import (
    AuthServerClientProtocol,
    IntrospectionActive,
    IntrospectionInactive,
)
from mcpauth.repositories.errors import DuplicateUserError

logger = logging.getLogger(__name__)


class IdentityLinkError(Exception):
    """Base identity linking exception."""


class InactiveTokenError(IdentityLinkError):
    """Raised when introspection reports the access token as inactive."""


class MissingVerifiedSubjectError(IdentityLinkError):
    """Raised when a verified introspection response carries no subject."""


class IdentityMismatchError(IdentityLinkError):
    """Raised when the verified subject differs from the caller's claim."""

    def __init__(self, *, verified_subject: str, claimed_subject: str) -> None:
        super().__init__("User identifier mismatch during linking.")
        self.verified_subject = verified_subject
        self.claimed_subject = claimed_subject


class UserLinkingError(IdentityLinkError):
    """Raised when the user store is inconsistent during lookup or creation."""


class UserStore(Protocol):
    def get_by_id(self, user_id: uuid.UUID) -> AppUser | None: ...

    def get_by_email(self, email: str) -> AppUser | None: ...

    def create_linked_user(self, *, email: str, external_subject: str) -> AppUser: ...

    def set_external_subject(self, user: AppUser, external_subject: str) -> AppUser: ...


@dataclass(frozen=True, slots=True)
class LinkResult:
    user_id: uuid.UUID
    external_subject: str
    created: bool


class IdentityLinker:
    def __init__(
        self,
        *,
        auth_client: AuthServerClientProtocol,
        user_store: UserStore,
    ) -> None:
        self._auth_client = auth_client
        self._user_store = user_store

    async def introspect(self, access_token: str) -> IntrospectionActive:
        result = await self._auth_client.introspect_token(token=access_token)
        if isinstance(result, IntrospectionInactive):
            raise InactiveTokenError(result.reason)
        return result

    def verify_subject(self, introspection: IntrospectionActive, *, claimed_subject: str) -> str:
        verified_subject = introspection.verified_subject
        if not verified_subject:
            raise MissingVerifiedSubjectError("Could not retrieve user identifier from token.")

        if verified_subject != claimed_subject:
            logger.error(
                "SECURITY: subject mismatch during identity linking verified=%s claimed=%s",
                verified_subject,
                claimed_subject,
            )
            raise IdentityMismatchError(
                verified_subject=verified_subject,
                claimed_subject=claimed_subject,
            )
        return verified_subject

    def link(
        self,
        introspection: IntrospectionActive,
        *,
        claimed_subject: str,
        email: str,
        current_user_id: uuid.UUID | None = None,
    ) -> LinkResult:
        verified_subject = self.verify_subject(introspection, claimed_subject=claimed_subject)

        if current_user_id is not None:
            user = self._user_store.get_by_id(current_user_id)
            if user is None:
                raise UserLinkingError(f"Could not find local user {current_user_id}.")
            self._user_store.set_external_subject(user, verified_subject)
            logger.info("re-linked provided user id=%s subject=%s", user.id, verified_subject)
            return LinkResult(user_id=user.id, external_subject=verified_subject, created=False)

        existing = self._user_store.get_by_email(email)
        if existing is not None:
            self._user_store.set_external_subject(existing, verified_subject)
            logger.info("re-linked existing user id=%s subject=%s", existing.id, verified_subject)
            return LinkResult(
                user_id=existing.id,
                external_subject=verified_subject,
                created=False,
            )

        try:
            created = self._user_store.create_linked_user(
                email=email,
                external_subject=verified_subject,
            )
        except DuplicateUserError as exc:
            # Lost a race with a concurrent creation; the record must now be visible.
            existing = self._user_store.get_by_email(email)
            if existing is None:
                raise UserLinkingError(
                    f"Failed to find existing user {email} after duplicate error."
                ) from exc
            self._user_store.set_external_subject(existing, verified_subject)
            return LinkResult(
                user_id=existing.id,
                external_subject=verified_subject,
                created=False,
            )

        logger.info("created linked user id=%s subject=%s", created.id, verified_subject)
        return LinkResult(user_id=created.id, external_subject=verified_subject, created=True)
