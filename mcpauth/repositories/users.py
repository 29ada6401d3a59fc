"""Repositories for local user records linked to external identities."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mcpauth.db.models import AppUser
from mcpauth.repositories.errors import DuplicateUserError


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError("email is required")
    return normalized


class UserRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_id(self, user_id: uuid.UUID) -> AppUser | None:
        return self._session.get(AppUser, user_id)

    def get_by_email(self, email: str) -> AppUser | None:
        statement = select(AppUser).where(AppUser.email == normalize_email(email))
        return self._session.execute(statement).scalar_one_or_none()

    def list_by_external_subject(self, external_subject: str) -> list[AppUser]:
        statement = (
            select(AppUser)
            .where(AppUser.external_subject == external_subject)
            .order_by(AppUser.created_at.asc())
        )
        return list(self._session.execute(statement).scalars())

    def create_linked_user(self, *, email: str, external_subject: str) -> AppUser:
        # The identity provider already verified the address.
        user = AppUser(
            email=normalize_email(email),
            external_subject=external_subject,
            email_verified=True,
        )
        self._session.add(user)
        try:
            self._session.flush()
        except IntegrityError as exc:
            self._session.rollback()
            raise DuplicateUserError(user.email) from exc
        return user

    def set_external_subject(self, user: AppUser, external_subject: str) -> AppUser:
        user.external_subject = external_subject
        self._session.flush()
        return user
