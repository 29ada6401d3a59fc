"""Operator CLI for inspecting and re-linking local user records."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager

from sqlalchemy.orm import Session

from mcpauth.db.models import AppUser
from mcpauth.db.session import session_scope
from mcpauth.repositories.audit_events import AuditEventRepository
from mcpauth.repositories.users import UserRepository, normalize_email

type SessionScopeFactory = Callable[[], AbstractContextManager[Session]]


class CliValidationError(ValueError):
    """Raised when CLI input fails validation."""


def main(
    argv: Sequence[str] | None = None,
    *,
    session_scope_factory: SessionScopeFactory | None = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    scope_factory = session_scope_factory or session_scope

    try:
        if args.command == "show":
            return _run_show(args, scope_factory=scope_factory)
        if args.command == "link":
            return _run_link(args, scope_factory=scope_factory)
    except CliValidationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    parser.error(f"unsupported command: {args.command}")
    return 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m mcpauth.cli.users")
    subparsers = parser.add_subparsers(dest="command", required=True)

    show_parser = subparsers.add_parser("show", help="show a local user and its linked subject")
    show_parser.add_argument("--email", required=True)

    link_parser = subparsers.add_parser(
        "link",
        help="tag a local user with an external subject identifier",
    )
    link_parser.add_argument("--email", required=True)
    link_parser.add_argument("--subject", required=True)
    link_parser.add_argument(
        "--create",
        action="store_true",
        help="create the user (pre-verified) when no record exists for the email",
    )
    return parser


def _run_show(args: argparse.Namespace, *, scope_factory: SessionScopeFactory) -> int:
    email = _normalize_email_arg(args.email)

    with scope_factory() as db_session:
        user = UserRepository(db_session).get_by_email(email)
        if user is None:
            raise CliValidationError(f"unknown user: {email}")
        summary = _describe_user(user)

    print(summary)
    return 0


def _run_link(args: argparse.Namespace, *, scope_factory: SessionScopeFactory) -> int:
    email = _normalize_email_arg(args.email)
    subject = args.subject.strip()
    if not subject:
        raise CliValidationError("subject is required")

    with scope_factory() as db_session:
        user_repo = UserRepository(db_session)
        audit_repo = AuditEventRepository(db_session)

        user = user_repo.get_by_email(email)
        created = False
        if user is None:
            if not bool(args.create):
                raise CliValidationError(f"unknown user: {email} (pass --create to add it)")
            user = user_repo.create_linked_user(email=email, external_subject=subject)
            created = True

        previous_subject = user.external_subject
        user_repo.set_external_subject(user, subject)
        audit_repo.create_event(
            action="identity.link.operator",
            target_type="app_user",
            target_id=str(user.id),
            metadata={
                "external_subject": subject,
                "previous_subject": previous_subject,
                "created": created,
            },
        )
        summary = f"linked {_describe_user(user)} created={created}"

    print(summary)
    return 0


def _normalize_email_arg(value: str) -> str:
    try:
        return normalize_email(value)
    except ValueError as exc:
        raise CliValidationError(str(exc)) from exc


def _describe_user(user: AppUser) -> str:
    return (
        f"user_id={user.id} email={user.email} "
        f"external_subject={user.external_subject or '-'} "
        f"email_verified={user.email_verified}"
    )


if __name__ == "__main__":
    raise SystemExit(main())
