"""Repository layer exports."""

from mcpauth.repositories.audit_events import AuditEventRepository
from mcpauth.repositories.errors import DuplicateUserError, RepositoryError
from mcpauth.repositories.users import UserRepository, normalize_email

__all__ = [
    "AuditEventRepository",
    "DuplicateUserError",
    "RepositoryError",
    "UserRepository",
    "normalize_email",
]
