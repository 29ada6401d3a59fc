"""Database layer exports."""

from mcpauth.db.base import Base
from mcpauth.db.models import AppUser, AuditEvent

__all__ = [
    "AppUser",
    "AuditEvent",
    "Base",
]
