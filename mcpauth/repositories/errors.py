"""Repository-level domain errors."""


class RepositoryError(Exception):
    """Base repository exception."""


class DuplicateUserError(RepositoryError):
    """Raised when a user record with the same email already exists."""

    def __init__(self, email: str) -> None:
        super().__init__(f"user with email {email!r} already exists")
        self.email = email
