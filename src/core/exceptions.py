"""Custom exception classes for the User Directory service.

This module defines application-specific exceptions following Google Python
Style Guide.
"""


class UserDirectoryError(Exception):
    """Base exception for all User Directory errors."""

    pass


class UserNotFoundError(UserDirectoryError):
    """Raised when a requested user cannot be found in the store of record."""

    def __init__(self, user_id):
        """Initialize the exception.

        Args:
            user_id: The ID (or username) of the user that was not found.
        """
        self.user_id = user_id
        super().__init__(f"User not found with id: {user_id}")


class DepartmentNotFoundError(UserDirectoryError):
    """Raised when a referenced department does not exist."""

    def __init__(self, department_id: int):
        self.department_id = department_id
        super().__init__(f"Department not found with id: {department_id}")


class UserAlreadyExistsError(UserDirectoryError):
    """Raised when an email or username is already taken."""

    pass


class InvalidOperationError(UserDirectoryError):
    """Raised for disallowed actions, such as deleting the admin account."""

    pass


class DependencyUnavailableError(UserDirectoryError):
    """Raised by the cache or search index adapters when their backend fails.

    Never surfaced to API callers; the user manager absorbs it.
    """

    def __init__(self, dependency: str, reason: str):
        self.dependency = dependency
        self.reason = reason
        super().__init__(f"{dependency} unavailable: {reason}")


class BootstrapError(UserDirectoryError):
    """Raised when startup reconciliation cannot complete against the store."""

    pass
