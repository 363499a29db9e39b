"""Custom exception classes for the user management service."""

from typing import Optional


class UserManagementError(Exception):
    """Base exception for the user management service."""

    status_code = 400

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ValidationError(UserManagementError):
    """Raised when input validation fails."""
    status_code = 400


class AuthenticationError(UserManagementError):
    """Raised when the caller's identity is missing or invalid."""
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthorizationError(UserManagementError):
    """Raised when the caller lacks permission."""
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class ResourceNotFoundError(UserManagementError):
    """Raised when a requested resource is not found."""
    status_code = 404


class ResourceConflictError(UserManagementError):
    """Raised when a resource already exists or a state change conflicts."""
    status_code = 409


class BusinessRuleError(ResourceConflictError):
    """Raised when an operation would break a business invariant."""
    pass


class RateLimitError(UserManagementError):
    """Raised when a rate limit is exceeded."""
    status_code = 429

    def __init__(self, message: str = "Too many requests, try again later"):
        super().__init__(message)


class InternalError(UserManagementError):
    """Raised when the persistence backend fails unexpectedly.

    The original exception is kept on ``cause`` for logging; the message
    returned to callers never includes backend-specific details.
    """
    status_code = 500

    def __init__(self, message: str = "Internal server error", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


# Aliases matching the error taxonomy used in API documentation
NotFoundError = ResourceNotFoundError
ConflictError = ResourceConflictError
