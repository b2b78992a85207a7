"""LiftLog exceptions."""


class LiftLogError(Exception):
    """Base exception for LiftLog errors."""
    pass


class AuthenticationError(LiftLogError):
    """Raised when authentication fails."""
    pass


class TokenExpiredError(AuthenticationError):
    """Raised when the authentication token has expired."""
    pass


class PersistenceError(LiftLogError):
    """Raised when a call to the data store fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MissingContextError(LiftLogError):
    """Raised when no identity or session store is available."""
    pass


class AuthorizationError(LiftLogError):
    """Raised when mutating a record owned by another user."""
    pass


class ValidationError(LiftLogError):
    """Raised when input fails validation."""
    pass


class InvalidStateError(LiftLogError):
    """Raised when an operation is not legal in the current session state."""
    pass
