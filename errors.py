class ValidationError(ValueError):
    """Missing, empty or malformed input."""


class NotFoundError(ValueError):
    """A referenced user, group, category or transaction does not exist."""


class AuthorizationError(Exception):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)
        self.message = message


class SessionExpiredError(AuthorizationError):
    def __init__(self, message: str = "Perform login again") -> None:
        super().__init__(message)


class ConsistencyError(RuntimeError):
    """Stored data violates the category/transaction invariants."""
