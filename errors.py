from typing import Optional


class ValidationFailed(ValueError):
    status_code = 400

    def __init__(
        self, message: str = "Validation failed", errors: Optional[list[dict]] = None
    ) -> None:
        super().__init__(message)
        self.errors = errors or []


class DuplicateIdentity(ValueError):
    status_code = 400


class DuplicateBudget(ValueError):
    status_code = 400


class InvalidCredentials(ValueError):
    status_code = 401

    def __init__(self, message: str = "Invalid email or password") -> None:
        super().__init__(message)


class TokenInvalid(ValueError):
    status_code = 401


class NotFound(ValueError):
    status_code = 404
