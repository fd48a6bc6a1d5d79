from __future__ import annotations

from typing import Any, Dict, List, Optional


class AuthError(Exception):
    """Base class for auth failures surfaced to API callers."""

    status_code: int = 400
    kind: str = "auth_error"
    default_message: str = "Authentication error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "error": self.kind}


class ValidationFailed(AuthError):
    status_code = 422
    kind = "validation_failed"
    default_message = "The given data was invalid."

    def __init__(self, errors: Dict[str, List[str]], message: Optional[str] = None) -> None:
        self.errors = errors
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["errors"] = self.errors
        return out


class EmailTaken(AuthError):
    status_code = 422
    kind = "email_taken"
    default_message = "The email has already been taken."

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["errors"] = {"email": [self.message]}
        return out


class InvalidCredentials(AuthError):
    status_code = 401
    kind = "invalid_credentials"
    default_message = "Invalid email or password"


class TokenMissing(AuthError):
    status_code = 401
    kind = "token_missing"
    default_message = "Unauthenticated"


class TokenInvalid(AuthError):
    status_code = 401
    kind = "token_invalid"
    default_message = "Unauthenticated"


class TooManyAttempts(AuthError):
    status_code = 429
    kind = "too_many_attempts"
    default_message = "Too many failed login attempts. Please try again later."
