"""
Domain errors raised by the auth service.

Each carries the HTTP status and client-facing detail the router maps it to.
Failure details stay generic so responses never reveal whether an account exists.
"""
from fastapi import status


class AuthError(Exception):
    """Base class for auth service domain errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "Authentication error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.detail
        super().__init__(self.detail)


class InvalidCredentials(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid credentials"


class AccountDeactivated(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Account is deactivated"


class AccountLocked(AuthError):
    status_code = status.HTTP_423_LOCKED
    detail = "Account is temporarily locked. Please try again later."


class DuplicateEmail(AuthError):
    status_code = status.HTTP_409_CONFLICT
    detail = "User with this email already exists"


class InvalidToken(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid refresh token"


class TokenRevoked(InvalidToken):
    pass


class TokenExpired(InvalidToken):
    pass


class UserNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "User not found"


class InsufficientPrivileges(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Insufficient privileges"
