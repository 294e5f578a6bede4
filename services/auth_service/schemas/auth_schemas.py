"""
Authentication-related Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..core.roles import DEFAULT_ROLE, UserRole, is_admin

# bcrypt only considers the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
    return value


class RegisterRequest(BaseModel):
    """Self-service registration request."""

    email: EmailStr = Field(..., description="User's email address")
    password: str = Field(..., min_length=8, description="User's password")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=50)
    role: UserRole = Field(DEFAULT_ROLE, description="Requested role; administrative roles cannot be self-assigned")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "doctor@example.com",
                "password": "Str0ng-Passw0rd!",
                "first_name": "Jane",
                "last_name": "Smith"
            }
        }
    )

    @field_validator("password")
    @classmethod
    def validate_password_bytes(cls, v: str) -> str:
        return _check_password_bytes(v)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: UserRole) -> UserRole:
        if is_admin(v):
            raise ValueError("Administrative roles cannot be self-assigned")
        return v


class RegisterResponse(BaseModel):
    id: str
    email: str


class LoginRequest(BaseModel):
    """Login request schema."""

    email: EmailStr = Field(..., description="User's email address")
    password: str = Field(..., min_length=1, description="User's password")


class RefreshTokenRequest(BaseModel):
    """Refresh token request schema."""

    refresh_token: str = Field(..., min_length=1, description="JWT refresh token")


class AuthTokens(BaseModel):
    """Access/refresh token pair."""

    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token")
    token_type: str = Field("bearer", description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class UserSummary(BaseModel):
    """Public view of a credential record; never includes the hash."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    phone_number: Optional[str] = None
    is_active: bool
    must_change_password: bool = False
    last_login_at: Optional[datetime] = None


class LoginResult(AuthTokens):
    user: UserSummary


class CreateUserRequest(BaseModel):
    """Administrator-created account; a temporary password is generated."""

    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: UserRole
    phone_number: Optional[str] = Field(None, max_length=50)


class CreateUserResult(BaseModel):
    user: UserSummary
    temporary_password: str


class ChangeRoleRequest(BaseModel):
    role: UserRole


class DeactivateUserRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
