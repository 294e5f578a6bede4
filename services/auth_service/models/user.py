"""
User credential record.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String

from ..core.roles import DEFAULT_ROLE, UserRole
from ..core.timeutils import ensure_aware, utcnow
from .base import BaseModel


class User(BaseModel):
    """Credential record; deactivated rather than deleted."""

    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone_number = Column(String(50), nullable=True)
    role = Column(
        Enum(
            UserRole,
            name="user_role",
            native_enum=False,
            length=50,
            values_callable=lambda roles: [role.value for role in roles]
        ),
        default=DEFAULT_ROLE,
        nullable=False
    )

    # Account status
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    must_change_password = Column(Boolean, default=False, nullable=False)

    # Lockout
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        """Check if the account lockout is still in force."""
        locked_until = ensure_aware(self.locked_until)
        return locked_until is not None and locked_until > (now or utcnow())

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role}, active={self.is_active})>"
