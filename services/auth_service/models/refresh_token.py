from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from ..core.timeutils import ensure_aware, utcnow
from .base import Base, generate_uuid


class RefreshToken(Base):
    """Server-side record of an issued refresh token (hash only, never the raw JWT)."""

    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    jti = Column(String(36), unique=True, index=True, nullable=False)
    token_hash = Column(String(64), nullable=False)
    ip_address = Column(String(45), nullable=True)
    device_info = Column(String(500), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return ensure_aware(self.expires_at) <= (now or utcnow())

    def __repr__(self) -> str:
        return f"<RefreshToken(jti={self.jti}, user_id={self.user_id}, revoked={self.is_revoked})>"
