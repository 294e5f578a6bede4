"""
Declarative base, UUID keys and timestamp columns shared by the auth models.
"""
import uuid

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base

from ..core.timeutils import utcnow

Base = declarative_base()


def generate_uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class BaseModel(Base, TimestampMixin):
    """Base model with an opaque UUID primary key."""

    __abstract__ = True

    id = Column(String(36), primary_key=True, default=generate_uuid)

