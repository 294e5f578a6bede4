"""
Append-only audit records. One row per envelope, unique on the event id.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_uuid() -> str:
    return str(uuid.uuid4())


class AuditLog(Base):
    """General security-relevant action (login, user changes, errors)."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_action", "action"),
        Index("ix_audit_logs_resource", "resource"),
        Index("ix_audit_logs_status", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    event_id = Column(String(64), unique=True, nullable=False)
    correlation_id = Column(String(128), nullable=True, index=True)
    service_name = Column(String(128), nullable=True)

    user_id = Column(String(36), nullable=True)
    user_email = Column(String(255), nullable=True)
    user_role = Column(String(50), nullable=True)
    action = Column(String(100), nullable=False)
    resource = Column(String(100), nullable=False)
    resource_id = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="success")

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    request_id = Column(String(100), nullable=True)
    session_id = Column(String(100), nullable=True)

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    occurred_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


class DataAccessLog(Base):
    """Access to patient data, including break-glass emergency access."""

    __tablename__ = "data_access_logs"
    __table_args__ = (
        Index("ix_data_access_logs_user_id", "user_id"),
        Index("ix_data_access_logs_patient_id", "patient_id"),
        Index("ix_data_access_logs_access_type", "access_type"),
        Index("ix_data_access_logs_sensitivity", "sensitivity_level"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    event_id = Column(String(64), unique=True, nullable=False)
    correlation_id = Column(String(128), nullable=True, index=True)
    service_name = Column(String(128), nullable=True)

    user_id = Column(String(36), nullable=False)
    user_email = Column(String(255), nullable=False)
    user_role = Column(String(50), nullable=False)
    patient_id = Column(String(36), nullable=False)
    patient_mrn = Column(String(50), nullable=True)
    data_type = Column(String(100), nullable=False)
    access_type = Column(String(20), nullable=False)
    sensitivity_level = Column(String(20), nullable=False, default="phi")
    fields_accessed = Column(JSON, nullable=True)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    is_emergency_access = Column(Boolean, nullable=False, default=False)
    break_glass_reason = Column(Text, nullable=True)

    occurred_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
