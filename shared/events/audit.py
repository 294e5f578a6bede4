"""
Audit emitter: structured audit and PHI data-access envelopes.

A thin façade over the EventPublisher. Audit delivery must never block or
fail the primary operation, so nothing here raises.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from .payloads import AuditLogPayload, DataAccessLogPayload
from .publisher import EventPublisher

logger = structlog.get_logger()


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


class AccessType(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    EXPORT = "export"


class SensitivityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PHI = "phi"


@dataclass
class AuditContext:
    """Actor and network context of an audited action (actor is optional pre-authentication)"""

    user_id: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    session_id: Optional[str] = None
    correlation_id: Optional[str] = None


class AuditEmitter:
    """Builds audit envelopes and routes them to the direct audit exchange."""

    def __init__(self, publisher: EventPublisher):
        self.publisher = publisher

    async def log_action(
        self,
        action: str,
        resource: str,
        outcome: AuditOutcome,
        context: Optional[AuditContext] = None,
        resource_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Log a general action (login, create, update, delete, ...).

        Returns:
            True if the audit envelope was handed to the broker
        """
        context = context or AuditContext()
        try:
            payload = AuditLogPayload(
                action=action,
                resource=resource,
                status=AuditOutcome(outcome).value,
                user_id=context.user_id,
                user_email=context.user_email,
                user_role=context.user_role,
                resource_id=resource_id,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                request_id=context.request_id,
                session_id=context.session_id,
                old_values=old_values,
                new_values=new_values,
                error_message=error_message,
                metadata=metadata,
            )
            return await self.publisher.publish_audit_log(payload, context.correlation_id)
        except Exception as e:
            logger.error("Failed to publish audit log", action=action, resource=resource, error=str(e))
            return False

    async def log_login(
        self,
        email: str,
        success: bool,
        context: Optional[AuditContext] = None,
        error_message: Optional[str] = None
    ) -> bool:
        context = context or AuditContext()
        context = AuditContext(**{**context.__dict__, "user_email": email})
        return await self.log_action(
            "user.login",
            "auth",
            AuditOutcome.SUCCESS if success else AuditOutcome.FAILURE,
            context,
            error_message=error_message,
        )

    async def log_logout(self, context: AuditContext) -> bool:
        return await self.log_action("user.logout", "auth", AuditOutcome.SUCCESS, context)

    async def log_user_created(
        self,
        new_user_id: str,
        new_user_email: str,
        new_user_role: str,
        context: Optional[AuditContext] = None
    ) -> bool:
        return await self.log_action(
            "user.create",
            "user",
            AuditOutcome.SUCCESS,
            context,
            resource_id=new_user_id,
            new_values={"email": new_user_email, "role": new_user_role},
        )

    async def log_user_updated(
        self,
        user_id: str,
        changes: Dict[str, Dict[str, Any]],
        context: Optional[AuditContext] = None
    ) -> bool:
        """changes maps field -> {"old": ..., "new": ...}"""
        old_values = {name: change.get("old") for name, change in changes.items()}
        new_values = {name: change.get("new") for name, change in changes.items()}
        return await self.log_action(
            "user.update",
            "user",
            AuditOutcome.SUCCESS,
            context,
            resource_id=user_id,
            old_values=old_values,
            new_values=new_values,
        )

    async def log_role_changed(
        self,
        user_id: str,
        old_role: str,
        new_role: str,
        context: Optional[AuditContext] = None
    ) -> bool:
        return await self.log_action(
            "user.role.change",
            "user",
            AuditOutcome.SUCCESS,
            context,
            resource_id=user_id,
            old_values={"role": old_role},
            new_values={"role": new_role},
        )

    async def log_patient_access(
        self,
        patient_id: str,
        access_type: AccessType,
        data_type: str,
        context: AuditContext,
        patient_mrn: Optional[str] = None,
        sensitivity_level: SensitivityLevel = SensitivityLevel.PHI,
        fields_accessed: Optional[List[str]] = None,
        is_emergency_access: Optional[bool] = None,
        break_glass_reason: Optional[str] = None
    ) -> bool:
        """Log access to patient data (PHI), including break-glass emergency access."""
        try:
            if is_emergency_access and not break_glass_reason:
                logger.warning(
                    "Emergency access logged without a break-glass reason",
                    patient_id=patient_id,
                    user_id=context.user_id
                )

            payload = DataAccessLogPayload(
                user_id=context.user_id,
                user_email=context.user_email,
                user_role=context.user_role,
                patient_id=patient_id,
                patient_mrn=patient_mrn,
                data_type=data_type,
                access_type=AccessType(access_type).value,
                sensitivity_level=SensitivityLevel(sensitivity_level).value,
                fields_accessed=fields_accessed,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                is_emergency_access=is_emergency_access,
                break_glass_reason=break_glass_reason,
            )
            return await self.publisher.publish_data_access_log(payload, context.correlation_id)
        except Exception as e:
            logger.error("Failed to publish data access log", patient_id=patient_id, error=str(e))
            return False

    async def log_permission_change(
        self,
        action: str,
        target_user_id: str,
        permission: str,
        context: Optional[AuditContext] = None
    ) -> bool:
        """action is 'grant' or 'revoke'"""
        return await self.log_action(
            f"permission.{action}",
            "rbac",
            AuditOutcome.SUCCESS,
            context,
            resource_id=target_user_id,
            new_values={"permission": permission, "action": action},
        )

    async def log_resource_access(
        self,
        resource: str,
        resource_id: str,
        action: str,
        context: Optional[AuditContext] = None
    ) -> bool:
        return await self.log_action(
            f"{resource}.{action}",
            resource,
            AuditOutcome.SUCCESS,
            context,
            resource_id=resource_id,
        )

    async def log_error(
        self,
        action: str,
        resource: str,
        error_message: str,
        context: Optional[AuditContext] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        return await self.log_action(
            action,
            resource,
            AuditOutcome.ERROR,
            context,
            error_message=error_message,
            metadata=metadata,
        )
