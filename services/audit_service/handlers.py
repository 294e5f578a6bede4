"""
Idempotent handlers persisting audit envelopes.
A redelivered envelope is recognised by its event id and not stored twice.
"""
from typing import Type, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select
import structlog

from shared.events import EventEnvelope
from shared.events.payloads import AuditLogPayload, DataAccessLogPayload

from .models import AuditLog, DataAccessLog

logger = structlog.get_logger()

AuditRecord = Union[AuditLog, DataAccessLog]


class AuditEventHandlers:
    """Writes audit.log and audit.data-access envelopes to the audit store."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def handle_audit_log(self, envelope: EventEnvelope) -> None:
        payload = AuditLogPayload.from_dict(envelope.payload)
        record = AuditLog(
            event_id=envelope.event_id,
            correlation_id=envelope.correlation_id,
            service_name=envelope.source,
            user_id=payload.user_id,
            user_email=payload.user_email,
            user_role=payload.user_role,
            action=payload.action,
            resource=payload.resource,
            resource_id=payload.resource_id,
            status=payload.status,
            ip_address=payload.ip_address,
            user_agent=payload.user_agent,
            request_id=payload.request_id,
            session_id=payload.session_id,
            old_values=payload.old_values,
            new_values=payload.new_values,
            extra=payload.metadata,
            error_message=payload.error_message,
            occurred_at=envelope.timestamp
        )
        await self._store(envelope, AuditLog, record)

    async def handle_data_access_log(self, envelope: EventEnvelope) -> None:
        payload = DataAccessLogPayload.from_dict(envelope.payload)
        if payload.is_emergency_access:
            logger.warning(
                "Emergency PHI access recorded",
                user_id=payload.user_id,
                patient_id=payload.patient_id,
                break_glass_reason=payload.break_glass_reason
            )

        record = DataAccessLog(
            event_id=envelope.event_id,
            correlation_id=envelope.correlation_id,
            service_name=envelope.source,
            user_id=payload.user_id,
            user_email=payload.user_email,
            user_role=payload.user_role,
            patient_id=payload.patient_id,
            patient_mrn=payload.patient_mrn,
            data_type=payload.data_type,
            access_type=payload.access_type,
            sensitivity_level=payload.sensitivity_level,
            fields_accessed=payload.fields_accessed,
            ip_address=payload.ip_address,
            user_agent=payload.user_agent,
            is_emergency_access=bool(payload.is_emergency_access),
            break_glass_reason=payload.break_glass_reason,
            occurred_at=envelope.timestamp
        )
        await self._store(envelope, DataAccessLog, record)

    async def _store(self, envelope: EventEnvelope, model: Type[AuditRecord], record: AuditRecord) -> None:
        async with self.session_factory() as db:
            if await self._exists(db, model, envelope.event_id):
                logger.info("Audit event already stored, skipping", event_id=envelope.event_id)
                return

            db.add(record)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                if not await self._exists(db, model, envelope.event_id):
                    raise
                logger.info("Audit event stored by concurrent delivery", event_id=envelope.event_id)
                return

        logger.debug("Audit event stored", table=model.__tablename__, event_id=envelope.event_id)

    @staticmethod
    async def _exists(db: AsyncSession, model: Type[AuditRecord], event_id: str) -> bool:
        result = await db.execute(select(model.id).where(model.event_id == event_id))
        return result.first() is not None
