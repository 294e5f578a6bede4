"""
Audit service consumer entrypoint.

Run with: python -m services.audit_service.main
"""
import asyncio
import signal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine
import structlog

from shared.database import build_engine, build_session_factory
from shared.events import (
    BrokerConnection,
    EventConfig,
    EventConsumer,
    EventRoutingKeys,
    Exchanges,
    get_event_config,
)
from shared.logging import configure_logging

from .config import Settings, get_settings
from .handlers import AuditEventHandlers
from .models import Base

logger = structlog.get_logger()


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def build_consumer(
    connection: BrokerConnection,
    handlers: AuditEventHandlers,
    service_name: str,
    event_config: EventConfig
) -> EventConsumer:
    """Bind the audit queues to the direct audit exchange."""
    consumer = EventConsumer(
        connection,
        service_name,
        prefetch_count=event_config.RABBITMQ_PREFETCH_COUNT,
        max_redeliveries=event_config.RABBITMQ_MAX_REDELIVERIES
    )
    consumer.subscribe(EventRoutingKeys.AUDIT_LOG, handlers.handle_audit_log, exchange=Exchanges.AUDIT)
    consumer.subscribe(
        EventRoutingKeys.AUDIT_DATA_ACCESS,
        handlers.handle_data_access_log,
        exchange=Exchanges.AUDIT
    )
    return consumer


async def run(
    settings: Optional[Settings] = None,
    event_config: Optional[EventConfig] = None,
    stop_event: Optional[asyncio.Event] = None
) -> None:
    """Consume until stop_event is set (SIGINT/SIGTERM when run as a script)."""
    settings = settings or get_settings()
    event_config = event_config or get_event_config()
    stop_event = stop_event or asyncio.Event()

    engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    if settings.ENVIRONMENT != "production":
        await create_tables(engine)

    connection = BrokerConnection(
        event_config.RABBITMQ_URL,
        name=f"{settings.SERVICE_NAME}-consumer",
        reconnect_delay=event_config.RABBITMQ_RECONNECT_DELAY_SECONDS,
        max_reconnect_attempts=event_config.RABBITMQ_MAX_RECONNECT_ATTEMPTS
    )
    handlers = AuditEventHandlers(build_session_factory(engine))
    build_consumer(connection, handlers, settings.SERVICE_NAME, event_config)

    logger.info("Starting audit service", environment=settings.ENVIRONMENT)
    try:
        await connection.start()
        await stop_event.wait()
    finally:
        logger.info("Shutting down audit service")
        await connection.close()
        await engine.dispose()


def main() -> None:
    configure_logging(get_settings().DEBUG)

    async def _main() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
        await run(stop_event=stop_event)

    asyncio.run(_main())


if __name__ == "__main__":
    main()
