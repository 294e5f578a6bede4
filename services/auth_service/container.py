"""
Dependency injection container for the auth service.
Owns the broker connection and wires repositories and services.
"""
import inspect
from typing import Any, Dict, Optional, Type, TypeVar, Union, get_args, get_origin

import structlog

from shared.events import AuditEmitter, BrokerConnection, EventConfig, EventPublisher, get_event_config
from shared.events.connection import Connector

from .core.config import Settings, settings as default_settings
from .repositories.refresh_token_repository import RefreshTokenRepository
from .repositories.user_repository import UserRepository
from .services.auth.authentication_service import AuthenticationService
from .services.auth.token_service import TokenService
from .services.auth.user_admin_service import UserAdminService

logger = structlog.get_logger()

T = TypeVar('T')


class Container:
    """Dependency injection container."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._singletons: Dict[str, Any] = {}
        self._initialized = False

    def register_singleton(self, interface: Type[T], implementation: Type[T]) -> None:
        """Register an implementation instantiated lazily, once."""
        key = interface.__name__
        self._singletons[key] = implementation
        logger.debug("Registered singleton", interface=key, implementation=implementation.__name__)

    def register_instance(self, interface: Type[T], instance: T) -> None:
        """Register a specific instance for an interface."""
        key = interface.__name__
        self._singletons[key] = instance
        logger.debug("Registered instance", interface=key, instance=type(instance).__name__)

    def get(self, interface: Type[T]) -> T:
        """
        Get service instance by type.

        Raises:
            ValueError: If service is not registered
        """
        key = interface.__name__
        if key not in self._singletons:
            raise ValueError(f"Service not registered: {key}")

        singleton = self._singletons[key]
        if not isinstance(singleton, type):
            return singleton

        instance = self._create_instance(singleton)
        self._singletons[key] = instance
        return instance

    def _create_instance(self, implementation_class: Type[T]) -> T:
        """Instantiate a class, resolving constructor parameters by annotation."""
        parameters = list(inspect.signature(implementation_class.__init__).parameters.values())[1:]

        dependencies = {}
        for param in parameters:
            annotation = param.annotation
            if get_origin(annotation) is Union:
                # Optional[X] resolves as X
                candidates = [arg for arg in get_args(annotation) if arg is not type(None)]
                annotation = candidates[0] if len(candidates) == 1 else annotation
            if isinstance(annotation, type) and annotation.__name__ in self._singletons:
                dependencies[param.name] = self.get(annotation)
            elif param.default is inspect.Parameter.empty:
                logger.error(
                    "Failed to resolve dependency",
                    class_name=implementation_class.__name__,
                    parameter=param.name
                )
                raise ValueError(f"Cannot resolve {implementation_class.__name__}.{param.name}")

        instance = implementation_class(**dependencies)
        logger.debug(
            "Created instance with dependencies",
            class_name=implementation_class.__name__,
            dependencies=list(dependencies.keys())
        )
        return instance

    async def initialize(
        self,
        event_config: Optional[EventConfig] = None,
        connector: Optional[Connector] = None
    ) -> None:
        """
        Register services and connect to the broker.

        A broker outage does not fail startup: the connection keeps retrying
        in the background and events are dropped until it succeeds.
        """
        if self._initialized:
            return

        event_config = event_config or get_event_config()
        connection = BrokerConnection(
            event_config.RABBITMQ_URL,
            name=f"{self.settings.SERVICE_NAME}-publisher",
            reconnect_delay=event_config.RABBITMQ_RECONNECT_DELAY_SECONDS,
            max_reconnect_attempts=event_config.RABBITMQ_MAX_RECONNECT_ATTEMPTS,
            connector=connector
        )
        publisher = EventPublisher(connection, service_name=self.settings.SERVICE_NAME)

        self.register_instance(Settings, self.settings)
        self.register_instance(BrokerConnection, connection)
        self.register_instance(EventPublisher, publisher)
        self.register_instance(AuditEmitter, AuditEmitter(publisher))

        self.register_singleton(UserRepository, UserRepository)
        self.register_singleton(RefreshTokenRepository, RefreshTokenRepository)
        self.register_singleton(TokenService, TokenService)
        self.register_singleton(AuthenticationService, AuthenticationService)
        self.register_singleton(UserAdminService, UserAdminService)

        await connection.start()
        self._initialized = True
        logger.info("Dependency injection container initialized successfully")

    async def cleanup(self) -> None:
        """Close the broker connection."""
        connection = self._singletons.get(BrokerConnection.__name__)
        if isinstance(connection, BrokerConnection):
            await connection.close()
        self._initialized = False
        logger.info("Container cleanup completed")


# Global container instance
_container: Optional[Container] = None


def get_container() -> Container:
    """Get the global container instance."""
    global _container
    if _container is None:
        _container = Container()
    return _container


def set_container(container: Optional[Container]) -> None:
    """Replace the global container (used by tests and alternate entrypoints)."""
    global _container
    _container = container


async def cleanup_container() -> None:
    """Cleanup the global container."""
    global _container
    if _container:
        await _container.cleanup()
        _container = None
