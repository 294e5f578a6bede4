"""
Fixtures running the auth service application against in-memory stores.
"""
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from services.auth_service.container import Container, set_container
from services.auth_service.core.database import get_db
from services.auth_service.main import app


@pytest_asyncio.fixture
async def container(broker, event_config) -> AsyncGenerator[Container, None]:
    container = Container()
    await container.initialize(event_config=event_config, connector=broker.connect)
    set_container(container)
    yield container
    await container.cleanup()
    set_container(None)


@pytest_asyncio.fixture
async def api_client(container, auth_session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the auth API; the lifespan is bypassed so the test container is used."""

    async def override_get_db():
        async with auth_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
