import pytest
from typing import AsyncGenerator

from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from jwks_server.core.config import Settings
from jwks_server.core.keys import KeyManager
from jwks_server.main import create_app

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        ACTIVE_KEY_TTL_SECONDS=60,
        EXPIRED_KEY_OFFSET_SECONDS=-60,
        KEY_SWEEP_INTERVAL_MS=2000,
        LOG_LEVEL="WARNING",
    )

@pytest.fixture
async def key_manager() -> AsyncGenerator[KeyManager, None]:
    """A manager that has not been started. Tests start it when they need to."""
    km = KeyManager(active_ttl_seconds=60, expired_offset_seconds=-60)
    yield km
    await km.stop()

@pytest.fixture
async def fastapi_app(test_settings) -> AsyncGenerator[FastAPI, None]:
    # ASGITransport does not run lifespan events, drive them by hand
    app = create_app(test_settings)
    async with app.router.lifespan_context(app):
        yield app

@pytest.fixture
def app_key_manager(fastapi_app) -> KeyManager:
    return fastapi_app.state.key_manager

@pytest.fixture
async def client(fastapi_app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=fastapi_app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

