"""Shared pytest fixtures for service, storage, HTTP and gRPC tests."""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from shortener.config import Settings
from shortener.dependencies import ServiceManager
from shortener.main import create_app

TEST_JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        BASE_URL="http://test",
        FILE_STORAGE_PATH=str(tmp_path / "short-url-db.json"),
        JWT_SECRET=TEST_JWT_SECRET,
        TRUSTED_SUBNET="192.168.1.0/24",
        DELETE_BATCH_WINDOW_SECONDS=0.05,
        DELETE_SHUTDOWN_TIMEOUT_SECONDS=2.0,
        LOG_LEVEL="WARNING",
    )


@pytest_asyncio.fixture
async def manager(settings: Settings) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager(settings)
    await manager.initialize()
    yield manager
    await manager.cleanup()


@pytest.fixture
def app(settings: Settings, manager: ServiceManager) -> FastAPI:
    return create_app(settings, manager)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def other_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """A second browser: separate cookie jar, so a different user."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def wait_until() -> Callable[[Callable[[], Awaitable[bool]]], Awaitable[None]]:
    async def _wait(predicate: Callable[[], Awaitable[bool]], timeout: float = 3.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not await predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.02)

    return _wait
