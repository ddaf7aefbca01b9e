"""
POS Returns Engine - Test Configuration

Pytest fixtures and configuration.
"""

from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base, get_async_session
from app.dependencies import get_customer_directory, get_resolution_dispatcher
from app.services.product_return_service import ProductReturnService
from app.services.resolution_dispatcher import ResolutionDispatcher
from app.services.return_locks import TransitionLockRegistry, get_lock_registry
from main import app
from tests.fixtures.collaborators_mock import FakeCollaborators


# In-memory SQLite shared by every connection of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def collaborators() -> FakeCollaborators:
    return FakeCollaborators()


@pytest.fixture
def dispatcher(collaborators: FakeCollaborators) -> ResolutionDispatcher:
    return ResolutionDispatcher(
        inventory=collaborators.inventory,
        refunds=collaborators.refunds,
        supplier_returns=collaborators.supplier_returns,
        fulfillment=collaborators.fulfillment,
        timeout_seconds=0.5,
    )


@pytest.fixture
def lock_registry() -> TransitionLockRegistry:
    return TransitionLockRegistry()


@pytest.fixture
def service(
    db_session: AsyncSession,
    dispatcher: ResolutionDispatcher,
    collaborators: FakeCollaborators,
    lock_registry: TransitionLockRegistry,
) -> ProductReturnService:
    return ProductReturnService(
        db_session,
        dispatcher=dispatcher,
        customer_directory=collaborators.customers,
        locks=lock_registry,
    )


@pytest.fixture
def actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def actor_headers(actor_id: UUID) -> dict:
    return {"X-Actor-Id": str(actor_id)}


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    dispatcher: ResolutionDispatcher,
    collaborators: FakeCollaborators,
    lock_registry: TransitionLockRegistry,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database and collaborator overrides."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_resolution_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_customer_directory] = lambda: collaborators.customers
    app.dependency_overrides[get_lock_registry] = lambda: lock_registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
