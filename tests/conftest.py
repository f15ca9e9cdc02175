# tests/conftest.py
import os

# Settings are read at import time by crosslister.database
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crosslister import models  # noqa: F401
from crosslister.core.config import Settings, get_settings
from crosslister.core.enums import Platform, ProductStatus
from crosslister.database import Base
from crosslister.dependencies import get_db
from crosslister.integrations.base import AdapterCapabilities
from crosslister.integrations.setup import AdapterRegistry
from crosslister.main import app
from crosslister.models.platform_config import PlatformConfig
from crosslister.models.product import Product
from crosslister.services.catalog import DatabaseCatalog
from crosslister.services.locks import ProductLockManager
from crosslister.services.notification_service import NotificationService
from crosslister.services.platform_registry import PlatformRegistry
from crosslister.services.reconciliation_service import ReconciliationService
from crosslister.services.sync_engine import SyncEngine
from crosslister.services.sync_ledger import SyncLedger
from tests.mocks.mock_platform import MockPlatform


@pytest.fixture
def settings():
    """Provide test settings (no SMTP, short adapter timeout)"""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        SMTP_HOST="",
        NOTIFICATION_EMAILS=[],
        ADAPTER_TIMEOUT_SECONDS=0.5,
        NOTIFICATION_TTL_DAYS=30,
    )


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mock_platforms():
    return {
        Platform.EBAY: MockPlatform(Platform.EBAY),
        Platform.FACEBOOK: MockPlatform(Platform.FACEBOOK),
        Platform.DEPOP: MockPlatform(Platform.DEPOP),
        Platform.CRAIGSLIST: MockPlatform(
            Platform.CRAIGSLIST, AdapterCapabilities(create=True, update=False, end=False, get=True)
        ),
    }


@pytest.fixture
def adapter_registry(mock_platforms):
    return AdapterRegistry(mock_platforms)


def make_config(platform: Platform, *, active=True, connected=True, **overrides) -> PlatformConfig:
    values = dict(
        platform=platform.value,
        is_active=active,
        is_connected=connected,
        credentials={"access_token": "test-token"},
        settings={},
        default_settings={},
        fees={},
        rate_limits={},
        connection_history=[],
    )
    values.update(overrides)
    return PlatformConfig(**values)


@pytest.fixture
async def platform_configs(db_session):
    """Every platform active and connected"""
    configs = {platform: make_config(platform) for platform in Platform}
    db_session.add_all(configs.values())
    await db_session.commit()
    return configs


async def create_product(db, **overrides) -> Product:
    values = dict(
        sku="GTR-001",
        title="Fender Stratocaster",
        description="Sunburst, 1998",
        brand="Fender",
        model="Stratocaster",
        category="electronics",
        condition="good",
        price=20.0,
        quantity=1,
        images=["https://img.example/1.jpg"],
        status=ProductStatus.ACTIVE.value,
    )
    values.update(overrides)
    product = Product(**values)
    db.add(product)
    await db.commit()
    return product


@pytest.fixture
async def product(db_session):
    return await create_product(db_session)


@pytest.fixture
def locks():
    return ProductLockManager()


@pytest.fixture
def engine_for(adapter_registry, settings, locks):
    """Build a SyncEngine on a given session; engines built here share adapters and locks."""
    def build(session) -> SyncEngine:
        return SyncEngine(
            session,
            catalog=DatabaseCatalog(session),
            registry=PlatformRegistry(session, adapter_registry),
            adapters=adapter_registry,
            ledger=SyncLedger(session),
            notifications=NotificationService(session, settings=settings),
            locks=locks,
            adapter_timeout=settings.ADAPTER_TIMEOUT_SECONDS,
        )
    return build


@pytest.fixture
def sync_engine(engine_for, db_session):
    return engine_for(db_session)


@pytest.fixture
def reconciliation_service(db_session, adapter_registry, settings):
    return ReconciliationService(
        db_session,
        registry=PlatformRegistry(db_session, adapter_registry),
        adapters=adapter_registry,
        ledger=SyncLedger(db_session),
        notifications=NotificationService(db_session, settings=settings),
        adapter_timeout=settings.ADAPTER_TIMEOUT_SECONDS,
    )


@pytest.fixture
async def test_client(session_factory, adapter_registry, settings):
    """ASGI client with the database, settings and adapters overridden"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.adapters = adapter_registry
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
