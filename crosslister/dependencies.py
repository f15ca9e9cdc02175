from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.core.config import Settings, get_settings
from crosslister.database import async_session
from crosslister.integrations.setup import AdapterRegistry
from crosslister.services.catalog import DatabaseCatalog
from crosslister.services.email_service import EmailService
from crosslister.services.locks import product_locks
from crosslister.services.notification_service import NotificationService
from crosslister.services.platform_registry import PlatformRegistry
from crosslister.services.reconciliation_service import ReconciliationService
from crosslister.services.sync_engine import SyncEngine
from crosslister.services.sync_ledger import SyncLedger


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_adapter_registry(request: Request) -> AdapterRegistry:
    return request.app.state.adapters


def get_platform_registry(
    db: AsyncSession = Depends(get_db),
    adapters: AdapterRegistry = Depends(get_adapter_registry),
) -> PlatformRegistry:
    return PlatformRegistry(db, adapters)


def get_notification_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> NotificationService:
    return NotificationService(db, settings=settings, email_service=EmailService(settings))


def get_sync_engine(
    db: AsyncSession = Depends(get_db),
    adapters: AdapterRegistry = Depends(get_adapter_registry),
    settings: Settings = Depends(get_settings),
) -> SyncEngine:
    return SyncEngine(
        db,
        catalog=DatabaseCatalog(db),
        registry=PlatformRegistry(db, adapters),
        adapters=adapters,
        ledger=SyncLedger(db),
        notifications=NotificationService(db, settings=settings, email_service=EmailService(settings)),
        locks=product_locks,
        adapter_timeout=settings.ADAPTER_TIMEOUT_SECONDS,
    )


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    adapters: AdapterRegistry = Depends(get_adapter_registry),
    settings: Settings = Depends(get_settings),
) -> ReconciliationService:
    return ReconciliationService(
        db,
        registry=PlatformRegistry(db, adapters),
        adapters=adapters,
        ledger=SyncLedger(db),
        notifications=NotificationService(db, settings=settings),
        adapter_timeout=settings.ADAPTER_TIMEOUT_SECONDS,
    )
