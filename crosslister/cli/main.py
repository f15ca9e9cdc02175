# crosslister/cli/main.py
import asyncio
import logging
import os

import click

from crosslister.core.config import get_settings
from crosslister.core.enums import Platform, SyncTrigger
from crosslister.core.logging_config import configure_logging

logger = logging.getLogger(__name__)


@click.group()
@click.option('--log-level', default=None, help='Override LOG_LEVEL')
def cli(log_level):
    """Crosslister maintenance commands"""
    configure_logging(log_level or get_settings().LOG_LEVEL)


@cli.command("create-tables")
def create_tables():
    """Create all database tables directly using SQLAlchemy (development only; use alembic otherwise)"""
    from crosslister import models  # noqa: F401
    from crosslister.database import Base, engine

    async def _create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        click.echo("All tables created successfully!")

    asyncio.run(_create_tables())


@cli.command("init-platforms")
def init_platforms():
    """Create the default (inactive, disconnected) config row for every platform"""
    from crosslister.database import async_session
    from crosslister.services.platform_registry import PlatformRegistry

    async def _init():
        async with async_session() as db:
            created = await PlatformRegistry(db).ensure_defaults()
        if created:
            click.echo(f"Created platform configs: {', '.join(p.value for p in created)}")
        else:
            click.echo("All platform configs already exist")

    asyncio.run(_init())


@cli.command("reconcile")
@click.option('--platform', 'platforms', multiple=True, type=click.Choice([p.value for p in Platform]),
              help='Limit to these platforms (repeatable)')
def reconcile(platforms):
    """Read active listings back from the marketplaces and flag third-party changes"""
    from crosslister.database import async_session
    from crosslister.integrations.setup import setup_adapter_registry
    from crosslister.services.notification_service import NotificationService
    from crosslister.services.platform_registry import PlatformRegistry
    from crosslister.services.reconciliation_service import ReconciliationService
    from crosslister.services.sync_ledger import SyncLedger

    settings = get_settings()

    async def _reconcile():
        async with async_session() as db:
            adapters = await setup_adapter_registry(db, settings)
            try:
                service = ReconciliationService(
                    db,
                    registry=PlatformRegistry(db, adapters),
                    adapters=adapters,
                    ledger=SyncLedger(db),
                    notifications=NotificationService(db, settings=settings),
                    adapter_timeout=settings.ADAPTER_TIMEOUT_SECONDS,
                )
                return await service.reconcile(
                    [Platform(p) for p in platforms] or None, triggered_by=SyncTrigger.USER
                )
            finally:
                await adapters.aclose()

    report = asyncio.run(_reconcile())
    for key, value in report.summary().items():
        click.echo(f"{key:>22}: {value}")


@cli.command("purge-notifications")
def purge_notifications():
    """Delete notifications past their expiry date"""
    from crosslister.database import async_session
    from crosslister.services.notification_service import NotificationService

    async def _purge():
        async with async_session() as db:
            return await NotificationService(db).purge_expired()

    deleted = asyncio.run(_purge())
    click.echo(f"Deleted {deleted} expired notifications")


@cli.command("serve")
@click.option('--host', default="0.0.0.0")
@click.option('--port', default=None, type=int, help='Defaults to $PORT, then 8000')
def serve(host, port):
    """Start the API server"""
    import uvicorn

    port = port or int(os.environ.get("PORT", 8000))
    click.echo(f"Starting application on port {port}")
    uvicorn.run("crosslister.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    cli()
