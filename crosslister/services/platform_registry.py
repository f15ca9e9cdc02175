"""
Platform Registry

Single source of truth for whether a marketplace may be called and under
what constraints. Holds connection state, credentials, settings, fee
schedules and usage counters in ``platform_configs``.

Methods used by the sync engine (``is_ready``, ``record_usage``,
``record_error``) never commit; the engine owns the transaction. Operator
workflow methods (``connect``, ``disconnect``, ``update_config``,
``reset_errors``, ``ensure_defaults``) commit their own changes.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.core.enums import ConnectionStatus, ListingStatus, Platform
from crosslister.core.exceptions import (
    PlatformConfigNotFoundError, PlatformConfigurationError, PlatformUnavailableError,
)
from crosslister.core.utils import ensure_aware, utcnow
from crosslister.integrations.setup import AdapterRegistry, build_adapter
from crosslister.models.listing import Listing
from crosslister.models.platform_config import PlatformConfig
from crosslister.schemas.platform import (
    DefaultListingSettings, PlatformConfigUpdate, PlatformCredentials, PlatformStats,
    parse_platform_settings,
)

logger = logging.getLogger(__name__)


DEFAULT_PLATFORM_CONFIGS: Dict[Platform, Dict[str, Any]] = {
    Platform.EBAY: {
        "settings": {
            "site_id": 0,
            "listing_duration": "GTC",
            "payment_methods": ["PayPal"],
            "shipping_services": [{"ShippingService": "USPSPriority", "ShippingServiceCost": 0}],
            "return_policy": {
                "ReturnsAcceptedOption": "ReturnsAccepted",
                "RefundOption": "MoneyBack",
                "ReturnsWithinOption": "Days_30",
            },
        },
        "default_settings": {"default_shipping_cost": 7.99, "default_handling_time": 2},
        "fees": {
            "listing_fee": 0.35,
            "final_value_fee_percentage": 12.9,
            "payment_processing_fee_percentage": 2.9,
            "fixed_fee": 0.30,
        },
        "rate_limits": {"listings_per_day": 100, "listings_per_hour": 20, "api_calls_per_minute": 60},
    },
    Platform.FACEBOOK: {
        "settings": {"delivery_options": ["shipping", "local_pickup"]},
        "default_settings": {"default_shipping_cost": 0, "default_handling_time": 2},
        "fees": {
            "listing_fee": 0,
            "final_value_fee_percentage": 5,
            "payment_processing_fee_percentage": 0,
            "fixed_fee": 0,
        },
        "rate_limits": {"listings_per_day": 50, "listings_per_hour": 10, "api_calls_per_minute": 30},
    },
    Platform.DEPOP: {
        "settings": {"shipping_profiles": []},
        "default_settings": {"default_shipping_cost": 5.99, "default_handling_time": 2},
        "fees": {
            "listing_fee": 0,
            "final_value_fee_percentage": 10,
            "payment_processing_fee_percentage": 2.9,
            "fixed_fee": 0.30,
        },
        "rate_limits": {"listings_per_day": 100, "listings_per_hour": 20, "api_calls_per_minute": 60},
    },
    Platform.CRAIGSLIST: {
        "settings": {},
        "default_settings": {"auto_sync": False, "default_shipping_cost": 0, "default_handling_time": 0},
        "fees": {
            "listing_fee": 0,
            "final_value_fee_percentage": 0,
            "payment_processing_fee_percentage": 0,
            "fixed_fee": 0,
        },
        "rate_limits": {"listings_per_day": 10, "listings_per_hour": 2, "api_calls_per_minute": 1},
    },
}


class PlatformRegistry:
    """Service for reading and maintaining platform configuration."""

    def __init__(self, db: AsyncSession, adapters: Optional[AdapterRegistry] = None):
        self.db = db
        self.adapters = adapters if adapters is not None else AdapterRegistry()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    async def get_config(self, platform: Platform) -> Optional[PlatformConfig]:
        result = await self.db.execute(
            select(PlatformConfig).where(PlatformConfig.platform == Platform(platform).value)
        )
        return result.scalar_one_or_none()

    async def require_config(self, platform: Platform) -> PlatformConfig:
        config = await self.get_config(platform)
        if not config:
            raise PlatformConfigNotFoundError(
                f"No configuration for platform '{Platform(platform).value}'",
                details={"platform": Platform(platform).value},
            )
        return config

    async def list_configs(self) -> List[PlatformConfig]:
        result = await self.db.execute(select(PlatformConfig).order_by(PlatformConfig.platform))
        return list(result.scalars().all())

    async def get_active_configs(self) -> List[PlatformConfig]:
        result = await self.db.execute(
            select(PlatformConfig).where(PlatformConfig.is_active.is_(True)).order_by(PlatformConfig.platform)
        )
        return list(result.scalars().all())

    @staticmethod
    def connection_status(config: Optional[PlatformConfig]) -> ConnectionStatus:
        if config is None or not config.is_active:
            return ConnectionStatus.INACTIVE
        if not config.is_connected:
            return ConnectionStatus.DISCONNECTED
        credentials = PlatformCredentials.model_validate(config.credentials or {})
        expiry = ensure_aware(credentials.token_expiry)
        if expiry is not None and expiry <= utcnow():
            return ConnectionStatus.EXPIRED
        return ConnectionStatus.CONNECTED

    async def is_ready(self, platform: Platform) -> bool:
        """isActive and isConnected and credentials not expired"""
        config = await self.get_config(platform)
        return self.connection_status(config) == ConnectionStatus.CONNECTED

    async def check_ready(self, platform: Platform) -> PlatformConfig:
        """Return the config of a ready platform or raise PlatformUnavailableError."""
        platform = Platform(platform)
        config = await self.get_config(platform)
        status = self.connection_status(config)
        if status != ConnectionStatus.CONNECTED:
            raise PlatformUnavailableError(
                f"{platform.display_name} is not available ({status.value})",
                platform=platform.value,
                details={"connection_status": status.value},
            )
        return config

    def default_listing_settings(self, config: PlatformConfig) -> DefaultListingSettings:
        return DefaultListingSettings.model_validate(config.default_settings or {})

    # ------------------------------------------------------------------
    # Engine-owned counters
    # ------------------------------------------------------------------
    async def record_usage(
        self,
        platform: Platform,
        *,
        listings: int = 0,
        active: int = 0,
        sales: int = 0,
        revenue: float = 0.0,
        listed_at: Optional[datetime] = None,
        synced_at: Optional[datetime] = None,
    ) -> None:
        """
        Atomically adjust usage counters.

        Runs as a single UPDATE ... SET x = x + n inside the caller's
        transaction, so it is applied exactly once together with the listing
        change it accounts for.
        """
        values: Dict[str, Any] = {}
        if listings:
            values["total_listings"] = PlatformConfig.total_listings + listings
        if active:
            values["active_listings"] = PlatformConfig.active_listings + active
        if sales:
            values["total_sales"] = PlatformConfig.total_sales + sales
        if revenue:
            values["total_revenue"] = PlatformConfig.total_revenue + revenue
        if listed_at:
            values["last_listing_date"] = listed_at
        if synced_at:
            values["last_sync_date"] = synced_at
        if not values:
            return

        await self.db.execute(
            update(PlatformConfig)
            .where(PlatformConfig.platform == Platform(platform).value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        # Floor the active counter; it can drift when listings predate the counters
        if active < 0:
            await self.db.execute(
                update(PlatformConfig)
                .where(PlatformConfig.platform == Platform(platform).value, PlatformConfig.active_listings < 0)
                .values(active_listings=0)
                .execution_options(synchronize_session=False)
            )

    async def record_error(self, platform: Platform, error: Dict[str, Any]) -> None:
        """Store the last error and bump the error count. Never raises."""
        try:
            async with self.db.begin_nested():
                await self.db.execute(
                    update(PlatformConfig)
                    .where(PlatformConfig.platform == Platform(platform).value)
                    .values(
                        last_error={"timestamp": utcnow().isoformat(), **error},
                        error_count=PlatformConfig.error_count + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to record error for platform {platform}: {e}")

    # ------------------------------------------------------------------
    # Operator workflow
    # ------------------------------------------------------------------
    async def connect(self, platform: Platform, credentials: PlatformCredentials) -> PlatformConfig:
        """
        Merge credentials and validate them by building the adapter.

        On success the adapter is registered and the config marked connected.
        On failure a ``failed`` history entry is recorded and
        PlatformConfigurationError is raised.
        """
        platform = Platform(platform)
        config = await self.require_config(platform)

        merged = dict(config.credentials or {})
        merged.update(credentials.model_dump(mode="json", exclude_none=True))
        config.credentials = merged

        try:
            adapter = build_adapter(config)
        except PlatformConfigurationError as e:
            config.is_connected = False
            config.add_history("connect", "failed", e.message)
            await self.db.commit()
            logger.warning(f"Connecting {platform.display_name} failed: {e.message}")
            raise

        config.is_connected = True
        config.add_history("connect", "connected", "Credentials updated")
        await self.db.commit()
        await self.db.refresh(config)
        self.adapters.register(platform, adapter)
        logger.info(f"{platform.display_name} connected")
        return config

    async def disconnect(self, platform: Platform) -> PlatformConfig:
        platform = Platform(platform)
        config = await self.require_config(platform)
        config.is_connected = False
        config.add_history("disconnect", "disconnected", "Platform disconnected")
        await self.db.commit()
        await self.db.refresh(config)

        adapter = self.adapters.unregister(platform)
        if adapter:
            await adapter.aclose()
        logger.info(f"{platform.display_name} disconnected")
        return config

    async def update_config(self, platform: Platform, changes: PlatformConfigUpdate) -> PlatformConfig:
        platform = Platform(platform)
        config = await self.require_config(platform)

        if changes.settings is not None:
            try:
                parsed = parse_platform_settings(platform, {**(config.settings or {}), **changes.settings})
            except ValueError as e:
                raise PlatformConfigurationError(
                    f"Invalid {platform.display_name} settings: {e}", platform=platform.value
                )
            config.settings = parsed.model_dump(mode="json", exclude={"platform"})
        if changes.default_settings is not None:
            config.default_settings = changes.default_settings.model_dump()
        if changes.fees is not None:
            config.fees = changes.fees.model_dump()
        if changes.rate_limits is not None:
            config.rate_limits = changes.rate_limits.model_dump()
        if changes.is_active is not None:
            config.is_active = changes.is_active
        if changes.notes is not None:
            config.notes = changes.notes

        await self.db.commit()
        await self.db.refresh(config)

        # Rebuild a live adapter so it picks up the new settings
        if config.is_connected:
            try:
                self.adapters.register(platform, build_adapter(config))
            except PlatformConfigurationError as e:
                self.adapters.unregister(platform)
                logger.error(f"Failed to initialize/register {platform.display_name} adapter: {e.message}")
        return config

    async def reset_errors(self, platform: Platform) -> PlatformConfig:
        config = await self.require_config(platform)
        config.error_count = 0
        config.last_error = None
        await self.db.commit()
        await self.db.refresh(config)
        return config

    async def ensure_defaults(self) -> List[Platform]:
        """Create missing platform rows (inactive, disconnected) with default fees and limits."""
        created = []
        for platform, defaults in DEFAULT_PLATFORM_CONFIGS.items():
            if await self.get_config(platform):
                continue
            config = PlatformConfig(
                platform=platform.value,
                is_active=False,
                is_connected=False,
                credentials={},
                settings=parse_platform_settings(platform, defaults["settings"]).model_dump(
                    mode="json", exclude={"platform"}
                ),
                default_settings=DefaultListingSettings(**defaults["default_settings"]).model_dump(),
                fees=dict(defaults["fees"]),
                rate_limits=dict(defaults["rate_limits"]),
                connection_history=[],
            )
            self.db.add(config)
            created.append(platform)
        if created:
            await self.db.commit()
            logger.info(f"Created platform configs: {', '.join(p.value for p in created)}")
        return created

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    async def get_platform_stats(self) -> Dict[str, PlatformStats]:
        stats: Dict[str, PlatformStats] = {}
        for config in await self.list_configs():
            # Fees are summed from the sold listings themselves, never estimated
            result = await self.db.execute(
                select(Listing).where(
                    Listing.platform == config.platform,
                    Listing.status == ListingStatus.SOLD.value,
                )
            )
            sold = result.scalars().all()
            total_fees = round(sum(listing.fee_total for listing in sold), 2)
            revenue = round(sum(listing.sale_price or 0.0 for listing in sold), 2)

            stats[config.platform] = PlatformStats(
                is_connected=config.is_connected,
                active_listings=config.active_listings,
                total_sales=config.total_sales,
                total_revenue=config.total_revenue,
                total_fees=total_fees,
                net_profit=round(revenue - total_fees, 2),
                last_sync=config.last_sync_date,
                error_count=config.error_count,
            )
        return stats
