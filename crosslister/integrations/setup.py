"""
Adapter wiring.

``ADAPTER_CLASSES`` is the closed map from ``Platform`` to adapter class.
``AdapterRegistry`` holds the constructed adapter instances, one per
connected platform; it is built at application startup from the stored
platform configs and kept on ``app.state.adapters``.
"""
import logging
from typing import Dict, Iterable, List, Optional, Type

import httpx
from sqlalchemy import select

from crosslister.core.config import Settings, get_settings
from crosslister.core.enums import Platform
from crosslister.core.exceptions import PlatformConfigurationError
from crosslister.integrations.base import PlatformAdapter
from crosslister.integrations.platforms.craigslist import CraigslistAdapter
from crosslister.integrations.platforms.depop import DepopAdapter
from crosslister.integrations.platforms.ebay import EbayAdapter
from crosslister.integrations.platforms.facebook import FacebookAdapter
from crosslister.integrations.platforms.http import HttpPlatformAdapter
from crosslister.models.platform_config import PlatformConfig
from crosslister.schemas.platform import PlatformCredentials, parse_platform_settings
from crosslister.services.email_service import EmailService

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: Dict[Platform, Type[PlatformAdapter]] = {
    Platform.EBAY: EbayAdapter,
    Platform.FACEBOOK: FacebookAdapter,
    Platform.DEPOP: DepopAdapter,
    Platform.CRAIGSLIST: CraigslistAdapter,
}


def build_adapter(
    config: PlatformConfig,
    app_settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    email_service: Optional[EmailService] = None,
) -> PlatformAdapter:
    """
    Construct the adapter for ``config``.

    Raises PlatformConfigurationError when the stored settings or credentials
    cannot produce a working adapter.
    """
    app_settings = app_settings or get_settings()
    platform = Platform(config.platform)
    adapter_class = ADAPTER_CLASSES[platform]

    try:
        settings = parse_platform_settings(platform, config.settings)
        credentials = PlatformCredentials.model_validate(config.credentials or {})
    except ValueError as e:
        # pydantic's ValidationError is a ValueError
        raise PlatformConfigurationError(
            f"Invalid {platform.display_name} configuration: {e}",
            platform=platform.value,
        )

    if issubclass(adapter_class, HttpPlatformAdapter):
        return adapter_class(credentials, settings, app_settings, transport=transport)
    return adapter_class(credentials, settings, app_settings, email_service=email_service)


class AdapterRegistry:
    """Constructed adapters keyed by platform."""

    def __init__(self, adapters: Optional[Dict[Platform, PlatformAdapter]] = None):
        self._adapters: Dict[Platform, PlatformAdapter] = dict(adapters or {})

    def register(self, platform: Platform, adapter: PlatformAdapter) -> None:
        self._adapters[Platform(platform)] = adapter

    def unregister(self, platform: Platform) -> Optional[PlatformAdapter]:
        return self._adapters.pop(Platform(platform), None)

    def get(self, platform: Platform) -> Optional[PlatformAdapter]:
        return self._adapters.get(Platform(platform))

    def platforms(self) -> List[Platform]:
        return list(self._adapters)

    def __contains__(self, platform) -> bool:
        return Platform(platform) in self._adapters

    def load(self, configs: Iterable[PlatformConfig], app_settings: Optional[Settings] = None, **kwargs) -> None:
        """Build an adapter for every connected config; misconfigured platforms are skipped."""
        for config in configs:
            if not config.is_connected:
                continue
            platform = Platform(config.platform)
            try:
                self.register(platform, build_adapter(config, app_settings, **kwargs))
                logger.info(f"Registered {platform.display_name} adapter")
            except PlatformConfigurationError as e:
                logger.error(f"Failed to initialize/register {platform.display_name} adapter: {e.message}")

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
        self._adapters.clear()


async def setup_adapter_registry(db, app_settings: Optional[Settings] = None) -> AdapterRegistry:
    """
    Build adapters for every connected platform, called once at startup
    (and by CLI commands that talk to marketplaces).
    """
    result = await db.execute(select(PlatformConfig).where(PlatformConfig.is_connected.is_(True)))
    registry = AdapterRegistry()
    registry.load(result.scalars().all(), app_settings)
    logger.info(f"Adapters loaded for: {', '.join(p.value for p in registry.platforms()) or 'none'}")
    return registry
