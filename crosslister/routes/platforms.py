import logging
from typing import Dict, List

from fastapi import APIRouter, Depends

from crosslister.core.enums import Platform
from crosslister.core.exceptions import BaseServiceError
from crosslister.dependencies import get_platform_registry
from crosslister.models.platform_config import PlatformConfig
from crosslister.routes.errors import http_error
from crosslister.schemas.platform import (
    ConnectRequest, PlatformConfigRead, PlatformConfigUpdate, PlatformCredentials, PlatformStats,
)
from crosslister.services.platform_registry import PlatformRegistry

router = APIRouter(prefix="/api/platforms", tags=["platforms"])

logger = logging.getLogger(__name__)


def to_read(config: PlatformConfig) -> PlatformConfigRead:
    """Config view for operators; credentials are reduced to non-secret identity fields."""
    credentials = PlatformCredentials.model_validate(config.credentials or {})
    return PlatformConfigRead(
        platform=config.platform,
        is_active=config.is_active,
        is_connected=config.is_connected,
        connection_status=PlatformRegistry.connection_status(config).value,
        settings=config.settings or {},
        default_settings=config.default_settings or {},
        fees=config.fees or {},
        rate_limits=config.rate_limits or {},
        total_listings=config.total_listings,
        active_listings=config.active_listings,
        total_sales=config.total_sales,
        total_revenue=config.total_revenue,
        last_listing_date=config.last_listing_date,
        last_sync_date=config.last_sync_date,
        last_error=config.last_error,
        error_count=config.error_count,
        connection_history=config.connection_history or [],
        username=credentials.username,
        token_expiry=credentials.token_expiry,
    )


@router.get("/configs", response_model=List[PlatformConfigRead])
async def list_configs(active_only: bool = False, registry: PlatformRegistry = Depends(get_platform_registry)):
    configs = await registry.get_active_configs() if active_only else await registry.list_configs()
    return [to_read(config) for config in configs]


@router.put("/configs/{platform}", response_model=PlatformConfigRead)
async def update_config(
    platform: Platform,
    changes: PlatformConfigUpdate,
    registry: PlatformRegistry = Depends(get_platform_registry),
):
    try:
        return to_read(await registry.update_config(platform, changes))
    except BaseServiceError as e:
        raise http_error(e)


@router.post("/configs/{platform}/connect", response_model=PlatformConfigRead)
async def connect(platform: Platform, request: ConnectRequest, registry: PlatformRegistry = Depends(get_platform_registry)):
    try:
        return to_read(await registry.connect(platform, request.credentials))
    except BaseServiceError as e:
        raise http_error(e)


@router.post("/configs/{platform}/disconnect", response_model=PlatformConfigRead)
async def disconnect(platform: Platform, registry: PlatformRegistry = Depends(get_platform_registry)):
    try:
        return to_read(await registry.disconnect(platform))
    except BaseServiceError as e:
        raise http_error(e)


@router.post("/configs/{platform}/reset-errors", response_model=PlatformConfigRead)
async def reset_errors(platform: Platform, registry: PlatformRegistry = Depends(get_platform_registry)):
    try:
        return to_read(await registry.reset_errors(platform))
    except BaseServiceError as e:
        raise http_error(e)


@router.get("/stats", response_model=Dict[str, PlatformStats])
async def platform_stats(registry: PlatformRegistry = Depends(get_platform_registry)):
    return await registry.get_platform_stats()
