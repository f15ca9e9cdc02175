# tests/unit/services/test_platform_registry.py
from datetime import timedelta

import pytest

from crosslister.core.enums import ConnectionStatus, Platform
from crosslister.core.exceptions import (
    PlatformConfigNotFoundError, PlatformConfigurationError, PlatformUnavailableError,
)
from crosslister.core.utils import utcnow
from crosslister.integrations.platforms.ebay import EbayAdapter
from crosslister.integrations.setup import AdapterRegistry
from crosslister.models.listing import Listing
from crosslister.schemas.platform import DefaultListingSettings, PlatformConfigUpdate, PlatformCredentials
from crosslister.services.platform_registry import DEFAULT_PLATFORM_CONFIGS, PlatformRegistry
from tests.conftest import make_config


@pytest.mark.parametrize("kwargs, expected", [
    ({}, ConnectionStatus.CONNECTED),
    ({"active": False}, ConnectionStatus.INACTIVE),
    ({"connected": False}, ConnectionStatus.DISCONNECTED),
    ({"credentials": {"access_token": "t", "token_expiry": "2000-01-01T00:00:00+00:00"}}, ConnectionStatus.EXPIRED),
])
def test_connection_status(kwargs, expected):
    assert PlatformRegistry.connection_status(make_config(Platform.EBAY, **kwargs)) == expected


def test_missing_config_is_inactive():
    assert PlatformRegistry.connection_status(None) == ConnectionStatus.INACTIVE


@pytest.mark.asyncio
async def test_check_ready(db_session):
    db_session.add(make_config(Platform.EBAY))
    db_session.add(make_config(Platform.CRAIGSLIST, connected=False))
    await db_session.commit()
    registry = PlatformRegistry(db_session)

    assert await registry.is_ready(Platform.EBAY)
    assert not await registry.is_ready(Platform.CRAIGSLIST)
    assert not await registry.is_ready(Platform.DEPOP)

    with pytest.raises(PlatformUnavailableError) as exc_info:
        await registry.check_ready(Platform.CRAIGSLIST)
    assert exc_info.value.details["connection_status"] == "disconnected"


@pytest.mark.asyncio
async def test_get_active_configs_filters_inactive(db_session):
    db_session.add_all([
        make_config(Platform.EBAY),
        make_config(Platform.DEPOP, connected=False),
        make_config(Platform.FACEBOOK, active=False),
    ])
    await db_session.commit()

    configs = await PlatformRegistry(db_session).get_active_configs()

    # Disconnected but active still counts; readiness is a separate check
    assert [c.platform for c in configs] == ["depop", "ebay"]


@pytest.mark.asyncio
async def test_record_usage_is_atomic_increment(db_session):
    config = make_config(Platform.EBAY)
    db_session.add(config)
    await db_session.commit()
    registry = PlatformRegistry(db_session)

    listed_at = utcnow()
    await registry.record_usage(Platform.EBAY, listings=1, active=1, listed_at=listed_at)
    await registry.record_usage(Platform.EBAY, listings=1, active=1)
    await registry.record_usage(Platform.EBAY, sales=1, revenue=18.0, active=-1)
    await db_session.commit()
    await db_session.refresh(config)

    assert config.total_listings == 2
    assert config.active_listings == 1
    assert config.total_sales == 1
    assert config.total_revenue == 18.0
    assert config.last_listing_date is not None


@pytest.mark.asyncio
async def test_active_counter_never_negative(db_session):
    config = make_config(Platform.DEPOP)
    db_session.add(config)
    await db_session.commit()
    registry = PlatformRegistry(db_session)

    await registry.record_usage(Platform.DEPOP, active=-1)
    await db_session.commit()
    await db_session.refresh(config)
    assert config.active_listings == 0


@pytest.mark.asyncio
async def test_record_error(db_session):
    config = make_config(Platform.EBAY)
    db_session.add(config)
    await db_session.commit()
    registry = PlatformRegistry(db_session)

    await registry.record_error(Platform.EBAY, {"operation": "create", "code": "AUTH", "message": "token revoked"})
    await registry.record_error(Platform.EBAY, {"operation": "update", "code": "TIMEOUT", "message": "slow"})
    await db_session.commit()
    await db_session.refresh(config)

    assert config.error_count == 2
    assert config.last_error["code"] == "TIMEOUT"
    assert "timestamp" in config.last_error

    config = await registry.reset_errors(Platform.EBAY)
    assert config.error_count == 0
    assert config.last_error is None


@pytest.mark.asyncio
async def test_default_listing_settings(db_session):
    config = make_config(Platform.EBAY, default_settings={"price_markup": 10})
    settings = PlatformRegistry(db_session).default_listing_settings(config)
    assert settings == DefaultListingSettings(price_markup=10)


@pytest.mark.asyncio
async def test_ensure_defaults_creates_inactive_configs(db_session):
    registry = PlatformRegistry(db_session)
    created = await registry.ensure_defaults()
    assert set(created) == set(DEFAULT_PLATFORM_CONFIGS)

    ebay = await registry.require_config(Platform.EBAY)
    assert ebay.is_active is False
    assert ebay.is_connected is False
    assert ebay.fees["listing_fee"] == 0.35
    assert ebay.settings["listing_duration"] == "GTC"

    assert await registry.ensure_defaults() == []


@pytest.mark.asyncio
async def test_connect_registers_adapter(db_session, settings, mocker):
    mocker.patch("crosslister.integrations.setup.get_settings", return_value=settings)
    db_session.add(make_config(Platform.EBAY, connected=False, credentials={}))
    await db_session.commit()
    adapters = AdapterRegistry()
    registry = PlatformRegistry(db_session, adapters)

    config = await registry.connect(Platform.EBAY, PlatformCredentials(access_token="fresh", username="shop"))

    assert config.is_connected
    assert config.credentials["access_token"] == "fresh"
    assert config.connection_history[-1]["status"] == "connected"
    assert isinstance(adapters.get(Platform.EBAY), EbayAdapter)


@pytest.mark.asyncio
async def test_connect_with_bad_credentials_records_failure(db_session, settings, mocker):
    mocker.patch("crosslister.integrations.setup.get_settings", return_value=settings)
    db_session.add(make_config(Platform.FACEBOOK, connected=False, credentials={}))
    await db_session.commit()
    registry = PlatformRegistry(db_session, AdapterRegistry())

    # Facebook also needs a page_id in its settings
    with pytest.raises(PlatformConfigurationError):
        await registry.connect(Platform.FACEBOOK, PlatformCredentials(access_token="fresh"))

    config = await registry.require_config(Platform.FACEBOOK)
    assert config.is_connected is False
    assert config.connection_history[-1]["status"] == "failed"


@pytest.mark.asyncio
async def test_disconnect_closes_adapter(db_session, mock_platforms):
    db_session.add(make_config(Platform.DEPOP))
    await db_session.commit()
    adapters = AdapterRegistry(mock_platforms)
    registry = PlatformRegistry(db_session, adapters)

    config = await registry.disconnect(Platform.DEPOP)

    assert config.is_connected is False
    assert Platform.DEPOP not in adapters
    assert mock_platforms[Platform.DEPOP].closed


@pytest.mark.asyncio
async def test_update_config_validates_settings(db_session):
    db_session.add(make_config(Platform.EBAY, connected=False))
    await db_session.commit()
    registry = PlatformRegistry(db_session)

    config = await registry.update_config(
        Platform.EBAY, PlatformConfigUpdate(settings={"site_id": 3}, is_active=False)
    )
    assert config.settings["site_id"] == 3
    assert config.is_active is False

    with pytest.raises(PlatformConfigurationError):
        await registry.update_config(Platform.EBAY, PlatformConfigUpdate(settings={"site_id": "x"}))


@pytest.mark.asyncio
async def test_require_config_missing(db_session):
    with pytest.raises(PlatformConfigNotFoundError):
        await PlatformRegistry(db_session).require_config(Platform.EBAY)


@pytest.mark.asyncio
async def test_platform_stats_sum_recorded_fees(db_session, product):
    db_session.add(make_config(Platform.EBAY, total_sales=2, total_revenue=50.0))
    db_session.add_all([
        Listing(product_id=product.id, platform="ebay", platform_listing_id="e-1", status="sold",
                sale_price=30.0, platform_fees={"total": 4.2}, sync_status="synced"),
        Listing(product_id=product.id, platform="ebay", platform_listing_id="e-2", status="sold",
                sale_price=20.0, platform_fees={"total": 2.8}, sync_status="synced"),
    ])
    await db_session.commit()

    stats = await PlatformRegistry(db_session).get_platform_stats()

    assert stats["ebay"].total_fees == 7.0
    assert stats["ebay"].net_profit == 43.0
    assert stats["ebay"].total_sales == 2
    assert stats["ebay"].is_connected
