# tests/integration/test_sync_engine.py
import asyncio

import pytest
from sqlalchemy import func, select

from crosslister.core.enums import ListingStatus, NotificationType, Platform, ProductStatus
from crosslister.core.exceptions import (
    AdapterError, DuplicateListingError, ListingNotFoundError, ListingStateError, ProductNotFoundError,
    UnsupportedOperationError, ValidationError,
)
from crosslister.integrations.platforms.craigslist import CraigslistAdapter
from crosslister.models.listing import Listing
from crosslister.models.notification import Notification
from crosslister.schemas.listing import CreateListingResult, ProductSnapshot, SaleData
from crosslister.schemas.platform import CraigslistSettings, PlatformCredentials
from crosslister.services.email_service import EmailService
from crosslister.services.sync_ledger import SyncLedger
from tests.conftest import create_product, make_config

pytestmark = pytest.mark.usefixtures("platform_configs")


async def sync_errors(db):
    result = await db.execute(select(Notification).where(Notification.type == NotificationType.SYNC_ERROR.value))
    return list(result.scalars().all())


"""
1. Create
"""


@pytest.mark.asyncio
async def test_create_listing(sync_engine, db_session, product, platform_configs, mock_platforms):
    result = await sync_engine.create_listing(product.id, Platform.EBAY)

    listing = result.listing
    assert listing.platform == Platform.EBAY
    assert listing.platform_listing_id == "ebay-1"
    assert listing.status == ListingStatus.ACTIVE
    assert listing.price == 20.0
    assert listing.sync_status == "synced"
    assert listing.platform_fees["total"] == 0.35
    assert result.platform_response == {"id": "ebay-1"}

    payload = mock_platforms[Platform.EBAY].create_calls[0]
    assert payload.title == "Fender Stratocaster"
    assert payload.handling_time == 2

    config = platform_configs[Platform.EBAY]
    await db_session.refresh(config)
    assert config.total_listings == 1
    assert config.active_listings == 1
    assert config.last_listing_date is not None

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert log.status == "success"
    assert log.operation == "create"
    assert log.platforms[0]["platform_listing_id"] == "ebay-1"


@pytest.mark.asyncio
async def test_create_activates_draft_product(sync_engine, db_session):
    product = await create_product(db_session, sku="DRAFT-1", status=ProductStatus.DRAFT.value)
    await sync_engine.create_listing(product.id, Platform.DEPOP)

    snapshot = await sync_engine.catalog.get_product(product.id)
    assert snapshot.status == "active"


@pytest.mark.asyncio
async def test_prepare_listing_data_applies_defaults(sync_engine):
    config = make_config(Platform.EBAY, default_settings={
        "price_markup": 10, "max_price": 21, "default_shipping_cost": 7.99, "default_handling_time": 3,
    })
    product = ProductSnapshot(id=1, title="Amp", price=20.0, quantity=2, condition="fair")

    payload = sync_engine.prepare_listing_data(product, config, {"title": "Custom amp", "color": "red"})

    assert payload.price == 21.0
    assert payload.title == "Custom amp"
    assert payload.shipping_cost == 7.99
    assert payload.handling_time == 3
    assert payload.quantity == 2
    assert payload.extra == {"color": "red"}


@pytest.mark.asyncio
async def test_prepare_listing_data_min_price_and_custom_price(sync_engine):
    config = make_config(Platform.DEPOP, default_settings={"price_markup": -50, "min_price": 15})
    product = ProductSnapshot(id=1, title="Amp", price=20.0, quantity=1)

    assert sync_engine.prepare_listing_data(product, config).price == 15.0
    # Custom data wins over computed values
    assert sync_engine.prepare_listing_data(product, config, {"price": 12.5}).price == 12.5

    with pytest.raises(ValidationError):
        sync_engine.prepare_listing_data(product, config, {"price": "lots"})


@pytest.mark.asyncio
async def test_create_missing_product(sync_engine, db_session, mock_platforms):
    with pytest.raises(ProductNotFoundError):
        await sync_engine.create_listing(9999, Platform.EBAY)

    assert mock_platforms[Platform.EBAY].create_calls == []
    logs = await SyncLedger(db_session).list_logs(entity_type="product", entity_id=9999)
    assert logs[0].status == "failed"
    assert logs[0].platforms[0]["status"] == "failed"


@pytest.mark.asyncio
async def test_create_sold_out_product_is_rejected(sync_engine, db_session, mock_platforms):
    product = await create_product(db_session, sku="EMPTY-1", quantity=0)

    with pytest.raises(ValidationError):
        await sync_engine.create_listing(product.id, Platform.EBAY)
    assert mock_platforms[Platform.EBAY].create_calls == []


@pytest.mark.asyncio
async def test_duplicate_rejected_before_remote_call(sync_engine, db_session, product, mock_platforms):
    await sync_engine.create_listing(product.id, Platform.EBAY)

    with pytest.raises(DuplicateListingError):
        await sync_engine.create_listing(product.id, Platform.EBAY)

    assert len(mock_platforms[Platform.EBAY].create_calls) == 1
    assert await sync_errors(db_session) == []


@pytest.mark.asyncio
async def test_concurrent_creates_yield_one_listing(engine_for, session_factory, product, mock_platforms):
    """Two concurrent creates for the same product/platform: exactly one wins"""
    mock_platforms[Platform.EBAY].delay = 0.05

    async with session_factory() as first, session_factory() as second:
        outcomes = await asyncio.gather(
            engine_for(first).create_listing(product.id, Platform.EBAY),
            engine_for(second).create_listing(product.id, Platform.EBAY),
            return_exceptions=True,
        )

    created = [o for o in outcomes if isinstance(o, CreateListingResult)]
    duplicates = [o for o in outcomes if isinstance(o, DuplicateListingError)]
    assert len(created) == 1
    assert len(duplicates) == 1

    async with session_factory() as check:
        count = await check.scalar(
            select(func.count(Listing.id)).where(
                Listing.product_id == product.id,
                Listing.platform == "ebay",
                Listing.status.in_(ListingStatus.open_statuses()),
            )
        )
    assert count == 1


@pytest.mark.asyncio
async def test_lost_uniqueness_race_ends_remote_listing(sync_engine, db_session, product, platform_configs,
                                                        mock_platforms, mocker):
    """If the pre-check is passed but the insert collides, the new remote listing is taken down again"""
    await sync_engine.create_listing(product.id, Platform.EBAY)
    mocker.patch.object(sync_engine, "_open_listing", mocker.AsyncMock(return_value=None))

    with pytest.raises(DuplicateListingError):
        await sync_engine.create_listing(product.id, Platform.EBAY)

    assert mock_platforms[Platform.EBAY].end_calls == [("ebay-2", "duplicate")]
    config = platform_configs[Platform.EBAY]
    await db_session.refresh(config)
    assert config.total_listings == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("failing, expected_status", [
    (0, "success"),
    (1, "partial"),
    (2, "partial"),
    (3, "failed"),
])
async def test_multi_platform_partial_failure(sync_engine, db_session, product, platform_configs, mock_platforms,
                                              failing, expected_status):
    platforms = [Platform.EBAY, Platform.FACEBOOK, Platform.DEPOP]
    for platform in platforms[:failing]:
        mock_platforms[platform].fail_create = True

    result = await sync_engine.create_multi_platform_listing(product.id, platforms)

    assert result.total_count == 3
    assert result.success_count == 3 - failing
    assert result.status == expected_status
    assert [r.platform for r in result.results] == platforms

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert log.status == expected_status
    assert len(log.platforms) == 3
    assert all(p["status"] != "pending" for p in log.platforms)
    assert len(log.errors) == failing

    assert len(await sync_errors(db_session)) == failing
    for platform in platforms[:failing]:
        config = platform_configs[platform]
        await db_session.refresh(config)
        assert config.error_count == 1
        assert config.last_error["operation"] == "create"


@pytest.mark.asyncio
async def test_disconnected_platform_does_not_block_others(sync_engine, db_session, product, platform_configs,
                                                           mock_platforms):
    """Craigslist disconnected: eBay still lists, Craigslist reports PLATFORM_UNAVAILABLE"""
    platform_configs[Platform.CRAIGSLIST].is_connected = False
    await db_session.commit()

    result = await sync_engine.create_multi_platform_listing(product.id, [Platform.EBAY, Platform.CRAIGSLIST])

    assert result.success_count == 1
    assert result.status == "partial"
    craigslist = result.results[1]
    assert craigslist.platform == Platform.CRAIGSLIST
    assert craigslist.status == "failed"
    assert craigslist.error["code"] == "PLATFORM_UNAVAILABLE"
    assert mock_platforms[Platform.CRAIGSLIST].create_calls == []

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert [p["status"] for p in log.platforms] == ["success", "failed"]


@pytest.mark.asyncio
async def test_slow_platform_times_out_alone(sync_engine, db_session, product, mock_platforms):
    mock_platforms[Platform.EBAY].delay = 2

    result = await sync_engine.create_multi_platform_listing(product.id, [Platform.EBAY, Platform.DEPOP])

    by_platform = {r.platform: r for r in result.results}
    assert by_platform[Platform.EBAY].error["code"] == "TIMEOUT"
    assert by_platform[Platform.DEPOP].status == "success"


@pytest.mark.asyncio
async def test_multi_platform_custom_data_is_per_platform(sync_engine, product, mock_platforms):
    await sync_engine.create_multi_platform_listing(
        product.id, [Platform.EBAY, Platform.DEPOP], {"depop": {"price": 15.0, "size": "M"}}
    )
    assert mock_platforms[Platform.EBAY].create_calls[0].price == 20.0
    assert mock_platforms[Platform.DEPOP].create_calls[0].price == 15.0
    assert mock_platforms[Platform.DEPOP].create_calls[0].extra == {"size": "M"}


"""
2. Update
"""


@pytest.mark.asyncio
async def test_update_listing(sync_engine, db_session, product, mock_platforms):
    created = await sync_engine.create_listing(product.id, Platform.EBAY)

    result = await sync_engine.update_listing(created.listing.id, {"price": 25.0, "title": "Fender Strat '98"})

    assert result.listing.price == 25.0
    assert result.listing.title == "Fender Strat '98"
    assert result.listing.sync_status == "synced"
    assert mock_platforms[Platform.EBAY].update_calls == [("ebay-1", {"title": "Fender Strat '98", "price": 25.0})]

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert log.entity_type == "listing"
    assert log.changes["before"]["price"] == 20.0
    assert log.status == "success"


@pytest.mark.asyncio
async def test_failed_update_keeps_last_known_good_fields(sync_engine, db_session, product, platform_configs,
                                                          mock_platforms):
    created = await sync_engine.create_listing(product.id, Platform.EBAY)
    mock_platforms[Platform.EBAY].fail_update = True

    with pytest.raises(AdapterError):
        await sync_engine.update_listing(created.listing.id, {"price": 25.0, "quantity": 3})

    listing = await db_session.get(Listing, created.listing.id)
    await db_session.refresh(listing)
    assert listing.price == 20.0
    assert listing.quantity == 1
    assert listing.title == "Fender Stratocaster"
    assert listing.status == "active"
    assert listing.sync_status == "error"
    assert len(listing.sync_errors) == 1
    assert listing.sync_errors[0]["details"]["code"] == "VALIDATION"

    notifications = await sync_errors(db_session)
    assert len(notifications) == 1
    assert notifications[0].listing_id == listing.id


@pytest.mark.asyncio
async def test_craigslist_update_is_reported_unsupported(sync_engine, db_session, product, mock_platforms):
    created = await sync_engine.create_listing(product.id, Platform.CRAIGSLIST)

    with pytest.raises(UnsupportedOperationError):
        await sync_engine.update_listing(created.listing.id, {"price": 25.0})

    assert mock_platforms[Platform.CRAIGSLIST].update_calls == []
    listing = await db_session.get(Listing, created.listing.id)
    assert listing.sync_status == "error"
    assert listing.price == 20.0


@pytest.mark.asyncio
async def test_update_rejects_bad_input(sync_engine, product):
    created = await sync_engine.create_listing(product.id, Platform.EBAY)

    with pytest.raises(ValidationError):
        await sync_engine.update_listing(created.listing.id, {})
    with pytest.raises(ValidationError):
        await sync_engine.update_listing(created.listing.id, {"sku": "other"})
    with pytest.raises(ListingNotFoundError):
        await sync_engine.update_listing(9999, {"price": 1.0})


@pytest.mark.asyncio
async def test_update_requires_active_listing(sync_engine, product):
    created = await sync_engine.create_listing(product.id, Platform.EBAY)
    await sync_engine.handle_sale(created.listing.id, SaleData(price=18.0))

    with pytest.raises(ListingStateError):
        await sync_engine.update_listing(created.listing.id, {"price": 30.0})


"""
3. Sync product
"""


@pytest.mark.asyncio
async def test_sync_product_respects_sync_flags(sync_engine, db_session, product, mock_platforms):
    ebay = await sync_engine.create_listing(product.id, Platform.EBAY)
    depop = await sync_engine.create_listing(product.id, Platform.DEPOP)
    depop_listing = await db_session.get(Listing, depop.listing.id)
    depop_listing.sync_price = False
    await db_session.commit()

    result = await sync_engine.sync_product(product.id, {"price": 30.0})

    assert result.status == "success"
    assert result.success_count == 1
    assert result.total_count == 2
    by_platform = {r.platform: r for r in result.results}
    assert by_platform[Platform.EBAY].listing.price == 30.0
    assert by_platform[Platform.EBAY].updates == {"price": 30.0}
    assert by_platform[Platform.DEPOP].status == "skipped"
    assert by_platform[Platform.DEPOP].listing.price == 20.0
    assert mock_platforms[Platform.DEPOP].update_calls == []

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert {p["platform"]: p["status"] for p in log.platforms} == {"ebay": "success", "depop": "skipped"}
    assert (await db_session.get(Listing, ebay.listing.id)).price == 30.0


@pytest.mark.asyncio
async def test_sync_product_failure_keeps_values(sync_engine, db_session, product, mock_platforms):
    created = await sync_engine.create_listing(product.id, Platform.EBAY)
    mock_platforms[Platform.EBAY].fail_update = True

    result = await sync_engine.sync_product(product.id, {"price": 30.0, "quantity": 4})

    assert result.status == "failed"
    assert result.results[0].updates == {"price": 30.0, "quantity": 4}
    listing = await db_session.get(Listing, created.listing.id)
    assert listing.price == 20.0
    assert listing.quantity == 1
    assert listing.sync_status == "error"


@pytest.mark.asyncio
async def test_sync_product_skips_listings_without_auto_sync(sync_engine, db_session, product, mock_platforms):
    created = await sync_engine.create_listing(product.id, Platform.EBAY)
    listing = await db_session.get(Listing, created.listing.id)
    listing.auto_sync_enabled = False
    await db_session.commit()

    result = await sync_engine.sync_product(product.id, {"price": 30.0})

    assert result.total_count == 0
    assert result.status == "success"
    assert result.sync_log_id is None
    assert mock_platforms[Platform.EBAY].update_calls == []


@pytest.mark.asyncio
async def test_sync_missing_product(sync_engine):
    with pytest.raises(ProductNotFoundError):
        await sync_engine.sync_product(9999, {"price": 1.0})


"""
4. Sale
"""


@pytest.mark.asyncio
async def test_sale_cross_delists(sync_engine, db_session, product, platform_configs, mock_platforms):
    """P1 (qty 1, 20.00) on eBay and Depop sells on eBay for 18.00"""
    ebay = await sync_engine.create_listing(product.id, Platform.EBAY)
    depop = await sync_engine.create_listing(product.id, Platform.DEPOP)

    result = await sync_engine.handle_sale(ebay.listing.id, SaleData(price=18.0))

    assert result.sold_listing.status == ListingStatus.SOLD
    assert result.sold_listing.sale_price == 18.0
    assert [(r.platform, r.status) for r in result.delist_results] == [(Platform.DEPOP, "success")]
    assert result.product.quantity == 0
    assert result.product.status == "sold"
    assert mock_platforms[Platform.DEPOP].end_calls == [("depop-1", "Sold on eBay")]

    depop_listing = await db_session.get(Listing, depop.listing.id)
    assert depop_listing.status == "delisted"
    assert depop_listing.ended_at is not None

    result_rows = await db_session.execute(select(Notification).where(Notification.type == "sale"))
    sales = list(result_rows.scalars().all())
    assert len(sales) == 1
    assert sales[0].priority == "high"
    assert sales[0].action_required is False
    assert [d["platform"] for d in sales[0].meta["delist_results"]] == ["depop"]
    assert sales[0].meta["sale_price"] == 18.0

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert log.operation == "delist"
    assert log.status == "success"
    assert [p["platform"] for p in log.platforms] == ["ebay", "depop"]

    ebay_config = platform_configs[Platform.EBAY]
    depop_config = platform_configs[Platform.DEPOP]
    await db_session.refresh(ebay_config)
    await db_session.refresh(depop_config)
    assert ebay_config.total_sales == 1
    assert ebay_config.total_revenue == 18.0
    assert ebay_config.active_listings == 0
    assert depop_config.active_listings == 0


@pytest.mark.asyncio
async def test_sale_is_safe_when_remote_end_fails(sync_engine, db_session, product, platform_configs,
                                                 mock_platforms):
    ebay = await sync_engine.create_listing(product.id, Platform.EBAY)
    await sync_engine.create_listing(product.id, Platform.DEPOP)
    await sync_engine.create_listing(product.id, Platform.FACEBOOK)
    mock_platforms[Platform.DEPOP].fail_end = True

    result = await sync_engine.handle_sale(ebay.listing.id, SaleData(price=18.0))

    statuses = {r.platform: r.status for r in result.delist_results}
    assert statuses == {Platform.DEPOP: "failed", Platform.FACEBOOK: "success"}

    active = await db_session.scalar(
        select(func.count(Listing.id)).where(Listing.product_id == product.id, Listing.status == "active")
    )
    assert active == 0

    sale = (await db_session.execute(select(Notification).where(Notification.type == "sale"))).scalar_one()
    assert sale.action_required is True
    assert "depop" in sale.message

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert log.status == "partial"
    depop_config = platform_configs[Platform.DEPOP]
    await db_session.refresh(depop_config)
    assert depop_config.error_count == 1


@pytest.mark.asyncio
async def test_sale_flags_craigslist_post_for_manual_removal(sync_engine, adapter_registry, db_session, product,
                                                           platform_configs, settings, mocker):
    email_service = mocker.Mock(spec=EmailService)
    email_service.ready.return_value = True
    email_service.send_message = mocker.AsyncMock()
    adapter_registry.register(Platform.CRAIGSLIST, CraigslistAdapter(
        PlatformCredentials(),
        CraigslistSettings(city="sfbay", email="seller@example.com"),
        settings,
        email_service=email_service,
    ))
    ebay = await sync_engine.create_listing(product.id, Platform.EBAY)
    craigslist = await sync_engine.create_listing(product.id, Platform.CRAIGSLIST)

    result = await sync_engine.handle_sale(ebay.listing.id, SaleData(price=18.0))

    [delisted] = result.delist_results
    assert delisted.platform == Platform.CRAIGSLIST
    assert delisted.status == "failed"
    assert delisted.error["code"] == "UNSUPPORTED_OPERATION"
    assert "deletion link" in delisted.error["message"]

    # Retired locally all the same
    listing = await db_session.get(Listing, craigslist.listing.id)
    assert listing.status == "delisted"

    sale = (await db_session.execute(select(Notification).where(Notification.type == "sale"))).scalar_one()
    assert sale.action_required is True
    assert "Could not end on: craigslist" in sale.message
    assert "Ended on" not in sale.message

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert log.status == "partial"
    config = platform_configs[Platform.CRAIGSLIST]
    await db_session.refresh(config)
    assert config.error_count == 0
    assert config.active_listings == 0


@pytest.mark.asyncio
async def test_sale_with_stock_left_keeps_product_active(sync_engine, db_session):
    product = await create_product(db_session, sku="MULTI-1", quantity=3)
    ebay = await sync_engine.create_listing(product.id, Platform.EBAY)

    result = await sync_engine.handle_sale(ebay.listing.id, SaleData(price=20.0))

    assert result.product.quantity == 2
    assert result.product.status == "active"


@pytest.mark.asyncio
async def test_sale_requires_active_listing(sync_engine, product):
    ebay = await sync_engine.create_listing(product.id, Platform.EBAY)
    await sync_engine.handle_sale(ebay.listing.id, SaleData(price=18.0))

    with pytest.raises(ListingStateError):
        await sync_engine.handle_sale(ebay.listing.id, SaleData(price=18.0))


@pytest.mark.asyncio
async def test_relist_after_sale_is_allowed(sync_engine, db_session, product):
    """Ended/sold listings do not count against the one-open-listing rule"""
    ebay = await sync_engine.create_listing(product.id, Platform.EBAY)
    await sync_engine.handle_sale(ebay.listing.id, SaleData(price=18.0))
    product.quantity = 1
    product.status = ProductStatus.ACTIVE.value
    await db_session.commit()

    result = await sync_engine.create_listing(product.id, Platform.EBAY)
    assert result.listing.platform_listing_id == "ebay-2"


@pytest.mark.asyncio
async def test_sync_product_leaves_manually_managed_listings_alone(sync_engine, db_session, product,
                                                                  mock_platforms):
    ebay = await sync_engine.create_listing(product.id, Platform.EBAY)
    await sync_engine.create_listing(product.id, Platform.DEPOP)
    listing = await db_session.get(Listing, ebay.listing.id)
    listing.is_manually_managed = True
    await db_session.commit()

    result = await sync_engine.sync_product(product.id, {"price": 30.0})

    assert [r.platform for r in result.results] == [Platform.DEPOP]
    assert mock_platforms[Platform.EBAY].update_calls == []


"""
5. Manual end
"""


@pytest.mark.asyncio
async def test_end_listing(sync_engine, db_session, product, platform_configs, mock_platforms):
    created = await sync_engine.create_listing(product.id, Platform.EBAY)

    result = await sync_engine.end_listing(created.listing.id, "Damaged in the shop")

    assert result.listing.status == ListingStatus.DELISTED
    assert result.listing.ended_at is not None
    assert result.listing.notes.endswith("Delisted: Damaged in the shop")
    assert mock_platforms[Platform.EBAY].end_calls == [("ebay-1", "Damaged in the shop")]

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert log.operation == "delist"
    assert log.status == "success"
    assert log.changes["after"] == {"status": "delisted"}

    config = platform_configs[Platform.EBAY]
    await db_session.refresh(config)
    assert config.active_listings == 0
    assert config.total_listings == 1

    # The pair is free again
    again = await sync_engine.create_listing(product.id, Platform.EBAY)
    assert again.listing.platform_listing_id == "ebay-2"


@pytest.mark.asyncio
async def test_end_listing_as_ended(sync_engine, product):
    created = await sync_engine.create_listing(product.id, Platform.DEPOP)

    result = await sync_engine.end_listing(created.listing.id, "Closed on Depop", status=ListingStatus.ENDED)

    assert result.listing.status == ListingStatus.ENDED
    with pytest.raises(ValidationError):
        await sync_engine.end_listing(created.listing.id, status=ListingStatus.SOLD)


@pytest.mark.asyncio
async def test_failed_end_leaves_listing_active(sync_engine, db_session, product, mock_platforms):
    created = await sync_engine.create_listing(product.id, Platform.FACEBOOK)
    mock_platforms[Platform.FACEBOOK].fail_end = True

    with pytest.raises(AdapterError):
        await sync_engine.end_listing(created.listing.id)

    listing = await db_session.get(Listing, created.listing.id)
    await db_session.refresh(listing)
    assert listing.status == "active"
    assert listing.ended_at is None
    assert listing.sync_status == "error"
    assert listing.sync_errors[0]["details"]["operation"] == "end"
    assert len(await sync_errors(db_session)) == 1


@pytest.mark.asyncio
async def test_end_requires_active_listing(sync_engine, product):
    created = await sync_engine.create_listing(product.id, Platform.EBAY)
    await sync_engine.end_listing(created.listing.id)

    with pytest.raises(ListingStateError):
        await sync_engine.end_listing(created.listing.id)
    with pytest.raises(ListingNotFoundError):
        await sync_engine.end_listing(9999)


@pytest.mark.asyncio
async def test_end_craigslist_listing_is_local_with_manual_step(sync_engine, db_session, product, platform_configs,
                                                               mock_platforms):
    created = await sync_engine.create_listing(product.id, Platform.CRAIGSLIST)

    result = await sync_engine.end_listing(created.listing.id, "Sold at the shop")

    assert result.listing.status == ListingStatus.DELISTED
    assert "manual_action_required" in result.platform_response
    assert mock_platforms[Platform.CRAIGSLIST].end_calls == []

    log = await SyncLedger(db_session).get(result.sync_log_id)
    assert log.platforms[0]["status"] == "skipped"
    config = platform_configs[Platform.CRAIGSLIST]
    await db_session.refresh(config)
    assert config.active_listings == 0
