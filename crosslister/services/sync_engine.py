"""
Synchronization Engine

Creates, updates and retires listings across marketplaces and keeps them in
line with the catalog product. Every operation follows the same shape:

1. Under the product's lock, resolve everything that needs the database
   (product, platform readiness, duplicates, payloads) one platform at a time.
2. Call the adapters for all platforms concurrently, each call bounded by
   ``adapter_timeout``. One platform failing never affects another.
3. Persist listings, counters, the SyncLogEntry and notifications, then commit.

A single AsyncSession cannot be shared between concurrent tasks, which is why
only the adapter calls run in parallel.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.core.enums import (
    ListingStatus, NotificationPriority, NotificationType, Platform, PlatformResultStatus,
    ProductStatus, SyncOperation, SyncStatus, SyncTrigger,
)
from crosslister.core.exceptions import (
    AdapterError, BaseServiceError, DuplicateListingError, ListingNotFoundError, ListingStateError,
    NotFoundError, PlatformUnavailableError, ProductNotFoundError, UnsupportedOperationError, ValidationError,
)
from crosslister.core.utils import utcnow
from crosslister.integrations.base import CreatedListing, PlatformAdapter, UpdatedListing
from crosslister.integrations.setup import AdapterRegistry
from crosslister.models.listing import Listing
from crosslister.models.notification import Notification
from crosslister.models.platform_config import PlatformConfig
from crosslister.schemas.listing import (
    CreateListingResult, EndListingResult, ListingPayload, ListingRead, ListingUpdate, MultiPlatformResult,
    PlatformResult, ProductChanges, ProductSnapshot, SaleData, SaleResult, UpdateListingResult,
)
from crosslister.services.catalog import CatalogClient
from crosslister.services.locks import ProductLockManager, product_locks
from crosslister.services.notification_service import NotificationService
from crosslister.services.platform_registry import PlatformRegistry
from crosslister.services.sync_ledger import SyncLedger, overall_status

logger = logging.getLogger(__name__)

DEFAULT_ADAPTER_TIMEOUT = 30.0

# Fields a third-party change may carry back into the catalog after approval
APPROVABLE_FIELDS = ("price", "quantity")


def error_payload(exc: BaseException) -> Dict[str, Any]:
    if isinstance(exc, BaseServiceError):
        return exc.to_dict()
    return {"code": "INTERNAL_ERROR", "message": str(exc), "details": {}}


class SyncEngine:

    def __init__(
        self,
        db: AsyncSession,
        *,
        catalog: CatalogClient,
        registry: PlatformRegistry,
        adapters: AdapterRegistry,
        ledger: SyncLedger,
        notifications: NotificationService,
        locks: Optional[ProductLockManager] = None,
        adapter_timeout: Optional[float] = None,
    ):
        self.db = db
        self.catalog = catalog
        self.registry = registry
        self.adapters = adapters
        self.ledger = ledger
        self.notifications = notifications
        self.locks = locks or product_locks
        self.adapter_timeout = adapter_timeout or DEFAULT_ADAPTER_TIMEOUT

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------
    async def _call_adapter(self, platform: Platform, operation: str, call: Callable[[], Awaitable[Any]]):
        """Run one adapter call with the per-call timeout; anything unexpected becomes AdapterError."""
        try:
            return await asyncio.wait_for(call(), timeout=self.adapter_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{platform.value} {operation} timed out after {self.adapter_timeout}s")
            raise AdapterError(
                f"{platform.display_name} {operation} timed out after {self.adapter_timeout}s",
                platform=platform.value,
                code="TIMEOUT",
            )
        except BaseServiceError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error from {platform.value} adapter during {operation}")
            raise AdapterError(
                f"{platform.display_name} {operation} failed: {e}",
                platform=platform.value,
                code="INTERNAL_ERROR",
            )

    async def _resolve_adapter(self, platform: Platform, capability: str) -> Tuple[PlatformConfig, PlatformAdapter]:
        config = await self.registry.check_ready(platform)
        adapter = self.adapters.get(platform)
        if adapter is None:
            raise PlatformUnavailableError(
                f"{platform.display_name} adapter is not loaded",
                platform=platform.value,
                details={"connection_status": "adapter_missing"},
            )
        if not adapter.supports(capability):
            raise adapter.unsupported(capability)
        return config, adapter

    async def _get_listing(self, listing_id: int) -> Listing:
        listing = await self.db.get(Listing, listing_id)
        if not listing:
            raise ListingNotFoundError(f"Listing {listing_id} not found", details={"listing_id": listing_id})
        return listing

    async def _require_product(self, product_id: int) -> ProductSnapshot:
        product = await self.catalog.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        return product

    async def _open_listing(self, product_id: int, platform: Platform) -> Optional[Listing]:
        result = await self.db.execute(
            select(Listing).where(
                Listing.product_id == product_id,
                Listing.platform == platform.value,
                Listing.status.in_(ListingStatus.open_statuses()),
            )
        )
        return result.scalars().first()

    async def _record_platform_error(self, platform: Platform, exc: BaseException, operation: str) -> None:
        # A missing capability says nothing about the platform's health
        if isinstance(exc, AdapterError) and not isinstance(exc, UnsupportedOperationError):
            await self.registry.record_error(platform, {"operation": operation, **error_payload(exc)})

    async def _fan_out(
        self,
        listings: List[Listing],
        capability: str,
        call: Callable[[PlatformAdapter, Listing], Awaitable[Any]],
    ) -> Dict[int, Any]:
        """
        Resolve adapters one by one (database work), then run ``call`` for
        every resolvable listing concurrently. Returns listing id -> result
        or the exception that listing's call ended with.
        """
        outcomes: Dict[int, Any] = {}
        ready = []
        for listing in listings:
            platform = Platform(listing.platform)
            try:
                _, adapter = await self._resolve_adapter(platform, capability)
                ready.append((listing, platform, adapter))
            except BaseServiceError as e:
                outcomes[listing.id] = e

        results = await asyncio.gather(
            *[
                self._call_adapter(platform, capability, lambda a=adapter, l=listing: call(a, l))
                for listing, platform, adapter in ready
            ],
            return_exceptions=True,
        )
        for (listing, _, _), result in zip(ready, results):
            outcomes[listing.id] = result
        return outcomes

    @staticmethod
    def _failed_result(platform: Platform, exc: BaseException) -> PlatformResult:
        error = error_payload(exc)
        return PlatformResult(
            platform=platform,
            status=PlatformResultStatus.FAILED,
            error=error,
            message=error["message"],
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def prepare_listing_data(
        self,
        product: ProductSnapshot,
        config: PlatformConfig,
        custom_data: Optional[Dict[str, Any]] = None,
    ) -> ListingPayload:
        """
        Merge product attributes, platform defaults and custom data (highest
        precedence) into the platform-neutral payload.
        """
        defaults = self.registry.default_listing_settings(config)

        price = product.price * (1 + defaults.price_markup / 100)
        price = max(price, defaults.min_price)
        if defaults.max_price:
            price = min(price, defaults.max_price)

        data: Dict[str, Any] = {
            "title": product.title,
            "description": product.description or "",
            "price": round(price, 2),
            "quantity": product.quantity,
            "condition": product.condition,
            "images": product.images,
            "category": product.category,
            "brand": product.brand,
            "model": product.model,
            "sku": product.sku,
            "upc": product.upc,
            "shipping_cost": defaults.default_shipping_cost,
            "handling_time": defaults.default_handling_time,
        }
        data.update(custom_data or {})
        try:
            return ListingPayload(**data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid listing data for {config.platform}: {e.errors()[0]['msg']}",
                details={"errors": e.errors(include_url=False, include_context=False)},
            )

    async def _prepare_create(
        self, product: ProductSnapshot, platform: Platform, custom_data: Dict[str, Any]
    ) -> Tuple[PlatformConfig, PlatformAdapter, ListingPayload]:
        config, adapter = await self._resolve_adapter(platform, "create")
        if await self._open_listing(product.id, platform):
            raise DuplicateListingError(
                f"Product {product.id} already has an active listing on {platform.display_name}",
                platform=platform.value,
                details={"product_id": product.id},
            )
        return config, adapter, self.prepare_listing_data(product, config, custom_data)

    async def _persist_listing(
        self,
        product: ProductSnapshot,
        platform: Platform,
        config: PlatformConfig,
        payload: ListingPayload,
        created: CreatedListing,
    ) -> Listing:
        now = utcnow()
        listing = Listing(
            product_id=product.id,
            platform=platform.value,
            platform_listing_id=created.listing_id,
            listing_url=created.url,
            title=payload.title,
            description=payload.description,
            price=payload.price,
            quantity=payload.quantity,
            platform_data=created.raw,
            platform_fees=created.fees.model_dump() if created.fees else {},
            status=ListingStatus.ACTIVE.value,
            listed_at=now,
            last_synced_at=now,
            sync_status=SyncStatus.SYNCED.value,
            sync_errors=[],
            auto_sync_enabled=self.registry.default_listing_settings(config).auto_sync,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(listing)
                await self.db.flush()
        except IntegrityError:
            raise DuplicateListingError(
                f"Product {product.id} already has an active listing on {platform.display_name}",
                platform=platform.value,
                details={"product_id": product.id, "platform_listing_id": created.listing_id},
            )
        await self.registry.record_usage(platform, listings=1, active=1, listed_at=now)
        return listing

    async def _end_orphan(self, platform: Platform, adapter: PlatformAdapter, listing_id: str) -> None:
        """A remote listing was created but lost the uniqueness race locally; take it down again."""
        try:
            await self._call_adapter(platform, "end", lambda: adapter.end_listing(listing_id, "duplicate"))
            logger.info(f"Ended duplicate {platform.value} listing {listing_id}")
        except AdapterError as e:
            logger.error(f"Could not end duplicate {platform.value} listing {listing_id}: {e.message}")

    async def _create_on_platforms(
        self,
        product_id: int,
        platforms: List[Platform],
        custom_data: Dict[str, Dict[str, Any]],
        triggered_by: SyncTrigger,
        user_id: Optional[str],
    ) -> Tuple[int, List[PlatformResult], Dict[Platform, BaseException], Dict[Platform, CreatedListing]]:
        entry = await self.ledger.start(
            entity_type="product",
            entity_id=product_id,
            operation=SyncOperation.CREATE,
            platforms=platforms,
            triggered_by=triggered_by,
            user_id=user_id,
            metadata={"custom_data": custom_data} if custom_data else None,
        )

        try:
            product = await self._require_product(product_id)
            if product.status == ProductStatus.SOLD.value or product.quantity <= 0:
                raise ValidationError(f"Product {product_id} is sold out", details={"product_id": product_id})
        except (ProductNotFoundError, ValidationError) as e:
            await self.ledger.fail(entry, e.to_dict())
            await self.db.commit()
            raise

        failures: Dict[Platform, BaseException] = {}
        prepared: Dict[Platform, Tuple[PlatformConfig, PlatformAdapter, ListingPayload]] = {}
        for platform in platforms:
            try:
                prepared[platform] = await self._prepare_create(
                    product, platform, custom_data.get(platform.value) or {}
                )
            except BaseServiceError as e:
                logger.warning(f"Create on {platform.value} for product {product_id} rejected: {e.message}")
                failures[platform] = e

        outcomes = await asyncio.gather(
            *[
                self._call_adapter(platform, "create", lambda a=adapter, p=payload: a.create_listing(p))
                for platform, (config, adapter, payload) in prepared.items()
            ],
            return_exceptions=True,
        )

        listings: Dict[Platform, Listing] = {}
        responses: Dict[Platform, CreatedListing] = {}
        for (platform, (config, adapter, payload)), outcome in zip(prepared.items(), outcomes):
            if isinstance(outcome, BaseException):
                failures[platform] = outcome
                continue
            try:
                listings[platform] = await self._persist_listing(product, platform, config, payload, outcome)
                responses[platform] = outcome
            except DuplicateListingError as e:
                failures[platform] = e
                await self._end_orphan(platform, adapter, outcome.listing_id)

        results: List[PlatformResult] = []
        for platform in platforms:
            if platform in listings:
                listing = listings[platform]
                self.ledger.set_result(
                    entry, platform, PlatformResultStatus.SUCCESS,
                    platform_listing_id=listing.platform_listing_id,
                    response=responses[platform].raw,
                )
                results.append(PlatformResult(
                    platform=platform,
                    status=PlatformResultStatus.SUCCESS,
                    listing=ListingRead.model_validate(listing),
                    platform_listing_id=listing.platform_listing_id,
                ))
                logger.info(f"Listed product {product_id} on {platform.value} as {listing.platform_listing_id}")
                continue

            exc = failures[platform]
            error = error_payload(exc)
            self.ledger.set_result(entry, platform, PlatformResultStatus.FAILED, error=error)
            results.append(self._failed_result(platform, exc))
            logger.warning(f"Create on {platform.value} for product {product_id} failed: {error['message']}")
            await self._record_platform_error(platform, exc, "create")
            if not isinstance(exc, DuplicateListingError):
                await self.notifications.sync_error(
                    platform=platform,
                    operation="create",
                    error=error,
                    product_id=product_id,
                    sync_log_id=entry.id,
                )

        if listings:
            await self.catalog.set_product_status(product_id, ProductStatus.ACTIVE)

        await self.ledger.complete(entry)
        await self.db.commit()
        return entry.id, results, failures, responses

    async def create_listing(
        self,
        product_id: int,
        platform: Platform,
        custom_data: Optional[Dict[str, Any]] = None,
        *,
        triggered_by: SyncTrigger = SyncTrigger.USER,
        user_id: Optional[str] = None,
    ) -> CreateListingResult:
        """
        List a product on one platform.

        Raises the platform's error (after it has been logged and, unless it
        is a duplicate, notified) when the listing could not be created.
        """
        platform = Platform(platform)
        logger.info(f"Creating {platform.value} listing for product {product_id}")
        async with self.locks.hold(product_id):
            log_id, results, failures, responses = await self._create_on_platforms(
                product_id, [platform], {platform.value: custom_data or {}}, triggered_by, user_id
            )
        if platform in failures:
            raise failures[platform]
        return CreateListingResult(
            listing=results[0].listing,
            platform_response=responses[platform].raw,
            sync_log_id=log_id,
        )

    async def create_multi_platform_listing(
        self,
        product_id: int,
        platforms: List[Platform],
        custom_data: Optional[Dict[str, Dict[str, Any]]] = None,
        *,
        triggered_by: SyncTrigger = SyncTrigger.USER,
        user_id: Optional[str] = None,
    ) -> MultiPlatformResult:
        """
        List a product on several platforms independently.

        ``custom_data`` is keyed by platform value. A failure on one platform
        becomes that platform's result; only a missing product raises.
        """
        platforms = [Platform(p) for p in platforms]
        if len(set(platforms)) != len(platforms):
            raise ValidationError("platforms must not contain duplicates")
        logger.info(f"Creating listings for product {product_id} on {', '.join(p.value for p in platforms)}")

        async with self.locks.hold(product_id):
            log_id, results, _, _ = await self._create_on_platforms(
                product_id, platforms, custom_data or {}, triggered_by, user_id
            )

        success_count = sum(1 for r in results if r.status == PlatformResultStatus.SUCCESS)
        return MultiPlatformResult(
            status=overall_status([r.status.value for r in results]),
            results=results,
            success_count=success_count,
            total_count=len(platforms),
            sync_log_id=log_id,
        )

    # ------------------------------------------------------------------
    # Update / sync
    # ------------------------------------------------------------------
    async def _push_update(self, listing: Listing, changes: Dict[str, Any]) -> UpdatedListing:
        platform = Platform(listing.platform)
        _, adapter = await self._resolve_adapter(platform, "update")
        return await self._call_adapter(
            platform, "update", lambda: adapter.update_listing(listing.platform_listing_id, changes)
        )

    @staticmethod
    def _apply_update(listing: Listing, changes: Dict[str, Any], synced_at) -> None:
        for field, value in changes.items():
            setattr(listing, field, value)
        listing.sync_status = SyncStatus.SYNCED.value
        listing.last_synced_at = synced_at

    async def _record_update_failure(self, listing: Listing, exc: BaseException, sync_log_id: int,
                                     operation: str = "update") -> None:
        """Flag the listing without touching its last known-good fields."""
        platform = Platform(listing.platform)
        error = error_payload(exc)
        listing.record_sync_error(error["message"], details={"code": error["code"], "operation": operation})
        await self._record_platform_error(platform, exc, operation)
        await self.notifications.sync_error(
            platform=platform,
            operation=operation,
            error=error,
            product_id=listing.product_id,
            listing_id=listing.id,
            sync_log_id=sync_log_id,
        )
        logger.warning(f"{operation} of listing {listing.id} on {platform.value} failed: {error['message']}")

    async def update_listing(
        self,
        listing_id: int,
        updates,
        *,
        triggered_by: SyncTrigger = SyncTrigger.USER,
        user_id: Optional[str] = None,
    ) -> UpdateListingResult:
        """
        Push ``updates`` (title/description/price/quantity) to an active listing.

        On failure the listing keeps its previous values, gets
        ``sync_status=error`` plus a sync error entry, and the error is raised.
        """
        if not isinstance(updates, ListingUpdate):
            try:
                updates = ListingUpdate.model_validate(updates)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid listing update: {e.errors()[0]['msg']}",
                    details={"errors": e.errors(include_url=False, include_context=False)},
                )
        changes = updates.model_dump(exclude_none=True)
        if not changes:
            raise ValidationError("No updates given", details={"listing_id": listing_id})

        listing = await self._get_listing(listing_id)
        async with self.locks.hold(listing.product_id):
            await self.db.refresh(listing)
            if listing.status != ListingStatus.ACTIVE.value:
                raise ListingStateError(
                    f"Listing {listing_id} is {listing.status}; only active listings can be updated",
                    details={"listing_id": listing_id, "status": listing.status},
                )
            platform = Platform(listing.platform)
            entry = await self.ledger.start(
                entity_type="listing",
                entity_id=listing.id,
                operation=SyncOperation.UPDATE,
                platforms=[platform],
                triggered_by=triggered_by,
                user_id=user_id,
                changes={
                    "before": {field: getattr(listing, field) for field in changes},
                    "after": changes,
                },
            )

            try:
                response = await self._push_update(listing, changes)
            except BaseServiceError as e:
                self.ledger.set_result(entry, platform, PlatformResultStatus.FAILED,
                                       platform_listing_id=listing.platform_listing_id, error=error_payload(e))
                await self._record_update_failure(listing, e, entry.id)
                await self.ledger.complete(entry)
                await self.db.commit()
                raise

            now = utcnow()
            self._apply_update(listing, changes, now)
            self.ledger.set_result(entry, platform, PlatformResultStatus.SUCCESS,
                                   platform_listing_id=listing.platform_listing_id, response=response.raw)
            await self.registry.record_usage(platform, synced_at=now)
            await self.ledger.complete(entry)
            await self.db.commit()

        logger.info(f"Updated listing {listing_id} on {platform.value}: {', '.join(changes)}")
        return UpdateListingResult(
            listing=ListingRead.model_validate(listing),
            platform_response=response.raw,
            sync_log_id=entry.id,
        )

    @staticmethod
    def reduce_changes(listing: Listing, changes: ProductChanges) -> Dict[str, Any]:
        """Limit product changes to what this listing's auto-sync flags allow."""
        reduced: Dict[str, Any] = {}
        if changes.price is not None and listing.sync_price:
            reduced["price"] = changes.price
        if changes.quantity is not None and listing.sync_quantity:
            reduced["quantity"] = changes.quantity
        if changes.description is not None and listing.sync_description:
            reduced["description"] = changes.description
        return reduced

    async def sync_product(
        self,
        product_id: int,
        changes,
        *,
        triggered_by: SyncTrigger = SyncTrigger.SYSTEM,
        user_id: Optional[str] = None,
    ) -> MultiPlatformResult:
        """Push catalog-side changes to every active, auto-synced, not manually managed listing of the product."""
        if not isinstance(changes, ProductChanges):
            changes = ProductChanges.model_validate(changes)

        async with self.locks.hold(product_id):
            await self._require_product(product_id)
            result = await self.db.execute(
                select(Listing)
                .where(
                    Listing.product_id == product_id,
                    Listing.status == ListingStatus.ACTIVE.value,
                    Listing.auto_sync_enabled.is_(True),
                    Listing.is_manually_managed.is_(False),
                )
                .order_by(Listing.id)
            )
            listings = list(result.scalars().all())
            if not listings:
                logger.info(f"Product {product_id} has no auto-synced listings; nothing to sync")
                return MultiPlatformResult(status=overall_status([]), results=[], success_count=0, total_count=0)

            entry = await self.ledger.start(
                entity_type="product",
                entity_id=product_id,
                operation=SyncOperation.SYNC,
                platforms=[Platform(listing.platform) for listing in listings],
                triggered_by=triggered_by,
                user_id=user_id,
                changes={"after": changes.model_dump(exclude_none=True)},
            )

            plans = [(listing, self.reduce_changes(listing, changes)) for listing in listings]
            reduced_by_listing = {listing.id: reduced for listing, reduced in plans}
            outcome_by_listing = await self._fan_out(
                [listing for listing, reduced in plans if reduced],
                "update",
                lambda adapter, listing: adapter.update_listing(
                    listing.platform_listing_id, reduced_by_listing[listing.id]
                ),
            )

            now = utcnow()
            results: List[PlatformResult] = []
            for listing, reduced in plans:
                platform = Platform(listing.platform)
                if not reduced:
                    self.ledger.set_result(entry, platform, PlatformResultStatus.SKIPPED,
                                           platform_listing_id=listing.platform_listing_id)
                    results.append(PlatformResult(
                        platform=platform,
                        status=PlatformResultStatus.SKIPPED,
                        listing=ListingRead.model_validate(listing),
                        platform_listing_id=listing.platform_listing_id,
                        message="No applicable changes",
                    ))
                    continue

                outcome = outcome_by_listing[listing.id]
                if isinstance(outcome, BaseException):
                    self.ledger.set_result(entry, platform, PlatformResultStatus.FAILED,
                                           platform_listing_id=listing.platform_listing_id,
                                           error=error_payload(outcome))
                    await self._record_update_failure(listing, outcome, entry.id, operation="sync")
                    result = self._failed_result(platform, outcome)
                    result.listing = ListingRead.model_validate(listing)
                    result.platform_listing_id = listing.platform_listing_id
                    result.updates = reduced
                    results.append(result)
                    continue

                self._apply_update(listing, reduced, now)
                await self.registry.record_usage(platform, synced_at=now)
                self.ledger.set_result(entry, platform, PlatformResultStatus.SUCCESS,
                                       platform_listing_id=listing.platform_listing_id, response=outcome.raw)
                results.append(PlatformResult(
                    platform=platform,
                    status=PlatformResultStatus.SUCCESS,
                    listing=ListingRead.model_validate(listing),
                    platform_listing_id=listing.platform_listing_id,
                    updates=reduced,
                ))

            await self.ledger.complete(entry)
            await self.db.commit()

        success_count = sum(1 for r in results if r.status == PlatformResultStatus.SUCCESS)
        return MultiPlatformResult(
            status=entry.status,
            results=results,
            success_count=success_count,
            total_count=len(results),
            sync_log_id=entry.id,
        )

    # ------------------------------------------------------------------
    # Sale
    # ------------------------------------------------------------------
    async def handle_sale(self, listing_id: int, sale: SaleData) -> SaleResult:
        """
        Record a sale and retire every other open listing of the product.

        Other listings are always marked delisted locally, whatever their
        marketplace answered; the remote outcome is kept per platform in the
        sync log and in the sale notification.
        """
        listing = await self._get_listing(listing_id)
        product_id = listing.product_id

        async with self.locks.hold(product_id):
            await self.db.refresh(listing)
            if listing.status != ListingStatus.ACTIVE.value:
                raise ListingStateError(
                    f"Listing {listing_id} is {listing.status}; only active listings can be sold",
                    details={"listing_id": listing_id, "status": listing.status},
                )
            product = await self._require_product(product_id)
            sold_platform = Platform(listing.platform)

            result = await self.db.execute(
                select(Listing)
                .where(
                    Listing.product_id == product_id,
                    Listing.id != listing.id,
                    Listing.status.in_(ListingStatus.open_statuses()),
                )
                .order_by(Listing.id)
            )
            others = list(result.scalars().all())

            entry = await self.ledger.start(
                entity_type="product",
                entity_id=product_id,
                operation=SyncOperation.DELIST,
                platforms=[sold_platform] + [Platform(other.platform) for other in others],
                triggered_by=sale.triggered_by,
                changes={
                    "before": {"listing_status": listing.status, "quantity": product.quantity},
                    "after": {"listing_status": ListingStatus.SOLD.value, "sale_price": sale.price},
                },
                metadata={"sold_listing_id": listing.id},
            )

            # 1. the sale itself
            listing.mark_sold(
                sale.price,
                buyer_info=sale.buyer_info.model_dump(exclude_none=True) if sale.buyer_info else None,
                fees=sale.fees.model_dump() if sale.fees else None,
                sold_at=sale.sold_at,
            )
            await self.registry.record_usage(sold_platform, sales=1, revenue=sale.price, active=-1)
            self.ledger.set_result(
                entry, sold_platform, PlatformResultStatus.SUCCESS,
                platform_listing_id=listing.platform_listing_id,
                response={"action": "sold", "sale_price": sale.price},
            )

            # 2. stock
            remaining = await self.catalog.decrement_quantity(product_id, 1)
            await self.catalog.set_product_status(
                product_id, ProductStatus.SOLD if remaining == 0 else ProductStatus.ACTIVE
            )

            # 3. cross-delist
            reason = f"Sold on {sold_platform.display_name}"
            outcomes = await self._fan_out(
                others,
                "end",
                lambda adapter, other: adapter.end_listing(other.platform_listing_id, reason),
            )
            delist_results: List[PlatformResult] = []
            for other in others:
                outcome = outcomes[other.id]
                platform = Platform(other.platform)
                was_active = other.status == ListingStatus.ACTIVE.value
                if isinstance(outcome, BaseException):
                    other.delist(reason)
                    error = error_payload(outcome)
                    self.ledger.set_result(entry, platform, PlatformResultStatus.FAILED,
                                           platform_listing_id=other.platform_listing_id, error=error)
                    await self._record_platform_error(platform, outcome, "end")
                    logger.error(
                        f"Could not end {platform.value} listing {other.platform_listing_id} after sale; "
                        f"delisted locally only: {error['message']}"
                    )
                    result = self._failed_result(platform, outcome)
                else:
                    other.delist(reason, ended_at=outcome.ended_at)
                    self.ledger.set_result(entry, platform, PlatformResultStatus.SUCCESS,
                                           platform_listing_id=other.platform_listing_id, response=outcome.raw)
                    result = PlatformResult(platform=platform, status=PlatformResultStatus.SUCCESS)
                if was_active:
                    await self.registry.record_usage(platform, active=-1)
                result.platform_listing_id = other.platform_listing_id
                result.listing = ListingRead.model_validate(other)
                delist_results.append(result)

            await self.ledger.complete(entry)

            # 4. tell the operator
            failed = [r.platform.value for r in delist_results if r.status == PlatformResultStatus.FAILED]
            delisted = [r.platform.value for r in delist_results if r.status == PlatformResultStatus.SUCCESS]
            message = f"{product.title} sold on {sold_platform.display_name} for ${sale.price:,.2f}."
            if delisted:
                message += f" Ended on: {', '.join(delisted)}."
            if failed:
                message += f" Could not end on: {', '.join(failed)}; remove these listings manually."
            await self.notifications.create(
                type=NotificationType.SALE,
                priority=NotificationPriority.HIGH,
                title=f"Sold on {sold_platform.display_name}: {product.title}",
                message=message,
                product_id=product_id,
                listing_id=listing.id,
                platform=sold_platform.value,
                action_required=bool(failed),
                metadata={
                    "sale_price": sale.price,
                    "remaining_quantity": remaining,
                    "sync_log_id": entry.id,
                    "delist_results": [
                        {
                            "platform": r.platform.value,
                            "status": r.status.value,
                            "platform_listing_id": r.platform_listing_id,
                            "error": r.error,
                        }
                        for r in delist_results
                    ],
                },
            )
            await self.db.commit()

        logger.info(
            f"Sale of product {product_id} on {sold_platform.value} processed; "
            f"{len(delisted)} ended, {len(failed)} need manual removal"
        )
        await self.notifications.send_sale_email(
            product=product,
            platform=sold_platform,
            sale_price=sale.price,
            listing_url=listing.listing_url,
            delisted=delisted,
            failed=failed,
        )

        return SaleResult(
            sold_listing=ListingRead.model_validate(listing),
            delist_results=delist_results,
            product=await self._require_product(product_id),
            sync_log_id=entry.id,
        )

    async def end_listing(
        self,
        listing_id: int,
        reason: str = "Ended by operator",
        *,
        status: ListingStatus = ListingStatus.DELISTED,
        user_id: Optional[str] = None,
    ) -> EndListingResult:
        """
        Take one active listing down on request.

        Unlike the cross-delist after a sale, the local status only moves once
        the marketplace confirmed the end. A failure flags the listing and is
        raised. Platforms without a remote end (Craigslist) are retired locally
        and the response carries the manual step.
        """
        status = ListingStatus(status)
        if status not in (ListingStatus.DELISTED, ListingStatus.ENDED):
            raise ValidationError(f"Cannot end a listing as {status.value}", details={"status": status.value})

        listing = await self._get_listing(listing_id)
        async with self.locks.hold(listing.product_id):
            await self.db.refresh(listing)
            if listing.status != ListingStatus.ACTIVE.value:
                raise ListingStateError(
                    f"Listing {listing_id} is {listing.status}; only active listings can be ended",
                    details={"listing_id": listing_id, "status": listing.status},
                )
            platform = Platform(listing.platform)
            entry = await self.ledger.start(
                entity_type="listing",
                entity_id=listing.id,
                operation=SyncOperation.DELIST,
                platforms=[platform],
                triggered_by=SyncTrigger.USER,
                user_id=user_id,
                changes={"before": {"status": listing.status}, "after": {"status": status.value}},
                metadata={"reason": reason},
            )

            adapter = self.adapters.get(platform)
            if adapter is not None and not adapter.supports("end"):
                # No remote end: the operator removes the post, we only retire it here
                response = {"manual_action_required": adapter.unsupported("end").message}
                listing.delist(reason, status=status)
                self.ledger.set_result(entry, platform, PlatformResultStatus.SKIPPED,
                                       platform_listing_id=listing.platform_listing_id, response=response)
            else:
                try:
                    _, adapter = await self._resolve_adapter(platform, "end")
                    ended = await self._call_adapter(
                        platform, "end", lambda: adapter.end_listing(listing.platform_listing_id, reason)
                    )
                except BaseServiceError as e:
                    self.ledger.set_result(entry, platform, PlatformResultStatus.FAILED,
                                           platform_listing_id=listing.platform_listing_id, error=error_payload(e))
                    await self._record_update_failure(listing, e, entry.id, operation="end")
                    await self.ledger.complete(entry)
                    await self.db.commit()
                    raise
                response = ended.raw
                listing.delist(reason, ended_at=ended.ended_at, status=status)
                self.ledger.set_result(entry, platform, PlatformResultStatus.SUCCESS,
                                       platform_listing_id=listing.platform_listing_id, response=response)
            await self.registry.record_usage(platform, active=-1)
            await self.ledger.complete(entry)
            await self.db.commit()

        logger.info(f"Listing {listing_id} on {platform.value} {status.value}: {reason}")
        return EndListingResult(
            listing=ListingRead.model_validate(listing),
            platform_response=response,
            sync_log_id=entry.id,
        )

    # ------------------------------------------------------------------
    # Third-party changes
    # ------------------------------------------------------------------
    async def approve_third_party_action(self, notification_id: int, approved_by: str) -> Notification:
        """
        Approve a change made directly on a marketplace.

        Idempotent: only the first approval writes the remote value into the
        listing snapshot and the catalog product. A change on a listing that
        is no longer active (sold, delisted) is never applied; the notification
        is archived and ListingStateError raised.
        """
        notification = await self.notifications.get(notification_id)
        details = notification.third_party_details or {}
        field = details.get("field")
        if notification.approved or notification.listing_id is None or field not in APPROVABLE_FIELDS:
            notification, _ = await self.notifications.approve(notification_id, approved_by)
            await self.db.commit()
            return notification

        listing = await self.db.get(Listing, notification.listing_id)
        if listing is None:
            raise NotFoundError(
                f"Listing {notification.listing_id} referenced by notification {notification_id} is gone"
            )

        new_value = details.get("new_value")
        async with self.locks.hold(listing.product_id):
            await self.db.refresh(listing)
            if listing.status != ListingStatus.ACTIVE.value:
                await self.notifications.archive(notification_id)
                logger.warning(
                    f"Not applying {field} change from notification {notification_id}: "
                    f"listing {listing.id} is {listing.status}"
                )
                raise ListingStateError(
                    f"Listing {listing.id} is {listing.status}; its {field} change can no longer be applied",
                    details={"listing_id": listing.id, "status": listing.status, "notification_id": notification_id},
                )

            await self.db.refresh(notification)
            notification, newly_approved = await self.notifications.approve(notification_id, approved_by)
            if not newly_approved:
                await self.db.commit()
                return notification

            platform = Platform(listing.platform)
            entry = await self.ledger.start(
                entity_type="listing",
                entity_id=listing.id,
                operation=SyncOperation.SYNC,
                platforms=[platform],
                triggered_by=SyncTrigger.USER,
                user_id=approved_by,
                changes={"before": {field: getattr(listing, field)}, "after": {field: new_value}},
                metadata={"notification_id": notification.id, "third_party": True},
            )
            setattr(listing, field, new_value)
            listing.last_synced_at = utcnow()
            await self.catalog.update_product_fields(listing.product_id, {field: new_value})
            self.ledger.set_result(entry, platform, PlatformResultStatus.SUCCESS,
                                   platform_listing_id=listing.platform_listing_id,
                                   response={"approved_by": approved_by})
            await self.ledger.complete(entry)
            await self.db.commit()

        logger.info(f"Applied approved {field} change on listing {listing.id}: {new_value}")
        return notification

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def listings_for_product(self, product_id: int) -> List[Listing]:
        result = await self.db.execute(
            select(Listing).where(Listing.product_id == product_id).order_by(Listing.id)
        )
        return list(result.scalars().all())

    async def active_listings(self, platform: Optional[Platform] = None, limit: int = 100) -> List[Listing]:
        query = select(Listing).where(Listing.status == ListingStatus.ACTIVE.value)
        if platform:
            query = query.where(Listing.platform == Platform(platform).value)
        result = await self.db.execute(query.order_by(Listing.listed_at.desc(), Listing.id.desc()).limit(limit))
        return list(result.scalars().all())
