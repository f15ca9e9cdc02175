# crosslister/services/reconciliation_service.py
"""
Third-party change detection.

Reads every active listing back from its marketplace and compares it with the
local snapshot. Price or quantity edits made directly on a marketplace are
not applied; they become ``third_party_action`` notifications that an
operator approves through ``SyncEngine.approve_third_party_action``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.core.enums import (
    ListingStatus, NotificationPriority, NotificationStatus, NotificationType, Platform,
    PlatformResultStatus, SyncOperation, SyncTrigger,
)
from crosslister.core.exceptions import AdapterError, BaseServiceError
from crosslister.core.utils import utcnow
from crosslister.integrations.base import RemoteListing
from crosslister.integrations.setup import AdapterRegistry
from crosslister.models.listing import Listing
from crosslister.models.notification import Notification
from crosslister.services.notification_service import NotificationService
from crosslister.services.platform_registry import PlatformRegistry
from crosslister.services.sync_ledger import SyncLedger

logger = logging.getLogger(__name__)

PRICE_TOLERANCE = 0.005
ENDED_REMOTE_STATUSES = {"sold", "ended"}


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation run."""
    platforms_checked: List[str] = field(default_factory=list)
    platforms_skipped: Dict[str, str] = field(default_factory=dict)
    listings_checked: int = 0
    unknown_status: int = 0
    changes_detected: List[Dict[str, Any]] = field(default_factory=list)
    notifications_created: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    sync_log_id: Optional[int] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "platforms_checked": self.platforms_checked,
            "platforms_skipped": self.platforms_skipped,
            "listings_checked": self.listings_checked,
            "unknown_status": self.unknown_status,
            "changes_detected": len(self.changes_detected),
            "notifications_created": self.notifications_created,
            "errors": len(self.errors),
            "sync_log_id": self.sync_log_id,
        }


class ReconciliationService:

    def __init__(
        self,
        db: AsyncSession,
        *,
        registry: PlatformRegistry,
        adapters: AdapterRegistry,
        ledger: SyncLedger,
        notifications: NotificationService,
        adapter_timeout: float = 30.0,
    ):
        self.db = db
        self.registry = registry
        self.adapters = adapters
        self.ledger = ledger
        self.notifications = notifications
        self.adapter_timeout = adapter_timeout

    async def _fetch(self, adapter, listing: Listing) -> RemoteListing:
        try:
            return await asyncio.wait_for(adapter.get_listing(listing.platform_listing_id), timeout=self.adapter_timeout)
        except asyncio.TimeoutError:
            raise AdapterError(
                f"Reading listing {listing.platform_listing_id} timed out",
                platform=listing.platform,
                code="TIMEOUT",
            )

    async def _ready_platforms(self, platforms: Optional[List[Platform]], report: ReconciliationReport):
        ready = {}
        for platform in platforms or list(Platform):
            platform = Platform(platform)
            try:
                await self.registry.check_ready(platform)
            except BaseServiceError as e:
                report.platforms_skipped[platform.value] = e.message
                continue
            adapter = self.adapters.get(platform)
            if adapter is None or not adapter.supports("get"):
                report.platforms_skipped[platform.value] = "listing reads not available"
                continue
            ready[platform] = adapter
        return ready

    async def _listing_ended_notified(self, listing_id: int) -> bool:
        result = await self.db.execute(
            select(Notification.id).where(
                Notification.listing_id == listing_id,
                Notification.type == NotificationType.LISTING_ENDED.value,
                Notification.status != NotificationStatus.ARCHIVED.value,
            )
        )
        return result.first() is not None

    async def _raise_third_party(self, listing: Listing, field_name: str, old, new, report: ReconciliationReport):
        if await self.notifications.find_open_third_party(listing.id, field_name, new):
            return
        platform = Platform(listing.platform)
        await self.notifications.create(
            type=NotificationType.THIRD_PARTY_ACTION,
            priority=NotificationPriority.MEDIUM,
            title=f"{field_name.capitalize()} changed on {platform.display_name}",
            message=(
                f"Listing {listing.platform_listing_id} {field_name} changed on {platform.display_name} "
                f"from {old} to {new}. Approve to apply it to the product."
            ),
            product_id=listing.product_id,
            listing_id=listing.id,
            platform=platform.value,
            action_required=True,
            third_party={
                "action_type": field_name,
                "performed_by": platform.value,
                "details": {
                    "field": field_name,
                    "old_value": old,
                    "new_value": new,
                    "platform_listing_id": listing.platform_listing_id,
                },
                "requires_approval": True,
            },
        )
        report.notifications_created += 1

    async def _compare(self, listing: Listing, remote: RemoteListing, report: ReconciliationReport, now) -> None:
        if remote.views is not None:
            listing.views = remote.views
        if remote.watchers is not None:
            listing.watchers = remote.watchers
        listing.last_synced_at = now

        if remote.status in ENDED_REMOTE_STATUSES:
            report.changes_detected.append(
                {"listing_id": listing.id, "field": "status", "old": listing.status, "new": remote.status}
            )
            if not await self._listing_ended_notified(listing.id):
                platform = Platform(listing.platform)
                await self.notifications.create(
                    type=NotificationType.LISTING_ENDED,
                    priority=NotificationPriority.HIGH,
                    title=f"Listing {remote.status} on {platform.display_name}",
                    message=(
                        f"{platform.display_name} reports listing {listing.platform_listing_id} as {remote.status}. "
                        "Record the sale or end the listing here."
                    ),
                    product_id=listing.product_id,
                    listing_id=listing.id,
                    platform=platform.value,
                    action_required=True,
                    metadata={"remote_status": remote.status},
                )
                report.notifications_created += 1
            return

        if remote.price is not None and listing.price is not None and abs(remote.price - listing.price) > PRICE_TOLERANCE:
            report.changes_detected.append(
                {"listing_id": listing.id, "field": "price", "old": listing.price, "new": remote.price}
            )
            await self._raise_third_party(listing, "price", listing.price, remote.price, report)

        if remote.quantity is not None and listing.quantity is not None and remote.quantity != listing.quantity:
            report.changes_detected.append(
                {"listing_id": listing.id, "field": "quantity", "old": listing.quantity, "new": remote.quantity}
            )
            await self._raise_third_party(listing, "quantity", listing.quantity, remote.quantity, report)

    async def reconcile(
        self,
        platforms: Optional[List[Platform]] = None,
        triggered_by: SyncTrigger = SyncTrigger.SCHEDULED,
    ) -> ReconciliationReport:
        report = ReconciliationReport()
        adapters = await self._ready_platforms(platforms, report)
        if not adapters:
            logger.info("Reconciliation: no ready platforms")
            return report

        result = await self.db.execute(
            select(Listing)
            .where(
                Listing.status == ListingStatus.ACTIVE.value,
                Listing.platform.in_([p.value for p in adapters]),
            )
            .order_by(Listing.id)
        )
        listings = list(result.scalars().all())
        report.platforms_checked = [p.value for p in adapters]
        if not listings:
            logger.info("Reconciliation: no active listings on ready platforms")
            return report

        involved = sorted({Platform(listing.platform) for listing in listings}, key=lambda p: p.value)
        entry = await self.ledger.start(
            entity_type="platform",
            entity_id=",".join(p.value for p in involved),
            operation=SyncOperation.SYNC,
            platforms=involved,
            triggered_by=triggered_by,
            metadata={"reconciliation": True},
        )

        outcomes = await asyncio.gather(
            *[self._fetch(adapters[Platform(listing.platform)], listing) for listing in listings],
            return_exceptions=True,
        )

        now = utcnow()
        per_platform: Dict[Platform, Dict[str, int]] = {p: {"checked": 0, "failed": 0} for p in involved}
        for listing, outcome in zip(listings, outcomes):
            platform = Platform(listing.platform)
            per_platform[platform]["checked"] += 1
            report.listings_checked += 1

            if isinstance(outcome, BaseException):
                per_platform[platform]["failed"] += 1
                error = outcome.to_dict() if isinstance(outcome, BaseServiceError) else {
                    "code": "INTERNAL_ERROR", "message": str(outcome), "details": {},
                }
                error["details"] = {**(error.get("details") or {}), "listing_id": listing.id}
                report.errors.append({"platform": platform.value, **error})
                self.ledger.add_error(entry, platform.value, error)
                logger.warning(f"Reconciliation: reading {platform.value} listing {listing.id} failed: {error['message']}")
                continue

            if outcome.status == "unknown":
                report.unknown_status += 1
                continue
            await self._compare(listing, outcome, report, now)

        for platform, counts in per_platform.items():
            if counts["failed"] and counts["failed"] == counts["checked"]:
                self.ledger.set_result(entry, platform, PlatformResultStatus.FAILED,
                                       error={"code": "REMOTE_ERROR",
                                              "message": f"All {counts['checked']} reads failed"})
                await self.registry.record_error(platform, {"operation": "reconcile", "code": "REMOTE_ERROR",
                                                            "message": "All listing reads failed"})
            else:
                self.ledger.set_result(entry, platform, PlatformResultStatus.SUCCESS, response=counts)
                await self.registry.record_usage(platform, synced_at=now)

        await self.ledger.complete(entry)
        await self.db.commit()
        report.sync_log_id = entry.id
        logger.info(f"Reconciliation finished: {report.summary()}")
        return report
