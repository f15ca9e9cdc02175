"""
Notification / approval channel.

Operators see sales, sync errors and changes made directly on a marketplace
as notifications. Third-party changes can be gated behind ``approve``.
Notifications that need no action expire after ``NOTIFICATION_TTL_DAYS``.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.core.config import Settings, get_settings
from crosslister.core.enums import (
    NotificationPriority, NotificationStatus, NotificationType, Platform,
)
from crosslister.core.exceptions import NotificationNotFoundError
from crosslister.core.utils import utcnow
from crosslister.models.notification import Notification
from crosslister.services.email_service import EmailService

logger = logging.getLogger(__name__)

SYSTEM_PLATFORM = "system"


class NotificationService:

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.email_service = email_service or EmailService(self.settings)

    async def create(
        self,
        *,
        type: NotificationType,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        product_id: Optional[int] = None,
        listing_id: Optional[int] = None,
        platform: Optional[str] = None,
        action_required: bool = False,
        action_url: Optional[str] = None,
        third_party: Optional[Dict[str, Any]] = None,
        assigned_to: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """
        Add a notification to the session (flush only).

        ``third_party`` describes a change made on the marketplace itself:
        ``{action_type, performed_by, performed_at, details, requires_approval}``.
        """
        now = utcnow()
        notification = Notification(
            created_at=now,
            type=NotificationType(type).value,
            priority=NotificationPriority(priority).value,
            product_id=product_id,
            listing_id=listing_id,
            platform=platform or SYSTEM_PLATFORM,
            title=title,
            message=message,
            action_required=action_required,
            action_url=action_url,
            status=NotificationStatus.UNREAD.value,
            assigned_to=list(assigned_to or []),
            meta=metadata,
        )
        if third_party:
            notification.is_third_party = True
            notification.third_party_action_type = third_party.get("action_type")
            notification.performed_by = third_party.get("performed_by")
            notification.performed_at = third_party.get("performed_at") or now
            notification.third_party_details = third_party.get("details")
            notification.requires_approval = bool(third_party.get("requires_approval"))
            notification.approved = False

        # Anything an operator has to act on stays until handled
        if not action_required and not notification.requires_approval:
            notification.expires_at = now + timedelta(days=self.settings.NOTIFICATION_TTL_DAYS)

        self.db.add(notification)
        await self.db.flush()
        logger.info(f"Notification {notification.id} created: {notification.type} ({notification.priority})")
        return notification

    async def sync_error(
        self,
        *,
        platform: Platform,
        operation: str,
        error: Dict[str, Any],
        product_id: Optional[int] = None,
        listing_id: Optional[int] = None,
        sync_log_id: Optional[int] = None,
    ) -> Notification:
        platform = Platform(platform)
        return await self.create(
            type=NotificationType.SYNC_ERROR,
            priority=NotificationPriority.HIGH,
            title=f"{platform.display_name} {operation} failed",
            message=f"{platform.display_name} {operation} failed: {error.get('message')}",
            product_id=product_id,
            listing_id=listing_id,
            platform=platform.value,
            action_required=True,
            metadata={"operation": operation, "error": error, "sync_log_id": sync_log_id},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def get(self, notification_id: int) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if not notification:
            raise NotificationNotFoundError(
                f"Notification {notification_id} not found", details={"notification_id": notification_id}
            )
        return notification

    @staticmethod
    def _for_assignee(notifications, assigned_to: Optional[str]):
        # An empty assignment list means the notification is for everyone
        if not assigned_to:
            return notifications
        return [n for n in notifications if not n.assigned_to or assigned_to in n.assigned_to]

    async def list(
        self,
        status: Optional[NotificationStatus] = None,
        type: Optional[NotificationType] = None,
        platform: Optional[str] = None,
        assigned_to: Optional[str] = None,
        limit: int = 50,
    ) -> List[Notification]:
        query = select(Notification)
        if status:
            query = query.where(Notification.status == NotificationStatus(status).value)
        if type:
            query = query.where(Notification.type == NotificationType(type).value)
        if platform:
            query = query.where(Notification.platform == platform)
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        result = await self.db.execute(query)
        return self._for_assignee(list(result.scalars().all()), assigned_to)

    async def unread(self, assigned_to: Optional[str] = None, limit: int = 50) -> List[Notification]:
        return await self.list(status=NotificationStatus.UNREAD, assigned_to=assigned_to, limit=limit)

    async def pending_approvals(self, assigned_to: Optional[str] = None) -> List[Notification]:
        result = await self.db.execute(
            select(Notification)
            .where(
                Notification.is_third_party.is_(True),
                Notification.requires_approval.is_(True),
                Notification.approved.is_(False),
                Notification.status != NotificationStatus.ARCHIVED.value,
            )
            .order_by(Notification.created_at.asc(), Notification.id.asc())
        )
        return self._for_assignee(list(result.scalars().all()), assigned_to)

    async def find_open_third_party(self, listing_id: int, field: str, value: Any) -> Optional[Notification]:
        """Unapproved third-party notification already raised for this listing/field/value, if any."""
        candidates = await self.db.execute(
            select(Notification).where(
                Notification.listing_id == listing_id,
                Notification.is_third_party.is_(True),
                Notification.approved.is_(False),
                Notification.third_party_action_type == field,
            )
        )
        for notification in candidates.scalars().all():
            details = notification.third_party_details or {}
            if details.get("new_value") == value:
                return notification
        return None

    async def counts(self) -> Dict[str, int]:
        total = await self.db.scalar(
            select(func.count(Notification.id)).where(Notification.status != NotificationStatus.ARCHIVED.value)
        )
        unread = await self.db.scalar(
            select(func.count(Notification.id)).where(Notification.status == NotificationStatus.UNREAD.value)
        )
        pending = await self.db.scalar(
            select(func.count(Notification.id)).where(
                Notification.is_third_party.is_(True),
                Notification.requires_approval.is_(True),
                Notification.approved.is_(False),
                Notification.status != NotificationStatus.ARCHIVED.value,
            )
        )
        return {"unread": unread or 0, "total": total or 0, "pending_approvals": pending or 0}

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------
    async def mark_read(self, notification_id: int) -> Notification:
        notification = await self.get(notification_id)
        if notification.status == NotificationStatus.UNREAD.value:
            notification.status = NotificationStatus.READ.value
            notification.read_at = utcnow()
        await self.db.commit()
        return notification

    async def archive(self, notification_id: int) -> Notification:
        notification = await self.get(notification_id)
        notification.status = NotificationStatus.ARCHIVED.value
        notification.archived_at = utcnow()
        await self.db.commit()
        return notification

    async def approve(self, notification_id: int, approved_by: str) -> tuple:
        """
        Approve a third-party action. Idempotent: approving twice keeps the
        first approver and timestamp.

        Returns ``(notification, newly_approved)``. Flushes only; the caller commits.
        """
        notification = await self.get(notification_id)
        if notification.approved:
            logger.info(f"Notification {notification_id} already approved by {notification.approved_by}")
            return notification, False

        now = utcnow()
        notification.approved = True
        notification.approved_by = approved_by
        notification.approved_at = now
        notification.status = NotificationStatus.ACTIONED.value
        notification.actioned_at = now
        await self.db.flush()
        logger.info(f"Notification {notification_id} approved by {approved_by}")
        return notification, True

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        result = await self.db.execute(
            delete(Notification).where(Notification.expires_at.is_not(None), Notification.expires_at <= now)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired notifications")
        return result.rowcount or 0

    async def send_sale_email(self, *, product, platform: Platform, sale_price: float,
                              listing_url: Optional[str], delisted: List[str], failed: List[str]) -> bool:
        """E-mail the sale to NOTIFICATION_EMAILS. Never raises; returns False when skipped or failed."""
        return await self.email_service.send_sale_alert(
            product=product,
            platform=Platform(platform).display_name,
            sale_price=sale_price,
            listing_url=listing_url,
            delisted_platforms=delisted,
            failed_platforms=failed,
        )
