import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from crosslister.core.enums import NotificationStatus, NotificationType
from crosslister.core.exceptions import BaseServiceError
from crosslister.dependencies import get_notification_service, get_sync_engine
from crosslister.routes.errors import http_error
from crosslister.schemas.notification import ApproveRequest, NotificationCounts, NotificationRead
from crosslister.services.notification_service import NotificationService
from crosslister.services.sync_engine import SyncEngine

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

logger = logging.getLogger(__name__)


@router.get("", response_model=List[NotificationRead], response_model_by_alias=True)
async def list_notifications(
    status: Optional[NotificationStatus] = None,
    type: Optional[NotificationType] = None,
    platform: Optional[str] = None,
    assigned_to: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    service: NotificationService = Depends(get_notification_service),
):
    notifications = await service.list(
        status=status, type=type, platform=platform, assigned_to=assigned_to, limit=limit
    )
    return [NotificationRead.model_validate(n) for n in notifications]


@router.get("/counts", response_model=NotificationCounts)
async def notification_counts(service: NotificationService = Depends(get_notification_service)):
    return NotificationCounts(**await service.counts())


@router.get("/pending-approvals", response_model=List[NotificationRead], response_model_by_alias=True)
async def pending_approvals(
    assigned_to: Optional[str] = None,
    service: NotificationService = Depends(get_notification_service),
):
    return [NotificationRead.model_validate(n) for n in await service.pending_approvals(assigned_to)]


@router.put("/{notification_id}/read", response_model=NotificationRead, response_model_by_alias=True)
async def mark_read(notification_id: int, service: NotificationService = Depends(get_notification_service)):
    try:
        return NotificationRead.model_validate(await service.mark_read(notification_id))
    except BaseServiceError as e:
        raise http_error(e)


@router.put("/{notification_id}/archive", response_model=NotificationRead, response_model_by_alias=True)
async def archive(notification_id: int, service: NotificationService = Depends(get_notification_service)):
    try:
        return NotificationRead.model_validate(await service.archive(notification_id))
    except BaseServiceError as e:
        raise http_error(e)


@router.post("/{notification_id}/approve", response_model=NotificationRead, response_model_by_alias=True)
async def approve(
    notification_id: int,
    request: ApproveRequest,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Approve a change made directly on a marketplace. Approving twice is a no-op."""
    try:
        return NotificationRead.model_validate(
            await engine.approve_third_party_action(notification_id, request.approved_by)
        )
    except BaseServiceError as e:
        raise http_error(e)
