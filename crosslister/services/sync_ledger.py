"""
Sync Ledger

Append-only audit trail of synchronization operations. One SyncLogEntry per
operation, with a sub-result per platform. Entries are only ever updated by
id; an entry left ``pending`` marks an operation that never completed.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.core.enums import (
    Platform, PlatformResultStatus, SyncLogStatus, SyncOperation, SyncTrigger,
)
from crosslister.core.utils import elapsed_ms, utcnow
from crosslister.models.sync_log import SyncLogEntry

logger = logging.getLogger(__name__)


def overall_status(sub_statuses: List[str]) -> SyncLogStatus:
    """
    success iff every attempted platform succeeded, failed iff every attempted
    platform failed, partial otherwise. Skipped platforms were never attempted
    and do not count; an operation with nothing attempted is a success.
    """
    attempted = [s for s in sub_statuses if s != PlatformResultStatus.SKIPPED.value]
    if not attempted:
        return SyncLogStatus.SUCCESS
    succeeded = sum(1 for s in attempted if s == PlatformResultStatus.SUCCESS.value)
    if succeeded == len(attempted):
        return SyncLogStatus.SUCCESS
    if succeeded == 0:
        return SyncLogStatus.FAILED
    return SyncLogStatus.PARTIAL


class SyncLedger:
    """Creates, fills in and completes SyncLogEntry rows. Flushes, never commits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def start(
        self,
        *,
        entity_type: str,
        entity_id: Any,
        operation: SyncOperation,
        platforms: List[Platform],
        triggered_by: SyncTrigger = SyncTrigger.USER,
        user_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        started_at: Optional[datetime] = None,
    ) -> SyncLogEntry:
        entry = SyncLogEntry(
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            operation=SyncOperation(operation).value,
            triggered_by=SyncTrigger(triggered_by).value,
            user_id=user_id,
            platforms=[
                {"platform": Platform(p).value, "status": PlatformResultStatus.PENDING.value}
                for p in platforms
            ],
            changes=changes,
            status=SyncLogStatus.PENDING.value,
            started_at=started_at or utcnow(),
            errors=[],
            meta=metadata,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.debug(f"Sync log {entry.id} started: {entry.operation} {entity_type}:{entity_id}")
        return entry

    def set_result(
        self,
        entry: SyncLogEntry,
        platform: Platform,
        status: PlatformResultStatus,
        *,
        platform_listing_id: Optional[str] = None,
        error: Optional[Dict[str, Any]] = None,
        response: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Resolve one platform's sub-result; appends one if the platform was not listed at start."""
        platform = Platform(platform).value
        result = {
            "platform": platform,
            "status": PlatformResultStatus(status).value,
            "platform_listing_id": platform_listing_id,
            "error": error,
            "response": response,
        }
        for index, existing in enumerate(entry.platforms):
            if existing["platform"] == platform and existing["status"] == PlatformResultStatus.PENDING.value:
                entry.platforms[index] = result
                break
        else:
            entry.platforms.append(result)

        if error:
            self.add_error(entry, platform, error)

    def add_error(self, entry: SyncLogEntry, platform: Optional[str], error: Dict[str, Any]) -> None:
        entry.errors.append({
            "platform": platform,
            "code": error.get("code"),
            "message": error.get("message"),
            "details": error.get("details"),
        })

    async def complete(self, entry: SyncLogEntry, status: Optional[SyncLogStatus] = None) -> SyncLogEntry:
        """Finalize: compute overall status (unless forced), stamp completion and duration."""
        completed_at = utcnow()
        if status is None:
            status = overall_status([p["status"] for p in entry.platforms])
        entry.status = SyncLogStatus(status).value
        entry.completed_at = completed_at
        entry.duration = elapsed_ms(entry.started_at, completed_at)
        await self.db.flush()
        logger.info(
            f"Sync log {entry.id} {entry.operation} {entry.entity_type}:{entry.entity_id} "
            f"completed as {entry.status} in {entry.duration}ms"
        )
        return entry

    async def fail(self, entry: SyncLogEntry, error: Dict[str, Any]) -> SyncLogEntry:
        """Complete an entry as failed because of an error outside any single platform."""
        self.add_error(entry, None, error)
        entry.platforms = [
            {**sub, "status": PlatformResultStatus.FAILED.value, "error": error}
            if sub["status"] == PlatformResultStatus.PENDING.value else sub
            for sub in entry.platforms
        ]
        return await self.complete(entry, SyncLogStatus.FAILED)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def get(self, log_id: int) -> Optional[SyncLogEntry]:
        return await self.db.get(SyncLogEntry, log_id)

    async def history(self, entity_type: str, entity_id: Any, limit: int = 50) -> List[SyncLogEntry]:
        result = await self.db.execute(
            select(SyncLogEntry)
            .where(SyncLogEntry.entity_type == entity_type, SyncLogEntry.entity_id == str(entity_id))
            .order_by(SyncLogEntry.started_at.desc(), SyncLogEntry.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def recent_activity(self, hours: int = 24, limit: int = 100) -> List[SyncLogEntry]:
        since = utcnow() - timedelta(hours=hours)
        result = await self.db.execute(
            select(SyncLogEntry)
            .where(SyncLogEntry.started_at >= since)
            .order_by(SyncLogEntry.started_at.desc(), SyncLogEntry.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        status: Optional[SyncLogStatus] = None,
        limit: int = 100,
    ) -> List[SyncLogEntry]:
        query = select(SyncLogEntry)
        if entity_type:
            query = query.where(SyncLogEntry.entity_type == entity_type)
        if entity_id is not None:
            query = query.where(SyncLogEntry.entity_id == str(entity_id))
        if status:
            query = query.where(SyncLogEntry.status == SyncLogStatus(status).value)
        query = query.order_by(SyncLogEntry.started_at.desc(), SyncLogEntry.id.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
