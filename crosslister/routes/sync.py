import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.core.enums import Platform, SyncLogStatus, SyncTrigger
from crosslister.core.exceptions import BaseServiceError
from crosslister.dependencies import get_db, get_reconciliation_service, get_sync_engine
from crosslister.routes.errors import http_error
from crosslister.schemas.listing import MultiPlatformResult, ProductChanges
from crosslister.schemas.sync_log import SyncLogRead
from crosslister.services.reconciliation_service import ReconciliationService
from crosslister.services.sync_engine import SyncEngine
from crosslister.services.sync_ledger import SyncLedger

router = APIRouter(prefix="/api/sync", tags=["sync"])

logger = logging.getLogger(__name__)


@router.post("/product/{product_id}", response_model=MultiPlatformResult)
async def sync_product(product_id: int, changes: ProductChanges, engine: SyncEngine = Depends(get_sync_engine)):
    """Push catalog changes to the product's auto-synced listings."""
    try:
        return await engine.sync_product(product_id, changes, triggered_by=SyncTrigger.USER)
    except BaseServiceError as e:
        raise http_error(e)


@router.get("/logs", response_model=List[SyncLogRead])
async def list_sync_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    status: Optional[SyncLogStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    entries = await SyncLedger(db).list_logs(entity_type=entity_type, entity_id=entity_id, status=status, limit=limit)
    return [SyncLogRead.model_validate(entry) for entry in entries]


@router.post("/reconcile")
async def reconcile(
    platforms: Optional[List[Platform]] = Query(None),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> Dict[str, Any]:
    """Check active listings for changes made directly on the marketplaces."""
    report = await service.reconcile(platforms, triggered_by=SyncTrigger.USER)
    return {"status": "success", **report.summary(), "changes": report.changes_detected}
