import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from crosslister.core.enums import Platform
from crosslister.core.exceptions import BaseServiceError
from crosslister.dependencies import get_sync_engine
from crosslister.routes.errors import http_error
from crosslister.schemas.listing import (
    CreateListingResult, EndListingRequest, EndListingResult, ListingCreateRequest, ListingRead, ListingUpdate,
    MultiListingCreateRequest, MultiPlatformResult, SaleData, SaleResult, UpdateListingResult,
)
from crosslister.services.sync_engine import SyncEngine

router = APIRouter(prefix="/api/listings", tags=["listings"])

logger = logging.getLogger(__name__)


@router.post("", response_model=CreateListingResult, status_code=201)
async def create_listing(request: ListingCreateRequest, engine: SyncEngine = Depends(get_sync_engine)):
    """List one product on one platform."""
    try:
        return await engine.create_listing(request.product_id, request.platform, request.custom_data)
    except BaseServiceError as e:
        raise http_error(e)


@router.post("/multi", response_model=MultiPlatformResult)
async def create_multi_platform_listing(
    request: MultiListingCreateRequest,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """
    List one product on several platforms. A partial result is still a 200;
    callers must inspect the per-platform results.
    """
    try:
        return await engine.create_multi_platform_listing(request.product_id, request.platforms, request.custom_data)
    except BaseServiceError as e:
        raise http_error(e)


@router.put("/{listing_id}", response_model=UpdateListingResult)
async def update_listing(listing_id: int, updates: ListingUpdate, engine: SyncEngine = Depends(get_sync_engine)):
    try:
        return await engine.update_listing(listing_id, updates)
    except BaseServiceError as e:
        raise http_error(e)


@router.post("/{listing_id}/sold", response_model=SaleResult)
async def mark_sold(listing_id: int, sale: SaleData, engine: SyncEngine = Depends(get_sync_engine)):
    """Record a sale and end the product's listings everywhere else."""
    try:
        return await engine.handle_sale(listing_id, sale)
    except BaseServiceError as e:
        raise http_error(e)


@router.post("/{listing_id}/end", response_model=EndListingResult)
async def end_listing(
    listing_id: int,
    request: Optional[EndListingRequest] = None,
    engine: SyncEngine = Depends(get_sync_engine),
):
    request = request or EndListingRequest()
    try:
        return await engine.end_listing(listing_id, request.reason, status=request.status)
    except BaseServiceError as e:
        raise http_error(e)


@router.get("/product/{product_id}", response_model=List[ListingRead])
async def get_product_listings(product_id: int, engine: SyncEngine = Depends(get_sync_engine)):
    listings = await engine.listings_for_product(product_id)
    return [ListingRead.model_validate(listing) for listing in listings]


@router.get("/active", response_model=List[ListingRead])
async def get_active_listings(
    platform: Optional[Platform] = None,
    limit: int = 100,
    engine: SyncEngine = Depends(get_sync_engine),
):
    listings = await engine.active_listings(platform, limit=limit)
    return [ListingRead.model_validate(listing) for listing in listings]
