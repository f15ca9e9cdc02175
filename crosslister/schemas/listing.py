"""
Schemas for listings and for the request/response shapes of sync operations.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from crosslister.core.enums import (
    ListingStatus, Platform, PlatformResultStatus, SyncLogStatus, SyncStatus, SyncTrigger,
)
from crosslister.schemas.base import BaseSchema


class ProductSnapshot(BaseSchema):
    """The slice of a catalog product the engine reads."""
    id: int
    title: str
    description: Optional[str] = None
    price: float = 0.0
    quantity: int = 0
    condition: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    sku: Optional[str] = None
    upc: Optional[str] = None
    status: Optional[str] = None

    @field_validator('images', mode='before')
    @classmethod
    def validate_images(cls, v):
        if v is None:
            return []
        # Catalog images may be stored as {"url": ...} records
        return [img.get("url") if isinstance(img, dict) else img for img in v]


class ListingPayload(BaseModel):
    """Platform-neutral listing payload handed to adapters."""
    model_config = ConfigDict(extra="allow")

    title: str
    description: str = ""
    price: float
    quantity: int = 1
    condition: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    sku: Optional[str] = None
    upc: Optional[str] = None
    shipping_cost: Optional[float] = None
    handling_time: Optional[int] = None

    @property
    def extra(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class ListingFees(BaseModel):
    listing_fee: float = 0.0
    final_value_fee: float = 0.0
    payment_processing_fee: float = 0.0
    shipping_fee: float = 0.0
    total: Optional[float] = None

    @model_validator(mode='after')
    def fill_total(self):
        if self.total is None:
            self.total = round(
                self.listing_fee + self.final_value_fee + self.payment_processing_fee + self.shipping_fee, 2
            )
        return self


class BuyerInfo(BaseModel):
    platform_user_id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None


class SaleData(BaseModel):
    price: float = Field(ge=0)
    buyer_info: Optional[BuyerInfo] = None
    fees: Optional[ListingFees] = None
    sold_at: Optional[datetime] = None
    triggered_by: SyncTrigger = SyncTrigger.USER


class ListingUpdate(BaseModel):
    """Fields that may be pushed to a live listing."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[int] = Field(default=None, ge=0)


class EndListingRequest(BaseModel):
    reason: str = Field(default="Ended by operator", min_length=1)
    # delisted: taken down by us; ended: closed on the marketplace side
    status: ListingStatus = ListingStatus.DELISTED

    @field_validator('status')
    @classmethod
    def closing_status(cls, v):
        if v not in (ListingStatus.DELISTED, ListingStatus.ENDED):
            raise ValueError('status must be delisted or ended')
        return v


class ProductChanges(BaseModel):
    """Catalog-side changes that auto-sync may push to live listings."""
    price: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None


class ListingCreateRequest(BaseModel):
    product_id: int
    platform: Platform
    custom_data: Dict[str, Any] = Field(default_factory=dict)


class MultiListingCreateRequest(BaseModel):
    product_id: int
    platforms: List[Platform] = Field(min_length=1)
    # Overrides keyed by platform value
    custom_data: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @field_validator('platforms')
    @classmethod
    def unique_platforms(cls, v):
        if len(set(v)) != len(v):
            raise ValueError('platforms must not contain duplicates')
        return v


class ListingRead(BaseSchema):
    id: int
    product_id: int
    platform: Platform
    platform_listing_id: str
    listing_url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None
    status: ListingStatus
    listed_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    sold_at: Optional[datetime] = None
    views: int = 0
    watchers: int = 0
    questions: int = 0
    sale_price: Optional[float] = None
    buyer_info: Optional[Dict[str, Any]] = None
    platform_fees: Optional[Dict[str, Any]] = None
    net_profit: float = 0.0
    last_synced_at: Optional[datetime] = None
    sync_status: SyncStatus
    sync_errors: List[Dict[str, Any]] = Field(default_factory=list)
    auto_sync_enabled: bool = True
    is_manually_managed: bool = False
    sync_price: bool = True
    sync_quantity: bool = True
    sync_description: bool = False
    notes: Optional[str] = None


class PlatformResult(BaseModel):
    """Outcome of one platform's slice of an operation."""
    platform: Platform
    status: PlatformResultStatus
    listing: Optional[ListingRead] = None
    platform_listing_id: Optional[str] = None
    updates: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    message: Optional[str] = None


class CreateListingResult(BaseModel):
    listing: ListingRead
    platform_response: Dict[str, Any] = Field(default_factory=dict)
    sync_log_id: Optional[int] = None


class UpdateListingResult(BaseModel):
    listing: ListingRead
    platform_response: Dict[str, Any] = Field(default_factory=dict)
    sync_log_id: Optional[int] = None


class EndListingResult(BaseModel):
    listing: ListingRead
    platform_response: Dict[str, Any] = Field(default_factory=dict)
    sync_log_id: Optional[int] = None


class MultiPlatformResult(BaseModel):
    status: SyncLogStatus
    results: List[PlatformResult]
    success_count: int
    total_count: int
    sync_log_id: Optional[int] = None


class SaleResult(BaseModel):
    sold_listing: ListingRead
    delist_results: List[PlatformResult]
    product: ProductSnapshot
    sync_log_id: Optional[int] = None
