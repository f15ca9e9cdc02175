# crosslister/models/listing.py
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text,
)
from sqlalchemy.ext.mutable import MutableList

from crosslister.database import Base, json_type
from crosslister.core.enums import ListingStatus, SyncStatus

OPEN_STATUS_CLAUSE = text("status IN ('active', 'pending')")


class Listing(Base):
    """
    One row per (product, platform) listing attempt that reached the platform.

    Rows are never deleted; sold/delisted/ended rows are the audit trail of
    where a product has been listed.
    """
    __tablename__ = "listings"
    __table_args__ = (
        # At most one open listing per product/platform pair
        Index(
            "uq_listings_open_product_platform",
            "product_id", "platform",
            unique=True,
            postgresql_where=OPEN_STATUS_CLAUSE,
            sqlite_where=OPEN_STATUS_CLAUSE,
        ),
        UniqueConstraint("platform", "platform_listing_id", name="uq_listings_platform_listing_id"),
        Index("ix_listings_product_platform", "product_id", "platform"),
    )

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    platform = Column(String(32), nullable=False, index=True)
    platform_listing_id = Column(String, nullable=False)
    listing_url = Column(String)

    # Snapshot of what was listed (may differ from the product)
    title = Column(String)
    description = Column(Text)
    price = Column(Float)
    quantity = Column(Integer)
    platform_data = Column(json_type(), default=dict)

    status = Column(String(16), default=ListingStatus.DRAFT.value, nullable=False, index=True)
    listed_at = Column(DateTime(timezone=True))
    ended_at = Column(DateTime(timezone=True))
    sold_at = Column(DateTime(timezone=True), index=True)

    views = Column(Integer, default=0, nullable=False)
    watchers = Column(Integer, default=0, nullable=False)
    questions = Column(Integer, default=0, nullable=False)

    sale_price = Column(Float)
    buyer_info = Column(json_type())
    # listing_fee, final_value_fee, payment_processing_fee, shipping_fee, total
    platform_fees = Column(json_type(), default=dict)

    last_synced_at = Column(DateTime(timezone=True))
    sync_status = Column(String(16), default=SyncStatus.PENDING.value, nullable=False, index=True)
    sync_errors = Column(MutableList.as_mutable(json_type()), default=list)

    auto_sync_enabled = Column(Boolean, default=True, nullable=False)
    sync_price = Column(Boolean, default=True, nullable=False)
    sync_quantity = Column(Boolean, default=True, nullable=False)
    sync_description = Column(Boolean, default=False, nullable=False)

    notes = Column(Text)
    is_manually_managed = Column(Boolean, default=False, nullable=False)

    @property
    def fee_total(self) -> float:
        fees = self.platform_fees or {}
        return float(fees.get("total") or 0.0)

    @property
    def net_profit(self) -> float:
        if not self.sale_price:
            return 0.0
        return self.sale_price - self.fee_total

    @property
    def listing_age_days(self) -> int:
        if not self.listed_at:
            return 0
        listed_at = self.listed_at
        if listed_at.tzinfo is None:
            listed_at = listed_at.replace(tzinfo=timezone.utc)
        return (datetime.now(timezone.utc) - listed_at).days

    def mark_sold(self, sale_price: float, buyer_info=None, fees=None, sold_at=None):
        self.status = ListingStatus.SOLD.value
        self.sold_at = sold_at or datetime.now(timezone.utc)
        self.sale_price = sale_price
        if buyer_info:
            self.buyer_info = buyer_info
        if fees:
            self.platform_fees = fees

    def delist(self, reason: str, ended_at=None, status=ListingStatus.DELISTED):
        status = ListingStatus(status)
        self.status = status.value
        self.ended_at = ended_at or datetime.now(timezone.utc)
        self.notes = (self.notes or "") + f"\n{status.value.capitalize()}: {reason}"

    def record_sync_error(self, error: str, details=None, timestamp=None):
        self.sync_status = SyncStatus.ERROR.value
        if self.sync_errors is None:
            self.sync_errors = []
        self.sync_errors.append({
            "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
            "error": error,
            "details": details or {},
        })

    def __repr__(self):
        return (f"<Listing(id={self.id}, product_id={self.product_id}, platform='{self.platform}', "
                f"status='{self.status}', sync_status='{self.sync_status}')>")
