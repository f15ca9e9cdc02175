# crosslister/models/platform_config.py
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.ext.mutable import MutableDict, MutableList

from crosslister.database import Base, json_type


class PlatformConfig(Base):
    """
    Connection state, credentials, settings and usage counters for one marketplace.

    Usage counters are real columns so the engine can increment them with a
    single UPDATE ... SET x = x + n instead of read-modify-write.
    """
    __tablename__ = "platform_configs"

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    platform = Column(String(32), unique=True, nullable=False, index=True)
    is_connected = Column(Boolean, default=False, nullable=False, index=True)
    is_active = Column(Boolean, default=False, nullable=False, index=True)

    # api_key, api_secret, access_token, refresh_token, token_expiry, user_id, username
    credentials = Column(MutableDict.as_mutable(json_type()), default=dict)
    # Platform specific settings, validated through schemas.platform.PlatformSettings
    settings = Column(MutableDict.as_mutable(json_type()), default=dict)
    # auto_relist, auto_sync, price_markup, min_price, max_price, default_shipping_cost, default_handling_time
    default_settings = Column(MutableDict.as_mutable(json_type()), default=dict)
    # listing_fee, final_value_fee_percentage, payment_processing_fee_percentage, fixed_fee
    fees = Column(MutableDict.as_mutable(json_type()), default=dict)
    # listings_per_day, listings_per_hour, api_calls_per_minute
    rate_limits = Column(MutableDict.as_mutable(json_type()), default=dict)

    # Usage counters, owned by the sync engine
    total_listings = Column(Integer, default=0, nullable=False)
    active_listings = Column(Integer, default=0, nullable=False)
    total_sales = Column(Integer, default=0, nullable=False)
    total_revenue = Column(Float, default=0.0, nullable=False)
    last_listing_date = Column(DateTime(timezone=True))
    last_sync_date = Column(DateTime(timezone=True))

    last_error = Column(json_type())
    error_count = Column(Integer, default=0, nullable=False)
    connection_history = Column(MutableList.as_mutable(json_type()), default=list)

    notes = Column(Text)

    def add_history(self, action: str, status: str, details: str):
        if self.connection_history is None:
            self.connection_history = []
        self.connection_history.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "status": status,
            "details": details,
        })

    def __repr__(self):
        return (f"<PlatformConfig(platform='{self.platform}', active={self.is_active}, "
                f"connected={self.is_connected}, errors={self.error_count})>")
