"""
Schemas for platform configuration.

Each marketplace gets its own settings model; ``PlatformSettings`` is a
discriminated union on ``platform`` so an adapter only ever receives its own
well-typed settings.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from crosslister.core.enums import Platform
from crosslister.schemas.base import BaseSchema


class EbaySettings(BaseModel):
    platform: Literal["ebay"] = "ebay"
    site_id: int = 0  # 0 = US
    category_id: Optional[str] = None
    listing_duration: str = "GTC"
    payment_methods: List[str] = Field(default_factory=lambda: ["PayPal"])
    shipping_services: List[Dict[str, Any]] = Field(default_factory=list)
    return_policy: Optional[Dict[str, Any]] = None
    postal_code: str = "00000"
    country: str = "US"
    currency: str = "USD"
    sandbox: bool = False


class FacebookLocation(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None


class FacebookSettings(BaseModel):
    platform: Literal["facebook"] = "facebook"
    page_id: Optional[str] = None
    page_name: Optional[str] = None
    location: FacebookLocation = Field(default_factory=FacebookLocation)
    delivery_options: List[str] = Field(default_factory=lambda: ["shipping", "local_pickup"])
    currency: str = "USD"


class DepopSettings(BaseModel):
    platform: Literal["depop"] = "depop"
    shop_name: Optional[str] = None
    shipping_profiles: List[Dict[str, Any]] = Field(default_factory=list)
    default_shipping_profile: Optional[str] = None
    currency: str = "USD"


class CraigslistSettings(BaseModel):
    platform: Literal["craigslist"] = "craigslist"
    city: Optional[str] = None
    area: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None


PlatformSettings = Annotated[
    Union[EbaySettings, FacebookSettings, DepopSettings, CraigslistSettings],
    Field(discriminator="platform"),
]

_settings_adapter = TypeAdapter(PlatformSettings)


def parse_platform_settings(platform: Platform, raw: Optional[Dict[str, Any]]):
    """Validate a stored settings blob into the model for ``platform``."""
    data = dict(raw or {})
    data["platform"] = Platform(platform).value
    return _settings_adapter.validate_python(data)


class PlatformCredentials(BaseModel):
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    user_id: Optional[str] = None
    username: Optional[str] = None


class DefaultListingSettings(BaseModel):
    auto_relist: bool = False
    auto_sync: bool = True
    price_markup: float = 0.0  # percentage
    min_price: float = 0.0
    max_price: float = 10000.0
    default_shipping_cost: float = 0.0
    default_handling_time: int = 2  # days


class FeeSchedule(BaseModel):
    listing_fee: float = 0.0
    final_value_fee_percentage: float = 0.0
    payment_processing_fee_percentage: float = 0.0
    fixed_fee: float = 0.0


class RateLimits(BaseModel):
    listings_per_day: int = 100
    listings_per_hour: int = 20
    api_calls_per_minute: int = 60


class PlatformConfigUpdate(BaseModel):
    settings: Optional[Dict[str, Any]] = None
    default_settings: Optional[DefaultListingSettings] = None
    fees: Optional[FeeSchedule] = None
    rate_limits: Optional[RateLimits] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None


class ConnectRequest(BaseModel):
    credentials: PlatformCredentials


class PlatformConfigRead(BaseSchema):
    platform: Platform
    is_active: bool
    is_connected: bool
    connection_status: str
    settings: Dict[str, Any] = Field(default_factory=dict)
    default_settings: Dict[str, Any] = Field(default_factory=dict)
    fees: Dict[str, Any] = Field(default_factory=dict)
    rate_limits: Dict[str, Any] = Field(default_factory=dict)
    total_listings: int = 0
    active_listings: int = 0
    total_sales: int = 0
    total_revenue: float = 0.0
    last_listing_date: Optional[datetime] = None
    last_sync_date: Optional[datetime] = None
    last_error: Optional[Dict[str, Any]] = None
    error_count: int = 0
    connection_history: List[Dict[str, Any]] = Field(default_factory=list)
    # Secrets stripped; only non-sensitive identity fields are exposed
    username: Optional[str] = None
    token_expiry: Optional[datetime] = None


class PlatformStats(BaseModel):
    is_connected: bool
    active_listings: int
    total_sales: int
    total_revenue: float
    total_fees: float
    net_profit: float
    last_sync: Optional[datetime] = None
    error_count: int
