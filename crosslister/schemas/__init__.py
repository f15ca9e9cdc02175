"""
Schema exports.
"""
from .base import BaseSchema
from .listing import (
    ProductSnapshot,
    ListingPayload,
    ListingFees,
    BuyerInfo,
    SaleData,
    ListingUpdate,
    ProductChanges,
    ListingCreateRequest,
    MultiListingCreateRequest,
    ListingRead,
    PlatformResult,
    CreateListingResult,
    UpdateListingResult,
    MultiPlatformResult,
    SaleResult,
)
from .platform import (
    EbaySettings,
    FacebookSettings,
    DepopSettings,
    CraigslistSettings,
    PlatformSettings,
    parse_platform_settings,
    PlatformCredentials,
    DefaultListingSettings,
    FeeSchedule,
    RateLimits,
    PlatformConfigUpdate,
    PlatformConfigRead,
    PlatformStats,
)
from .notification import NotificationRead, NotificationCounts, ApproveRequest
from .sync_log import SyncLogRead
