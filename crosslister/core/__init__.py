"""
Core module exports.
"""
from .enums import (
    Platform,
    ProductStatus,
    ListingStatus,
    SyncStatus,
    SyncOperation,
    SyncTrigger,
    SyncLogStatus,
    PlatformResultStatus,
    NotificationType,
    NotificationPriority,
    NotificationStatus,
)

from .exceptions import (
    BaseServiceError,
    NotFoundError,
    ProductNotFoundError,
    ListingNotFoundError,
    PlatformConfigNotFoundError,
    NotificationNotFoundError,
    ValidationError,
    ListingStateError,
    PlatformServiceError,
    PlatformUnavailableError,
    PlatformConfigurationError,
    DuplicateListingError,
    AdapterError,
    UnsupportedOperationError,
)
