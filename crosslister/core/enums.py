"""
Shared enums and constants used across the application.
"""

from enum import Enum


class Platform(str, Enum):
    EBAY = "ebay"
    FACEBOOK = "facebook"
    DEPOP = "depop"
    CRAIGSLIST = "craigslist"

    @property
    def display_name(self):
        return {
            "ebay": "eBay",
            "facebook": "Facebook Marketplace",
            "depop": "Depop",
            "craigslist": "Craigslist",
        }[self.value]


class ProductStatus(str, Enum):
    """Product status values used in both models and schemas"""
    DRAFT = "draft"
    ACTIVE = "active"
    SOLD = "sold"
    ARCHIVED = "archived"


class ListingStatus(str, Enum):
    """Lifecycle of a single (product, platform) listing"""
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    SOLD = "sold"
    ENDED = "ended"
    ERROR = "error"
    DELISTED = "delisted"

    @classmethod
    def open_statuses(cls):
        # At most one listing per (product, platform) may be in one of these
        return (cls.ACTIVE.value, cls.PENDING.value)


class SyncStatus(str, Enum):
    """Whether local listing data matches the platform."""
    SYNCED = "synced"    # Local data matches the platform
    PENDING = "pending"  # Sync action initiated or scheduled
    ERROR = "error"      # Last remote update failed; local data kept
    MANUAL = "manual"    # Managed by hand on the platform


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SYNC = "sync"
    DELIST = "delist"
    RELIST = "relist"


class SyncTrigger(str, Enum):
    USER = "user"
    SYSTEM = "system"
    WEBHOOK = "webhook"
    SCHEDULED = "scheduled"


class SyncLogStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class PlatformResultStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationType(str, Enum):
    SALE = "sale"
    PRICE_CHANGE = "price_change"
    QUANTITY_CHANGE = "quantity_change"
    LISTING_ENDED = "listing_ended"
    QUESTION = "question"
    OFFER = "offer"
    REVIEW = "review"
    RETURN_REQUEST = "return_request"
    DISPUTE = "dispute"
    SYNC_ERROR = "sync_error"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    THIRD_PARTY_ACTION = "third_party_action"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self):
        return ["low", "medium", "high", "urgent"].index(self.value)


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"
    ACTIONED = "actioned"


class ConnectionStatus(str, Enum):
    INACTIVE = "inactive"
    DISCONNECTED = "disconnected"
    EXPIRED = "expired"
    CONNECTED = "connected"
