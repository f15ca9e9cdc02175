from .product import Product
from .listing import Listing
from .platform_config import PlatformConfig
from .sync_log import SyncLogEntry
from .notification import Notification

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'Product',
    'Listing',
    'PlatformConfig',
    'SyncLogEntry',
    'Notification',
]
