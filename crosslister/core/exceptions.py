from typing import Any, Dict, Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    code = "SERVICE_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(BaseServiceError):
    """Base exception for missing products, listings, configs and notifications."""
    code = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """Raised when product is not found."""
    pass


class ListingNotFoundError(NotFoundError):
    """Raised when a platform listing is not found."""
    pass


class PlatformConfigNotFoundError(NotFoundError):
    """Raised when no configuration row exists for a platform."""
    pass


class NotificationNotFoundError(NotFoundError):
    pass


class ValidationError(BaseServiceError):
    """Raised when data validation fails."""
    code = "VALIDATION_ERROR"


class ListingStateError(ValidationError):
    """Raised when an operation is not allowed in the listing's current status."""
    code = "INVALID_LISTING_STATE"


class PlatformServiceError(BaseServiceError):
    """Base exception for platform service errors."""
    code = "PLATFORM_ERROR"

    def __init__(self, message: str, *, platform: Optional[str] = None, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)
        self.platform = platform

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["platform"] = self.platform
        return data


class PlatformUnavailableError(PlatformServiceError):
    """Raised when a platform config is missing, inactive, disconnected or expired."""
    code = "PLATFORM_UNAVAILABLE"


class PlatformConfigurationError(PlatformServiceError):
    """Raised when an adapter cannot be built from the stored settings/credentials."""
    code = "PLATFORM_MISCONFIGURED"


class DuplicateListingError(PlatformServiceError):
    """Raised when an active or pending listing already exists for the product on the platform."""
    code = "DUPLICATE_LISTING"


class AdapterError(PlatformServiceError):
    """Raised when a marketplace rejects a request or cannot be reached."""
    code = "REMOTE_ERROR"

    # Codes that mean a retry with the same input cannot succeed
    PERMANENT_CODES = {"VALIDATION", "AUTH", "UNSUPPORTED_OPERATION"}

    @property
    def is_permanent(self) -> bool:
        return self.code in self.PERMANENT_CODES


class UnsupportedOperationError(AdapterError):
    """Raised when an adapter does not implement a capability (e.g. Craigslist updates)."""
    code = "UNSUPPORTED_OPERATION"
