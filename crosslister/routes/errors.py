"""Translate service errors into HTTP responses."""
from fastapi import HTTPException

from crosslister.core.exceptions import (
    AdapterError, BaseServiceError, DuplicateListingError, NotFoundError, PlatformConfigurationError,
    PlatformUnavailableError, ValidationError,
)

# Most specific first
STATUS_CODES = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (DuplicateListingError, 409),
    (PlatformConfigurationError, 409),
    (PlatformUnavailableError, 503),
    (AdapterError, 502),
)


def status_for(exc: BaseServiceError) -> int:
    for error_class, status_code in STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 500


def http_error(exc: BaseServiceError) -> HTTPException:
    return HTTPException(status_code=status_for(exc), detail=exc.to_dict())
